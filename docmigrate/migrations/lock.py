"""
Process lock backed by a single document in a dedicated collection.
"""

import os
import socket
from datetime import datetime, timezone
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import CollectionInvalid, DuplicateKeyError, PyMongoError

from docmigrate.core.exceptions import MigrationConnectionError
from docmigrate.log.logging import logger

LOCK_ID = "migration_lock"


class LockStore:
    """
    Distributed lock for preventing concurrent migrations.

    The lock is held while the well-known document exists. Acquisition is
    a single insert that the ``_id`` uniqueness turns into a test-and-set;
    release deletes the document. There is no lease: a holder that dies
    without releasing keeps the lock until an operator clears it.
    """

    def __init__(self, collection_name: str):
        self._collection_name = collection_name
        self._db: Optional[AsyncIOMotorDatabase] = None

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def connect(self, db: AsyncIOMotorDatabase) -> None:
        """Bind the store to a database handle."""
        self._db = db

    def _collection(self) -> AsyncIOMotorCollection:
        if self._db is None:
            raise MigrationConnectionError(
                "Database is not connected. Lock store used before connect()"
            )
        return self._db[self._collection_name]

    async def initialize(self) -> None:
        """Ensure the lock collection exists. Safe to call repeatedly."""
        collection = self._collection()
        try:
            collections = await self._db.list_collection_names()
            if self._collection_name not in collections:
                await self._db.create_collection(self._collection_name)
        except CollectionInvalid:
            # Created concurrently by another process
            pass
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to initialize lock collection: {e}") from e

        logger.debug(
            "Lock collection {collection} ready",
            collection=collection.name,
            event_type="migration_lock_initialized",
        )

    async def acquire(self) -> bool:
        """
        Try to acquire the lock once.

        Returns:
            True if the lock document was inserted, False if it already exists.
        """
        collection = self._collection()
        document = {
            "_id": LOCK_ID,
            "locked_at": datetime.now(timezone.utc),
            "locked_by": f"{socket.gethostname()}-{os.getpid()}",
        }
        try:
            await collection.insert_one(document)
        except DuplicateKeyError:
            return False
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to acquire migration lock: {e}") from e

        logger.info(
            "Migration lock acquired by {locked_by}",
            locked_by=document["locked_by"],
            event_type="migration_lock_acquired",
        )
        return True

    async def release(self) -> None:
        """Release the lock. Releasing a lock nobody holds is a no-op."""
        collection = self._collection()
        try:
            result = await collection.delete_one({"_id": LOCK_ID})
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to release migration lock: {e}") from e

        logger.info(
            "Migration lock released",
            deleted=result.deleted_count,
            event_type="migration_lock_released",
        )

    async def is_held(self) -> bool:
        """Check whether any process currently holds the lock."""
        collection = self._collection()
        try:
            return await collection.count_documents({"_id": LOCK_ID}) >= 1
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to read migration lock: {e}") from e

    async def holder(self) -> Optional[dict]:
        """Return the lock document if the lock is held."""
        collection = self._collection()
        try:
            return await collection.find_one({"_id": LOCK_ID})
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to read migration lock: {e}") from e

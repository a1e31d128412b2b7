"""
Append-only change log backed by a MongoDB collection.
"""

from typing import Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from docmigrate.core.exceptions import ErrorCode, MigrationConnectionError
from docmigrate.log.logging import logger
from docmigrate.migrations.models import ChangeLogEntry

CHANGE_ID_AUTHOR_KEY = [("change_id", ASCENDING), ("author", ASCENDING)]
CHANGE_ID_AUTHOR_INDEX = "change_id_1_author_1"


class ChangeLogStore:
    """
    Ledger of applied and failed change units.

    Uniqueness of (change_id, author) is enforced by a unique compound
    index, not by the is_new() check alone. When two processes both decide
    a change is new, the second insert is rejected by the index and raised.
    """

    def __init__(self, collection_name: str, installation_id: Optional[str] = None):
        self._collection_name = collection_name
        self._installation_id = installation_id
        self._db: Optional[AsyncIOMotorDatabase] = None

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def installation_id(self) -> Optional[str]:
        return self._installation_id

    def connect(self, db: AsyncIOMotorDatabase) -> None:
        """Bind the store to a database handle."""
        self._db = db

    def _collection(self) -> AsyncIOMotorCollection:
        if self._db is None:
            raise MigrationConnectionError(
                "Database is not connected. Change log used before connect()"
            )
        return self._db[self._collection_name]

    async def ensure_index(self) -> None:
        """
        Make sure the unique (change_id, author) index exists.

        A missing index is created. An index on the same keys that is not
        unique is dropped and recreated as unique.
        """
        collection = self._collection()
        try:
            indexes = await collection.index_information()
            existing = self._find_change_id_author_index(indexes)

            if existing is None:
                await self._create_unique_index(collection)
                logger.debug(
                    "Index in collection {collection} was created",
                    collection=self._collection_name,
                    event_type="changelog_index_created",
                )
            elif not existing[1].get("unique", False):
                await collection.drop_index(existing[0])
                await self._create_unique_index(collection)
                logger.debug(
                    "Index in collection {collection} was recreated",
                    collection=self._collection_name,
                    event_type="changelog_index_recreated",
                )
        except PyMongoError as e:
            raise MigrationConnectionError(
                f"Unable to ensure change log index on {self._collection_name}: {e}"
            ) from e

    @staticmethod
    def _find_change_id_author_index(indexes: dict) -> Optional[tuple[str, dict]]:
        for name, info in indexes.items():
            keys = [tuple(key) for key in info.get("key", [])]
            if keys == CHANGE_ID_AUTHOR_KEY:
                return name, info
        return None

    @staticmethod
    async def _create_unique_index(collection: AsyncIOMotorCollection) -> None:
        await collection.create_index(
            CHANGE_ID_AUTHOR_KEY,
            name=CHANGE_ID_AUTHOR_INDEX,
            unique=True,
        )

    async def is_new(self, change_id: str, author: str) -> bool:
        """True if no entry exists for this change id and author."""
        collection = self._collection()
        try:
            entry = await collection.find_one({"change_id": change_id, "author": author})
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to read change log: {e}") from e
        return entry is None

    async def append(self, entry: ChangeLogEntry) -> None:
        """
        Insert a new entry. Never upserts.

        Raises:
            MigrationConnectionError: The write failed, including a
                duplicate (change_id, author) rejected by the unique index.
        """
        collection = self._collection()
        document = entry.to_dict()
        document["installation_id"] = self._installation_id
        try:
            await collection.insert_one(document)
        except DuplicateKeyError as e:
            raise MigrationConnectionError(
                f"Change {entry.change_id} by {entry.author} is already in the change log",
                error_code=ErrorCode.DATABASE_CONSISTENCY_ERROR,
            ) from e
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to write change log: {e}") from e

    async def history(self, limit: Optional[int] = None) -> list[ChangeLogEntry]:
        """
        Get change log entries sorted by timestamp.

        Args:
            limit: Return only the most recent entries when set. Zero or
                less returns nothing.

        Returns:
            Entries in ascending timestamp order.
        """
        collection = self._collection()
        if limit is not None and limit < 1:
            return []
        try:
            if limit is not None:
                cursor = collection.find({}).sort("timestamp", -1).limit(limit)
            else:
                cursor = collection.find({}).sort("timestamp", 1)

            entries = []
            async for doc in cursor:
                entries.append(ChangeLogEntry.from_dict(doc))
        except PyMongoError as e:
            raise MigrationConnectionError(f"Unable to read change log: {e}") from e

        if limit is not None:
            entries.reverse()
        return entries

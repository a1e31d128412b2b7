# docmigrate/core/mongo.py
"""
MongoDB client configuration.

The runner never parses connection strings itself; callers hand it an
already configured client. This module builds one from Settings for the CLI.
"""
from motor.motor_asyncio import AsyncIOMotorClient

from docmigrate.core.config import Settings


def create_client(settings: Settings) -> AsyncIOMotorClient:
    """
    Create the MongoDB client with connection pooling.

    Args:
        settings: Loaded settings holding the URI and pool options.

    Returns:
        A motor client. No connection is made until the first operation.
    """
    return AsyncIOMotorClient(
        settings.mongodb,
        # Connection pool settings
        maxPoolSize=settings.mongo_max_pool_size,
        minPoolSize=settings.mongo_min_pool_size,
        # Timeouts
        connectTimeoutMS=settings.mongo_connect_timeout_ms,
        serverSelectionTimeoutMS=settings.mongo_server_selection_timeout_ms,
        socketTimeoutMS=settings.mongo_socket_timeout_ms,
        retryWrites=True,
        retryReads=True,
    )

"""
Motor connection holder for the progress engine.

One MongoDB instance is created at startup and handed to the services as
a plain AsyncIOMotorDatabase. Index creation lives with the engine's own
collection definitions, not here.

Example:
    from common.database import MongoDB

    mongo = MongoDB()
    await mongo.connect(uri="mongodb://localhost:27017", database_name="kidslearning")
    services = init_all_services(mongo.db)
"""

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


def _redact(uri: str) -> str:
    """Strip credentials from a connection string before logging it."""
    scheme, sep, rest = uri.partition("://")
    if "@" not in rest:
        return uri
    return f"{scheme}{sep}***@{rest.split('@', 1)[1]}"


class MongoDB:
    """Owns the Motor client for one database."""

    def __init__(self):
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None

    async def connect(
        self,
        uri: str,
        database_name: str,
        server_selection_timeout_ms: int = 5000,
        app_name: Optional[str] = None,
    ) -> None:
        """
        Open the client and fail fast if the server cannot be reached.

        Args:
            uri: MongoDB connection string
            database_name: Database holding content, progress and ledger collections
            server_selection_timeout_ms: How long the startup ping may wait
            app_name: Reported to the server for connection diagnostics

        Raises:
            PyMongoError: If the ping fails
        """
        logger.info(f"Connecting to MongoDB at {_redact(uri)} (database {database_name})")

        client = AsyncIOMotorClient(
            uri,
            serverSelectionTimeoutMS=server_selection_timeout_ms,
            appname=app_name,
            tz_aware=True,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            logger.error(f"MongoDB ping failed: {e}")
            client.close()
            raise

        self._client = client
        self._database = client[database_name]

    async def disconnect(self) -> None:
        """Close the client if one is open."""
        if self._client is None:
            return
        logger.info(f"Closing MongoDB connection to {self._database.name}")
        self._client.close()
        self._client = None
        self._database = None

    async def ping(self) -> bool:
        """Whether the server answers right now. Used by the health check."""
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB health ping failed: {e}")
            return False

    @property
    def db(self) -> AsyncIOMotorDatabase:
        """The connected database."""
        if self._database is None:
            raise RuntimeError("Database not connected")
        return self._database

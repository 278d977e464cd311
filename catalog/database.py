"""
MongoDB connection management for the catalog.
Handles connection, indexing and health checks for the books and users collections.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, TEXT
from pymongo.errors import ConnectionFailure

logger = structlog.get_logger(__name__)


class MongoDBManager:
    """
    Async MongoDB manager owning the shared client.
    Repositories borrow its collections; the client is closed on disconnect.
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        books_collection: str = "books",
        users_collection: str = "users",
    ):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            books_collection: Name of the collection holding book aggregates
            users_collection: Name of the collection holding user credentials
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.books_collection_name = books_collection
        self.users_collection_name = users_collection
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.books: Optional[AsyncIOMotorCollection] = None
        self.users: Optional[AsyncIOMotorCollection] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB and make sure indexes exist."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url, tz_aware=True)
            self.database = self.client[self.database_name]
            self.books = self.database[self.books_collection_name]
            self.users = self.database[self.users_collection_name]

            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB",
                        database=self.database_name,
                        books_collection=self.books_collection_name,
                        users_collection=self.users_collection_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create indexes backing search, listing filters and credential uniqueness."""
        try:
            # Full-text search over title and author
            await self.books.create_index([("title", TEXT), ("author", TEXT)], name="title_author_text")

            # Listing filters and default ordering
            await self.books.create_index([("author", ASCENDING)])
            await self.books.create_index([("genre", ASCENDING)])
            await self.books.create_index([("created_at", DESCENDING)])

            await self.users.create_index("email", unique=True)
            await self.users.create_index("username", unique=True)

            logger.info("Successfully created MongoDB indexes")

        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            books_count = await self.books.estimated_document_count()
            users_count = await self.users.estimated_document_count()

            return {
                "status": "healthy",
                "books_count": books_count,
                "users_count": users_count,
                "checked_at": datetime.now(timezone.utc).isoformat(),
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }

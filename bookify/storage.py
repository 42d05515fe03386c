import logging

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING
from pymongo.errors import OperationFailure
from pymongo.server_api import ServerApi

from .config import Settings

logger = logging.getLogger(__name__)

BORROW_UNIQUE_INDEX = "email_bookId_unique"


class Storage:
    """Handle on the library database.

    Built once at startup and closed at shutdown. Tests construct it around a
    mock client instead of going through ``from_settings``.
    """

    def __init__(self, client, database_name: str):
        self.client = client
        self.database = client[database_name]

    @classmethod
    def from_settings(cls, settings: Settings) -> "Storage":
        client = AsyncIOMotorClient(
            settings.mongodb_url,
            server_api=ServerApi("1", strict=True, deprecation_errors=True),
            serverSelectionTimeoutMS=settings.server_selection_timeout_ms,
        )
        return cls(client, settings.database_name)

    @property
    def books(self):
        return self.database["books"]

    @property
    def borrows(self):
        return self.database["borrows"]

    async def ping(self):
        await self.client.admin.command("ping")
        logger.info("Pinged deployment, MongoDB connection is up")

    async def ensure_indexes(self):
        try:
            await self.borrows.create_index(
                [("email", ASCENDING), ("bookId", ASCENDING)],
                unique=True,
                name=BORROW_UNIQUE_INDEX,
            )
        except OperationFailure as e:
            # Existing duplicate records block the index; the pre-insert
            # check in borrow_book still applies.
            logger.error(f"Could not create {BORROW_UNIQUE_INDEX} index: {e}")
            return
        logger.info(f"Index {BORROW_UNIQUE_INDEX} ready on borrows")

    def close(self):
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")

"""
Database initialization and coordination for SQLite.

The Database class owns the shared :class:`ConnectionManager`, creates the
schema at startup, and exposes the modmail thread history operations.
Guild settings and blocks are persisted by the guild settings manager
through the same connection.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from herald.database.db_connection import ConnectionManager
from herald.database.db_schema import SchemaManager
from herald.repositories.thread_history_repo import ThreadHistoryRepository, ThreadStats
from herald.util.logger import get_logger

logger = get_logger("database")

DB_PATH = Path("./data/herald.db").resolve()


class Database:
    """
    Central database coordinator.

    Lifecycle:
        1. Call initialize() at program startup
        2. Use transaction()/read() or the history helpers
        3. Call shutdown() at program end
    """

    def __init__(self, db_path: Path = DB_PATH, connection: Optional[ConnectionManager] = None):
        """
        Initialize the Database coordinator.

        Args:
            db_path: Path to the SQLite database file
            connection: Connection manager to use; a new one by default
        """
        self.db_path = db_path
        self._connection = connection or ConnectionManager()
        self._threads = ThreadHistoryRepository()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def transaction(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        """Serialised write transaction on the shared connection."""
        return self._connection.transaction()

    def read(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        """Read access to the shared connection."""
        return self._connection.read()

    async def initialize(self) -> bool:
        """
        Open the connection and create the schema.

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self._connection.open(self.db_path)
            async with self._connection.transaction() as db:
                await SchemaManager.initialize_schema(db)

            self._initialized = True
            logger.info("[DATABASE] Database initialized at %s", self.db_path)
            return True

        except Exception as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            return False

    async def shutdown(self) -> None:
        """Close the shared connection. Safe to call more than once."""
        await self._connection.close()
        if self._initialized:
            self._initialized = False
            logger.info("[DATABASE] Database shutdown complete")

    # ------------------------------------------------------------------
    # Modmail thread history
    # ------------------------------------------------------------------

    async def log_thread_opened(
        self,
        guild_id: GuildID,
        user_id: UserID,
        channel_id: ChannelID,
        opened_at: datetime,
    ) -> int:
        async with self.transaction() as db:
            row_id = await self._threads.insert_opened(db, guild_id, user_id, channel_id, opened_at)
        logger.debug("[DATABASE] Logged modmail thread %s opened for user %s in guild %s", channel_id, user_id, guild_id)
        return row_id

    async def log_thread_closed(
        self,
        channel_id: ChannelID,
        closed_at: datetime,
        reason: str,
        closed_by_id: Optional[int] = None,
    ) -> bool:
        async with self.transaction() as db:
            updated = await self._threads.mark_closed(db, channel_id, closed_at, reason, closed_by_id)
        logger.debug("[DATABASE] Logged modmail thread %s closed (%s)", channel_id, reason)
        return updated > 0

    async def close_dangling_threads(self, closed_at: datetime, reason: str) -> int:
        """Mark history rows left open by a previous run as closed."""
        async with self.transaction() as db:
            count = await self._threads.close_dangling(db, closed_at, reason)
        if count:
            logger.info("[DATABASE] Closed %d modmail history rows left open by a previous run", count)
        return count

    async def get_thread_stats(self, guild_id: GuildID, since: Optional[datetime] = None) -> ThreadStats:
        async with self.read() as db:
            return await self._threads.get_stats(db, guild_id, since)


# Global Database instance
database = Database()


def get_db() -> Database:
    """
    Get the global Database instance.

    Returns:
        Database: The global Database manager instance.
    """
    return database

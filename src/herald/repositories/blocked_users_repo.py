"""
Persistent storage for per-guild modmail blocks.

Timestamps are stored as INTEGER unix seconds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

import aiosqlite

from herald.datatypes.discord_datatypes import GuildID, UserID
from herald.datatypes.guild_settings import BlockedUser


class BlockedUsersRepository:
    """Low-level CRUD for the ``modmail_blocked_users`` table."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, block: BlockedUser) -> None:
        """Insert a block, or re-activate an earlier one with the new details."""
        await conn.execute(
            """
            INSERT INTO modmail_blocked_users (guild_id, user_id, blocked_by_id, reason, blocked_at, is_active)
            VALUES (?, ?, ?, ?, ?, 1)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                blocked_by_id = excluded.blocked_by_id,
                reason        = excluded.reason,
                blocked_at    = excluded.blocked_at,
                is_active     = 1
            """,
            (
                block.guild_id.to_int(),
                block.user_id.to_int(),
                block.blocked_by_id,
                block.reason,
                int(block.blocked_at.timestamp()),
            ),
        )

    @staticmethod
    async def deactivate(conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID) -> None:
        await conn.execute(
            "UPDATE modmail_blocked_users SET is_active = 0 WHERE guild_id = ? AND user_id = ?",
            (guild_id.to_int(), user_id.to_int()),
        )

    @staticmethod
    async def delete_for_guild(conn: aiosqlite.Connection, guild_id: GuildID) -> None:
        await conn.execute("DELETE FROM modmail_blocked_users WHERE guild_id = ?", (guild_id.to_int(),))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get_active(conn: aiosqlite.Connection) -> List[BlockedUser]:
        """Return every active block across all guilds."""
        cursor = await conn.execute(
            "SELECT guild_id, user_id, blocked_by_id, reason, blocked_at "
            "FROM modmail_blocked_users WHERE is_active = 1"
        )
        rows = await cursor.fetchall()
        return [
            BlockedUser(
                guild_id=GuildID.from_int(row[0]),
                user_id=UserID.from_int(row[1]),
                blocked_by_id=row[2],
                reason=row[3] or "",
                blocked_at=datetime.fromtimestamp(row[4], tz=timezone.utc),
            )
            for row in rows
        ]

    @staticmethod
    async def get(conn: aiosqlite.Connection, guild_id: GuildID, user_id: UserID) -> Optional[BlockedUser]:
        cursor = await conn.execute(
            "SELECT blocked_by_id, reason, blocked_at FROM modmail_blocked_users "
            "WHERE guild_id = ? AND user_id = ? AND is_active = 1",
            (guild_id.to_int(), user_id.to_int()),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return BlockedUser(
            guild_id=guild_id,
            user_id=user_id,
            blocked_by_id=row[0],
            reason=row[1] or "",
            blocked_at=datetime.fromtimestamp(row[2], tz=timezone.utc),
        )

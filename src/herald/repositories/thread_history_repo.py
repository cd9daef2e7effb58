"""
Repository for the modmail_thread_history table.

Rows are written when a thread opens and completed when it closes. They feed
``/modmail-stats`` and are never used to restore live threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import aiosqlite

from herald.datatypes.discord_datatypes import ChannelID, GuildID, UserID


@dataclass(slots=True)
class ThreadStats:
    """Aggregated modmail history for one guild and time window."""

    total: int = 0
    open: int = 0
    closed: int = 0
    average_duration_seconds: Optional[float] = None
    by_reason: Dict[str, int] = field(default_factory=dict)
    top_closers: List[Tuple[int, int]] = field(default_factory=list)
    unique_users: int = 0


class ThreadHistoryRepository:
    """CRUD and aggregate queries for thread history."""

    @staticmethod
    async def insert_opened(
        conn: aiosqlite.Connection,
        guild_id: GuildID,
        user_id: UserID,
        channel_id: ChannelID,
        opened_at: datetime,
    ) -> int:
        """Record a newly opened thread and return the row id."""
        cursor = await conn.execute(
            "INSERT INTO modmail_thread_history (guild_id, user_id, channel_id, opened_at) VALUES (?, ?, ?, ?)",
            (guild_id.to_int(), user_id.to_int(), channel_id.to_int(), int(opened_at.timestamp())),
        )
        return cursor.lastrowid

    @staticmethod
    async def mark_closed(
        conn: aiosqlite.Connection,
        channel_id: ChannelID,
        closed_at: datetime,
        reason: str,
        closed_by_id: Optional[int],
    ) -> int:
        """Close the open history row for ``channel_id``. Returns the rows updated."""
        cursor = await conn.execute(
            """
            UPDATE modmail_thread_history
            SET closed_at = ?, close_reason = ?, closed_by_id = ?
            WHERE channel_id = ? AND closed_at IS NULL
            """,
            (int(closed_at.timestamp()), reason, closed_by_id, channel_id.to_int()),
        )
        return cursor.rowcount

    @staticmethod
    async def close_dangling(conn: aiosqlite.Connection, closed_at: datetime, reason: str) -> int:
        """Close rows left open by a previous process; their threads no longer exist."""
        cursor = await conn.execute(
            "UPDATE modmail_thread_history SET closed_at = ?, close_reason = ? WHERE closed_at IS NULL",
            (int(closed_at.timestamp()), reason),
        )
        return cursor.rowcount

    @staticmethod
    async def get_stats(
        conn: aiosqlite.Connection,
        guild_id: GuildID,
        since: Optional[datetime] = None,
        *,
        top_limit: int = 5,
    ) -> ThreadStats:
        """Aggregate history for ``guild_id``, optionally only threads opened after ``since``."""
        where = "guild_id = ?"
        params: list = [guild_id.to_int()]
        if since is not None:
            where += " AND opened_at >= ?"
            params.append(int(since.timestamp()))

        stats = ThreadStats()

        cursor = await conn.execute(
            f"""
            SELECT
                COUNT(*),
                SUM(CASE WHEN closed_at IS NULL THEN 1 ELSE 0 END),
                SUM(CASE WHEN closed_at IS NOT NULL THEN 1 ELSE 0 END),
                AVG(CASE WHEN closed_at IS NOT NULL THEN closed_at - opened_at END),
                COUNT(DISTINCT user_id)
            FROM modmail_thread_history WHERE {where}
            """,
            params,
        )
        row = await cursor.fetchone()
        if row is not None:
            stats.total = row[0] or 0
            stats.open = row[1] or 0
            stats.closed = row[2] or 0
            stats.average_duration_seconds = float(row[3]) if row[3] is not None else None
            stats.unique_users = row[4] or 0

        cursor = await conn.execute(
            f"""
            SELECT close_reason, COUNT(*) FROM modmail_thread_history
            WHERE {where} AND closed_at IS NOT NULL
            GROUP BY close_reason
            """,
            params,
        )
        stats.by_reason = {str(reason): count for reason, count in await cursor.fetchall()}

        cursor = await conn.execute(
            f"""
            SELECT closed_by_id, COUNT(*) AS closed_count FROM modmail_thread_history
            WHERE {where} AND closed_by_id IS NOT NULL
            GROUP BY closed_by_id
            ORDER BY closed_count DESC, closed_by_id ASC
            LIMIT ?
            """,
            [*params, top_limit],
        )
        stats.top_closers = [(int(user_id), int(count)) for user_id, count in await cursor.fetchall()]
        return stats

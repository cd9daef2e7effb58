"""
Repository for the guild_settings table.

Collections are stored as JSON TEXT columns; malformed JSON loads as an empty
collection rather than failing the whole load.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import aiosqlite

from herald.datatypes.discord_datatypes import GuildID
from herald.datatypes.guild_settings import GuildSettings
from herald.util.logger import get_logger

logger = get_logger("guild_settings_repo")

_COLUMNS = (
    "guild_id, logging_channel_id, setup_completed, enabled_categories, category_channels, "
    "ignored_channels, ignored_roles, modmail_enabled, modmail_category_id, "
    "modmail_staff_role_id, modmail_log_channel_id"
)


def _load_json(raw: Optional[str], default: Any, *, guild_id: int, column: str) -> Any:
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("[GUILD SETTINGS REPO] Malformed %s for guild %s, using default", column, guild_id)
        return default
    return value if isinstance(value, type(default)) else default


def row_to_settings(row: aiosqlite.Row | tuple) -> GuildSettings:
    """Build a :class:`GuildSettings` from a row selected with the standard column list."""
    guild_id = int(row[0])
    return GuildSettings(
        guild_id=GuildID.from_int(guild_id),
        logging_channel_id=row[1],
        setup_completed=bool(row[2]),
        enabled_categories={
            str(key): bool(value)
            for key, value in _load_json(row[3], {}, guild_id=guild_id, column="enabled_categories").items()
        },
        category_channels={
            str(key): int(value)
            for key, value in _load_json(row[4], {}, guild_id=guild_id, column="category_channels").items()
        },
        ignored_channels=[int(v) for v in _load_json(row[5], [], guild_id=guild_id, column="ignored_channels")],
        ignored_roles=[int(v) for v in _load_json(row[6], [], guild_id=guild_id, column="ignored_roles")],
        modmail_enabled=bool(row[7]),
        modmail_category_id=row[8],
        modmail_staff_role_id=row[9],
        modmail_log_channel_id=row[10],
    )


class GuildSettingsRepository:
    """CRUD for the guild_settings table."""

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> Dict[GuildID, GuildSettings]:
        async with conn.execute(f"SELECT {_COLUMNS} FROM guild_settings") as cursor:
            rows = await cursor.fetchall()
        result: Dict[GuildID, GuildSettings] = {}
        for row in rows:
            settings = row_to_settings(row)
            result[settings.guild_id] = settings
        return result

    @staticmethod
    async def get(conn: aiosqlite.Connection, guild_id: GuildID) -> Optional[GuildSettings]:
        async with conn.execute(
            f"SELECT {_COLUMNS} FROM guild_settings WHERE guild_id = ?", (guild_id.to_int(),)
        ) as cursor:
            row = await cursor.fetchone()
        return row_to_settings(row) if row else None

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, settings: GuildSettings) -> None:
        await conn.execute(
            f"""
            INSERT INTO guild_settings ({_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                logging_channel_id = excluded.logging_channel_id,
                setup_completed = excluded.setup_completed,
                enabled_categories = excluded.enabled_categories,
                category_channels = excluded.category_channels,
                ignored_channels = excluded.ignored_channels,
                ignored_roles = excluded.ignored_roles,
                modmail_enabled = excluded.modmail_enabled,
                modmail_category_id = excluded.modmail_category_id,
                modmail_staff_role_id = excluded.modmail_staff_role_id,
                modmail_log_channel_id = excluded.modmail_log_channel_id
            """,
            (
                settings.guild_id.to_int(),
                settings.logging_channel_id,
                1 if settings.setup_completed else 0,
                json.dumps(settings.enabled_categories, sort_keys=True),
                json.dumps(settings.category_channels, sort_keys=True),
                json.dumps(settings.ignored_channels),
                json.dumps(settings.ignored_roles),
                1 if settings.modmail_enabled else 0,
                settings.modmail_category_id,
                settings.modmail_staff_role_id,
                settings.modmail_log_channel_id,
            ),
        )

    @staticmethod
    async def delete(conn: aiosqlite.Connection, guild_id: GuildID) -> None:
        await conn.execute("DELETE FROM guild_settings WHERE guild_id = ?", (guild_id.to_int(),))

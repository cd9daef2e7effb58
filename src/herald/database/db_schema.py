"""
Database schema initialization.

Handles creation of tables, indexes, triggers, and schema version tracking.
Collections in ``guild_settings`` are JSON-encoded TEXT columns.
"""

import aiosqlite
from herald.util.logger import get_logger

logger = get_logger("database_schema")

SCHEMA_VERSION = 1


class SchemaManager:
    """Creates the Herald's tables, indexes and triggers."""

    @staticmethod
    async def initialize_schema(db: aiosqlite.Connection) -> None:
        """
        Create all database tables, indexes, and triggers if they are missing.

        The caller owns the transaction and commits it.

        Args:
            db: Open database connection
        """
        await SchemaManager._create_tables(db)
        await SchemaManager._create_indexes(db)
        await SchemaManager._create_triggers(db)
        await SchemaManager._update_schema_version(db)
        logger.info("[SCHEMA] Database schema initialized")

    @staticmethod
    async def _create_tables(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TABLE IF NOT EXISTS guild_settings (
                guild_id INTEGER PRIMARY KEY,
                logging_channel_id INTEGER,
                setup_completed INTEGER NOT NULL DEFAULT 0,
                enabled_categories TEXT NOT NULL DEFAULT '{}',
                category_channels TEXT NOT NULL DEFAULT '{}',
                ignored_channels TEXT NOT NULL DEFAULT '[]',
                ignored_roles TEXT NOT NULL DEFAULT '[]',
                modmail_enabled INTEGER NOT NULL DEFAULT 0,
                modmail_category_id INTEGER,
                modmail_staff_role_id INTEGER,
                modmail_log_channel_id INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # One row per (guild, user); unblocking keeps the row with is_active = 0
        await db.execute("""
            CREATE TABLE IF NOT EXISTS modmail_blocked_users (
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                blocked_by_id INTEGER,
                reason TEXT NOT NULL DEFAULT '',
                blocked_at INTEGER NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1,
                PRIMARY KEY (guild_id, user_id)
            )
        """)

        # Audit trail only; the live thread registry is never rebuilt from it
        await db.execute("""
            CREATE TABLE IF NOT EXISTS modmail_thread_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                guild_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                channel_id INTEGER NOT NULL,
                opened_at INTEGER NOT NULL,
                closed_at INTEGER,
                close_reason TEXT,
                closed_by_id INTEGER
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

    @staticmethod
    async def _create_indexes(db: aiosqlite.Connection) -> None:
        await db.execute("CREATE INDEX IF NOT EXISTS idx_guild_settings_modmail ON guild_settings(modmail_enabled)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_blocked_users_user ON modmail_blocked_users(user_id, is_active)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_thread_history_guild ON modmail_thread_history(guild_id, opened_at DESC)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_thread_history_channel ON modmail_thread_history(channel_id)")

    @staticmethod
    async def _create_triggers(db: aiosqlite.Connection) -> None:
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS update_guild_settings_timestamp
            AFTER UPDATE ON guild_settings
            FOR EACH ROW
            BEGIN
                UPDATE guild_settings SET updated_at = CURRENT_TIMESTAMP
                WHERE guild_id = NEW.guild_id;
            END
        """)

    @staticmethod
    async def _update_schema_version(db: aiosqlite.Connection) -> None:
        await db.execute("INSERT OR IGNORE INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

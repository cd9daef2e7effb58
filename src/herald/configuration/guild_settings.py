"""
Persistent per-guild configuration storage.

Responsibilities:
- Cache every guild's modmail and logging settings in memory
- Persist changes to SQLite without blocking the caller
- Track per-guild modmail blocks

Database schema:
- guild_settings: one row per guild, collections as JSON columns
- modmail_blocked_users: one row per (guild, user), ``is_active`` flag
"""

import asyncio
import collections
from datetime import datetime, timezone
from typing import DefaultDict, Dict, Iterable, List, Optional, Set, Tuple, Union

from herald.database.database import get_db
from herald.datatypes.discord_datatypes import GuildID, UserID
from herald.datatypes.guild_settings import BlockedUser, GuildSettings
from herald.datatypes.log_categories import LogCategory
from herald.repositories.blocked_users_repo import BlockedUsersRepository
from herald.repositories.guild_settings_repo import GuildSettingsRepository
from herald.util.logger import get_logger

logger = get_logger("guild_settings_manager")

GuildKey = Union[GuildID, int]
UserKey = Union[UserID, int]


class GuildSettingsManager:
    """
    In-memory cache of guild settings backed by SQLite.

    Every mutator updates the cache first and then schedules a background
    write with :meth:`_trigger_persist`, so slash commands never wait on disk.
    """

    def __init__(self):
        """Instantiate caches and persistence helpers."""
        self.guilds: Dict[GuildID, GuildSettings] = {}

        # Active modmail blocks (guild_id -> user_id -> BlockedUser)
        self.blocked_users: DefaultDict[GuildID, Dict[UserID, BlockedUser]] = collections.defaultdict(dict)

        self._persist_lock = asyncio.Lock()
        self._active_persists: Set[asyncio.Task] = set()
        self._db_initialized = False

        logger.info("[GUILD SETTINGS MANAGER] Guild settings manager initialized")

    async def async_init(self) -> None:
        """Initialize the database and load settings from disk.

        Raises:
            RuntimeError: If the database could not be initialized.
        """
        if self._db_initialized:
            return
        if not await get_db().initialize():
            raise RuntimeError("Database initialization failed")
        await self.load_from_disk()
        self._db_initialized = True
        logger.info("[GUILD SETTINGS MANAGER] Database initialized and settings loaded")

    def ensure_guild(self, guild_id: GuildKey) -> GuildSettings:
        """Create default settings for a guild if none exist and return the record."""
        key = GuildID(guild_id)
        settings = self.guilds.get(key)
        if settings is None:
            settings = GuildSettings(guild_id=key)
            self.guilds[key] = settings
        return settings

    def get_guild_settings(self, guild_id: GuildKey) -> GuildSettings:
        """Fetch the cached :class:`GuildSettings` instance for the given guild."""
        return self.ensure_guild(guild_id)

    # -------- Modmail --------
    def modmail_guild_ids(self) -> List[GuildID]:
        """Return the guilds that have modmail enabled."""
        return [guild_id for guild_id, settings in self.guilds.items() if settings.modmail_enabled]

    def is_modmail_enabled(self, guild_id: GuildKey) -> bool:
        settings = self.guilds.get(GuildID(guild_id))
        return bool(settings and settings.modmail_enabled)

    def enable_modmail(
        self,
        guild_id: GuildKey,
        *,
        category_id: Optional[int] = None,
        staff_role_id: Optional[int] = None,
        log_channel_id: Optional[int] = None,
    ) -> GuildSettings:
        """Enable modmail, overwriting only the ids that were supplied."""
        settings = self.ensure_guild(guild_id)
        settings.modmail_enabled = True
        if category_id is not None:
            settings.modmail_category_id = category_id
        if staff_role_id is not None:
            settings.modmail_staff_role_id = staff_role_id
        if log_channel_id is not None:
            settings.modmail_log_channel_id = log_channel_id
        logger.debug("[GUILD SETTINGS MANAGER] Modmail enabled for guild %s", settings.guild_id)
        self._trigger_persist(settings.guild_id)
        return settings

    def disable_modmail(self, guild_id: GuildKey) -> None:
        settings = self.ensure_guild(guild_id)
        settings.modmail_enabled = False
        logger.debug("[GUILD SETTINGS MANAGER] Modmail disabled for guild %s", settings.guild_id)
        self._trigger_persist(settings.guild_id)

    def set_modmail_category(self, guild_id: GuildKey, category_id: Optional[int]) -> None:
        settings = self.ensure_guild(guild_id)
        settings.modmail_category_id = category_id
        self._trigger_persist(settings.guild_id)

    def reset_modmail(self, guild_id: GuildKey) -> None:
        """Disable modmail, forget its channels and lift every block in the guild."""
        settings = self.ensure_guild(guild_id)
        settings.modmail_enabled = False
        settings.modmail_category_id = None
        settings.modmail_staff_role_id = None
        settings.modmail_log_channel_id = None
        blocked = list(self.blocked_users.pop(settings.guild_id, {}).keys())
        self._trigger_persist(settings.guild_id)
        for user_id in blocked:
            self._trigger_persist_block(settings.guild_id, user_id)

    # -------- Modmail blocks --------
    def is_user_blocked(self, guild_id: GuildKey, user_id: UserKey) -> bool:
        return UserID(user_id) in self.blocked_users.get(GuildID(guild_id), {})

    def get_block(self, guild_id: GuildKey, user_id: UserKey) -> Optional[BlockedUser]:
        return self.blocked_users.get(GuildID(guild_id), {}).get(UserID(user_id))

    def blocked_guild_ids(self, user_id: UserKey) -> List[GuildID]:
        """Return every guild in which ``user_id`` is blocked from modmail."""
        key = UserID(user_id)
        return [guild_id for guild_id, blocks in self.blocked_users.items() if key in blocks]

    def block_user(
        self,
        guild_id: GuildKey,
        user_id: UserKey,
        *,
        blocked_by_id: Optional[int] = None,
        reason: str = "No reason provided",
        when: Optional[datetime] = None,
    ) -> bool:
        """Block a member from this guild's modmail.

        Returns:
            False if the member was already blocked, True otherwise.
        """
        guild_key, user_key = GuildID(guild_id), UserID(user_id)
        if self.is_user_blocked(guild_key, user_key):
            return False
        self.blocked_users[guild_key][user_key] = BlockedUser(
            guild_id=guild_key,
            user_id=user_key,
            blocked_by_id=blocked_by_id,
            reason=reason,
            blocked_at=when or datetime.now(timezone.utc),
        )
        logger.info("[GUILD SETTINGS MANAGER] Blocked user %s from modmail in guild %s", user_key, guild_key)
        self._trigger_persist_block(guild_key, user_key)
        return True

    def unblock_user(self, guild_id: GuildKey, user_id: UserKey) -> bool:
        """Lift a block. Returns False if the member was not blocked."""
        guild_key, user_key = GuildID(guild_id), UserID(user_id)
        blocks = self.blocked_users.get(guild_key)
        if not blocks or user_key not in blocks:
            return False
        del blocks[user_key]
        if not blocks:
            del self.blocked_users[guild_key]
        logger.info("[GUILD SETTINGS MANAGER] Unblocked user %s from modmail in guild %s", user_key, guild_key)
        self._trigger_persist_block(guild_key, user_key)
        return True

    # -------- Server logs --------
    def complete_setup(self, guild_id: GuildKey, channel_id: int, categories: Iterable[LogCategory]) -> GuildSettings:
        """Set the main logging channel, enable ``categories`` and mark setup complete."""
        settings = self.ensure_guild(guild_id)
        settings.logging_channel_id = channel_id
        for category in categories:
            settings.enabled_categories[category.value] = True
        settings.setup_completed = True
        logger.debug("[GUILD SETTINGS MANAGER] Logging set up for guild %s in channel %s", settings.guild_id, channel_id)
        self._trigger_persist(settings.guild_id)
        return settings

    def set_category_enabled(self, guild_id: GuildKey, category: LogCategory, enabled: bool) -> bool:
        """Enable or disable a log category. Returns False when nothing changed."""
        settings = self.ensure_guild(guild_id)
        if settings.is_category_enabled(category) == bool(enabled):
            return False
        settings.enabled_categories[category.value] = bool(enabled)
        logger.debug(
            "[GUILD SETTINGS MANAGER] Set log category %s to %s for guild %s",
            category.value,
            enabled,
            settings.guild_id,
        )
        self._trigger_persist(settings.guild_id)
        return True

    def set_category_channel(self, guild_id: GuildKey, category: LogCategory, channel_id: int) -> None:
        settings = self.ensure_guild(guild_id)
        settings.category_channels[category.value] = channel_id
        self._trigger_persist(settings.guild_id)

    def reset_category_channel(self, guild_id: GuildKey, category: LogCategory) -> bool:
        """Route a category back to the main logging channel. Returns False if it had no override."""
        settings = self.ensure_guild(guild_id)
        if settings.category_channels.pop(category.value, None) is None:
            return False
        self._trigger_persist(settings.guild_id)
        return True

    def toggle_ignored_channel(self, guild_id: GuildKey, channel_id: int) -> bool:
        """Flip whether ``channel_id`` is ignored. Returns the new ignored state."""
        settings = self.ensure_guild(guild_id)
        now_ignored = self._toggle(settings.ignored_channels, channel_id)
        self._trigger_persist(settings.guild_id)
        return now_ignored

    def toggle_ignored_role(self, guild_id: GuildKey, role_id: int) -> bool:
        """Flip whether ``role_id`` is ignored. Returns the new ignored state."""
        settings = self.ensure_guild(guild_id)
        now_ignored = self._toggle(settings.ignored_roles, role_id)
        self._trigger_persist(settings.guild_id)
        return now_ignored

    @staticmethod
    def _toggle(values: List[int], value: int) -> bool:
        if value in values:
            values.remove(value)
            return False
        values.append(value)
        return True

    def reset_logging(self, guild_id: GuildKey) -> None:
        """Clear every logging setting; ``/setup`` has to be run again."""
        settings = self.ensure_guild(guild_id)
        settings.logging_channel_id = None
        settings.setup_completed = False
        settings.enabled_categories.clear()
        settings.category_channels.clear()
        settings.ignored_channels.clear()
        settings.ignored_roles.clear()
        self._trigger_persist(settings.guild_id)

    def reset_all(self, guild_id: GuildKey) -> None:
        self.reset_logging(guild_id)
        self.reset_modmail(guild_id)

    # -------- Persistence scheduling --------
    def _schedule(self, coro, description: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("[GUILD SETTINGS MANAGER] Cannot persist %s: no running event loop", description)
            return

        task = loop.create_task(coro)
        self._active_persists.add(task)

        def _cleanup(completed: asyncio.Task) -> None:
            self._active_persists.discard(completed)
            if completed.cancelled():
                logger.warning("[GUILD SETTINGS MANAGER] Persist of %s was cancelled", description)
                return
            try:
                if not completed.result():
                    logger.error("[GUILD SETTINGS MANAGER] Failed to persist %s to database", description)
            except Exception:
                logger.exception("[GUILD SETTINGS MANAGER] Error while persisting %s to database", description)

        task.add_done_callback(_cleanup)

    def _trigger_persist(self, guild_id: GuildID) -> None:
        """Schedule a best-effort persist of a single guild's settings to database."""
        self._schedule(self._persist_guild_async(guild_id), f"guild {guild_id}")

    def _trigger_persist_block(self, guild_id: GuildID, user_id: UserID) -> None:
        """Schedule a best-effort persist of one block's current state."""
        self._schedule(self._persist_block_async(guild_id, user_id), f"block of user {user_id} in guild {guild_id}")

    async def shutdown(self) -> None:
        """Await any pending persistence tasks during shutdown."""
        pending = list(self._active_persists)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._active_persists.clear()

        logger.info("[GUILD SETTINGS MANAGER] Guild settings manager shutdown complete")

    # -------- Persistence helpers --------
    async def _persist_guild_async(self, guild_id: GuildID) -> bool:
        """
        Persist a single guild's settings to the database.

        Args:
            guild_id: The guild ID to persist

        Returns:
            bool: True if successful, False otherwise
        """
        settings = self.guilds.get(guild_id)
        if settings is None:
            logger.warning("[GUILD SETTINGS MANAGER] Cannot persist guild %s: not in cache", guild_id)
            return False

        async with self._persist_lock:
            try:
                async with get_db().transaction() as db:
                    await GuildSettingsRepository.upsert(db, settings)
                logger.debug("[GUILD SETTINGS MANAGER] Persisted guild %s to database", guild_id)
                return True
            except Exception:
                logger.exception("[GUILD SETTINGS MANAGER] Failed to persist guild %s to database", guild_id)
                return False

    async def _persist_block_async(self, guild_id: GuildID, user_id: UserID) -> bool:
        """Write the cached state of one block: upsert if active, deactivate otherwise."""
        block = self.get_block(guild_id, user_id)
        async with self._persist_lock:
            try:
                async with get_db().transaction() as db:
                    if block is not None:
                        await BlockedUsersRepository.upsert(db, block)
                    else:
                        await BlockedUsersRepository.deactivate(db, guild_id, user_id)
                return True
            except Exception:
                logger.exception(
                    "[GUILD SETTINGS MANAGER] Failed to persist block of user %s in guild %s", user_id, guild_id
                )
                return False

    async def load_from_disk(self) -> bool:
        """Load persisted guild settings and active blocks from database into memory."""
        try:
            async with get_db().read() as db:
                guilds = await GuildSettingsRepository.get_all(db)
                blocks = await BlockedUsersRepository.get_active(db)
        except Exception:
            logger.exception("[GUILD SETTINGS MANAGER] Failed to load guild settings from database")
            return False

        self.guilds = dict(guilds)
        self.blocked_users.clear()
        for block in blocks:
            self.blocked_users[block.guild_id][block.user_id] = block

        if guilds:
            logger.info("[GUILD SETTINGS MANAGER] Loaded %d guild settings from database", len(guilds))
        if blocks:
            logger.info("[GUILD SETTINGS MANAGER] Loaded %d active modmail blocks from database", len(blocks))
        return bool(guilds or blocks)

    def snapshot(self, guild_id: GuildKey) -> Tuple[GuildSettings, List[BlockedUser]]:
        """Return the settings and active blocks of a guild, for status displays."""
        settings = self.ensure_guild(guild_id)
        return settings, list(self.blocked_users.get(settings.guild_id, {}).values())


# Global guild settings manager instance
guild_settings_manager = GuildSettingsManager()

"""
Server resolution for inbound direct messages.

Works out which guild a member's conversation belongs to: every guild with
modmail enabled that the bot can see and the member belongs to, minus guilds
that blocked the member. When several guilds qualify the member is prompted,
and their message waits here as a :class:`PendingServerSelection` until they
choose or the selection window closes.
"""

import asyncio
from typing import Dict, List, Optional, Tuple, Union

import discord

from herald.configuration.guild_settings import GuildSettingsManager
from herald.datatypes.discord_datatypes import GuildID, UserID
from herald.datatypes.modmail_datatypes import (
    Clock,
    PendingServerSelection,
    ResolutionOutcome,
    ResolutionResult,
    utcnow,
)
from herald.util.logger import get_logger

logger = get_logger("server_resolution")

# Discord caps select menus at 25 options
MAX_SELECTION_OPTIONS = 25


class ServerResolver:
    """Resolve guilds for direct messages and hold pending server selections."""

    def __init__(
        self,
        bot: discord.Bot,
        settings_manager: GuildSettingsManager,
        *,
        selection_timeout: float = 300.0,
        clock: Clock = utcnow,
    ) -> None:
        self.bot = bot
        self.settings_manager = settings_manager
        self.selection_timeout = selection_timeout
        self._clock = clock
        self._pending: Dict[UserID, PendingServerSelection] = {}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_guild(self, guild_id: Union[GuildID, int]) -> Optional[discord.Guild]:
        return self.bot.get_guild(int(guild_id))

    async def is_member(self, guild: discord.Guild, user_id: UserID) -> bool:
        """Return whether ``user_id`` belongs to ``guild``.

        Lookup failures (missing intents, API errors) count as "not a member".
        """
        if guild.get_member(user_id.to_int()) is not None:
            return True
        try:
            await guild.fetch_member(user_id.to_int())
            return True
        except discord.NotFound:
            return False
        except discord.HTTPException as exc:
            logger.debug("[SERVER RESOLUTION] Membership check for %s in %s failed: %s", user_id, guild.id, exc)
            return False

    async def member_guilds(self, user_id: UserID) -> Tuple[List[discord.Guild], List[discord.Guild]]:
        """Return ``(eligible, blocked)`` modmail guilds the member belongs to.

        Both lists are sorted by guild name so prompts are stable.
        """
        eligible: List[discord.Guild] = []
        blocked: List[discord.Guild] = []
        for guild_id in self.settings_manager.modmail_guild_ids():
            guild = self.get_guild(guild_id)
            if guild is None:
                continue
            if not await self.is_member(guild, user_id):
                continue
            if self.settings_manager.is_user_blocked(guild_id, user_id):
                blocked.append(guild)
            else:
                eligible.append(guild)

        def by_name(guild: discord.Guild) -> Tuple[str, int]:
            return guild.name.lower(), guild.id

        return sorted(eligible, key=by_name), sorted(blocked, key=by_name)

    async def resolve(self, user_id: UserID) -> ResolutionResult:
        """Decide which guild(s) a direct message from ``user_id`` can go to."""
        eligible, blocked = await self.member_guilds(user_id)

        if not eligible:
            outcome = ResolutionOutcome.BLOCKED if blocked else ResolutionOutcome.NO_ELIGIBLE_GUILDS
            logger.info("[SERVER RESOLUTION] No eligible modmail guild for user %s (%s)", user_id, outcome.value)
            return ResolutionResult(outcome)

        guild_ids = [GuildID.from_guild(guild) for guild in eligible]
        if len(guild_ids) == 1:
            return ResolutionResult(ResolutionOutcome.RESOLVED, guild_ids)

        if len(guild_ids) > MAX_SELECTION_OPTIONS:
            logger.warning(
                "[SERVER RESOLUTION] User %s is eligible for %d guilds, offering the first %d",
                user_id,
                len(guild_ids),
                MAX_SELECTION_OPTIONS,
            )
            guild_ids = guild_ids[:MAX_SELECTION_OPTIONS]
        return ResolutionResult(ResolutionOutcome.NEEDS_SELECTION, guild_ids)

    # ------------------------------------------------------------------
    # Pending selections
    # ------------------------------------------------------------------

    def get_pending(self, user_id: Union[UserID, int]) -> Optional[PendingServerSelection]:
        """Return the member's pending selection, dropping it if it has expired."""
        key = UserID(user_id)
        selection = self._pending.get(key)
        if selection is None:
            return None
        if selection.is_expired(self._clock(), self.selection_timeout):
            self._drop(key, selection)
            logger.debug("[SERVER RESOLUTION] Pending selection for user %s expired", key)
            return None
        return selection

    def store_pending(self, selection: PendingServerSelection) -> None:
        """Store a selection, replacing any earlier one, and schedule its expiry."""
        previous = self._pending.get(selection.user_id)
        if previous is not None and previous is not selection:
            self._drop(selection.user_id, previous)

        self._pending[selection.user_id] = selection
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Lazy expiry in get_pending still applies
            return
        selection.expiry_task = loop.create_task(
            self._expire_later(selection), name=f"herald-selection-expiry-{selection.user_id}"
        )

    def pop_pending(
        self,
        user_id: Union[UserID, int],
        *,
        prompt_message_id: Optional[int] = None,
    ) -> Optional[PendingServerSelection]:
        """Remove and return a live selection.

        With ``prompt_message_id`` set, only a selection created by that
        prompt is returned; an answer to an older prompt gets None.
        """
        key = UserID(user_id)
        selection = self.get_pending(key)
        if selection is None:
            return None
        if prompt_message_id is not None and selection.prompt_message_id != prompt_message_id:
            return None
        self._drop(key, selection)
        return selection

    def discard_pending(self, user_id: Union[UserID, int]) -> bool:
        key = UserID(user_id)
        selection = self._pending.get(key)
        if selection is None:
            return False
        self._drop(key, selection)
        return True

    def pending_count(self) -> int:
        return len(self._pending)

    def clear(self) -> None:
        for key, selection in list(self._pending.items()):
            self._drop(key, selection)

    def _drop(self, user_id: UserID, selection: PendingServerSelection) -> None:
        if self._pending.get(user_id) is selection:
            del self._pending[user_id]
        task = selection.expiry_task
        selection.expiry_task = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    async def _expire_later(self, selection: PendingServerSelection) -> None:
        await asyncio.sleep(self.selection_timeout)
        if self._pending.get(selection.user_id) is selection:
            self._drop(selection.user_id, selection)
            logger.debug("[SERVER RESOLUTION] Discarded unanswered selection for user %s", selection.user_id)

"""Per-guild configuration record shared by the settings manager and its repository."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from herald.datatypes.discord_datatypes import GuildID, UserID
from herald.datatypes.log_categories import LogCategory


@dataclass(slots=True)
class GuildSettings:
    """Persistent per-guild configuration values.

    Logging categories are stored by their string key so the JSON columns stay
    readable. A category is only enabled when explicitly set to True.
    """

    guild_id: GuildID
    logging_channel_id: Optional[int] = None
    setup_completed: bool = False
    enabled_categories: Dict[str, bool] = field(default_factory=dict)
    category_channels: Dict[str, int] = field(default_factory=dict)
    ignored_channels: List[int] = field(default_factory=list)
    ignored_roles: List[int] = field(default_factory=list)
    modmail_enabled: bool = False
    modmail_category_id: Optional[int] = None
    modmail_staff_role_id: Optional[int] = None
    modmail_log_channel_id: Optional[int] = None

    def is_category_enabled(self, category: LogCategory) -> bool:
        return self.enabled_categories.get(category.value) is True

    def category_channel_id(self, category: LogCategory) -> Optional[int]:
        """Channel for ``category``, falling back to the main logging channel."""
        return self.category_channels.get(category.value) or self.logging_channel_id

    def is_channel_ignored(self, channel_id: int) -> bool:
        return channel_id in self.ignored_channels

    def is_role_ignored(self, role_id: int) -> bool:
        return role_id in self.ignored_roles


@dataclass(slots=True)
class BlockedUser:
    """An active modmail block of one member in one guild."""

    guild_id: GuildID
    user_id: UserID
    blocked_by_id: Optional[int]
    reason: str
    blocked_at: datetime

"""
Server log categories.

Each category groups related guild events and can be enabled, disabled, and
routed to its own channel per guild. The display metadata can be overridden in
``config/app_config.yml`` under ``logging.categories``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping


class LogCategory(str, Enum):
    """Log category keys as stored in guild settings."""

    MESSAGES = "MESSAGES"
    MEMBERS = "MEMBERS"
    VOICE = "VOICE"
    ROLES = "ROLES"
    CHANNELS = "CHANNELS"
    SERVER = "SERVER"

    @classmethod
    def parse(cls, value: str) -> "LogCategory":
        """Parse a category key case-insensitively.

        Raises:
            ValueError: If ``value`` is not a known category.
        """
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise ValueError(f"Unknown log category: {value!r}") from None


@dataclass(frozen=True, slots=True)
class LogCategoryInfo:
    """Display metadata for a log category."""

    category: LogCategory
    name: str
    description: str
    emoji: str
    enabled_by_default: bool = True

    @property
    def label(self) -> str:
        return f"{self.emoji} {self.name}"


DEFAULT_CATEGORY_INFO: Dict[LogCategory, LogCategoryInfo] = {
    LogCategory.MESSAGES: LogCategoryInfo(
        LogCategory.MESSAGES, "Messages", "Logs message creations, edits, and deletions", "💬"
    ),
    LogCategory.MEMBERS: LogCategoryInfo(
        LogCategory.MEMBERS, "Members", "Logs member joins, leaves, and updates", "👥"
    ),
    LogCategory.VOICE: LogCategoryInfo(
        LogCategory.VOICE, "Voice", "Logs voice channel activity", "🔊"
    ),
    LogCategory.ROLES: LogCategoryInfo(
        LogCategory.ROLES, "Roles", "Logs role creations, deletions, and updates", "👑"
    ),
    LogCategory.CHANNELS: LogCategoryInfo(
        LogCategory.CHANNELS, "Channels", "Logs channel creations, deletions, and updates", "📝"
    ),
    LogCategory.SERVER: LogCategoryInfo(
        LogCategory.SERVER, "Server", "Logs server setting changes and other server-wide events", "🏰"
    ),
}


def build_category_catalogue(raw: Mapping[str, Any] | None) -> Dict[LogCategory, LogCategoryInfo]:
    """Merge configured category metadata over the defaults.

    Unknown keys and non-mapping entries are ignored so a typo in the config
    file cannot remove a category.
    """
    catalogue = dict(DEFAULT_CATEGORY_INFO)
    if not isinstance(raw, Mapping):
        return catalogue

    for key, entry in raw.items():
        try:
            category = LogCategory.parse(str(key))
        except ValueError:
            continue
        if not isinstance(entry, Mapping):
            continue
        default = catalogue[category]
        catalogue[category] = LogCategoryInfo(
            category=category,
            name=str(entry.get("name", default.name)),
            description=str(entry.get("description", default.description)),
            emoji=str(entry.get("emoji", default.emoji)),
            enabled_by_default=bool(entry.get("enabled", default.enabled_by_default)),
        )
    return catalogue

from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict

import discord
import yaml

from herald.datatypes.log_categories import LogCategory, LogCategoryInfo, build_category_catalogue
from herald.datatypes.modmail_datatypes import IdleTimeoutPolicy, PendingSelectionPolicy
from herald.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_BOT_NAME = "Monkey Bytes"
DEFAULT_BOT_SLOGAN = "The Royal Court"
DEFAULT_BOT_COLOR = 0xFFD700


class AppConfig:
    """File-lock based accessor around the YAML-based application configuration.

    The class caches contents of ``./config/app_config.yml``, exposes dictionary-like
    access helpers, and typed shortcuts for bot branding, modmail behaviour and
    the logging category catalogue. Uses fcntl file locks for safe concurrent
    access across processes.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            if data is not None:
                logger.error("[APP CONFIGURATION] Config %s must be a mapping, got %s", self.config_path, type(data).__name__)
            return {}
        return data

    def _section(self, key: str) -> Dict[str, Any]:
        value = self._data.get(key, {})
        return value if isinstance(value, dict) else {}

    @staticmethod
    def _number(section: Dict[str, Any], key: str, default: float) -> float:
        try:
            return float(section.get(key, default))
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Invalid number for %s: %r, using %s", key, section.get(key), default)
            return default

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns the raw mapping that was loaded (an empty dict on error).
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping.

        The returned dict is the internal cache (shallow reference). Callers
        should not mutate it.
        """
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # Bot branding
    # --------------------------
    @property
    def bot_name(self) -> str:
        return str(self._section("bot").get("name") or DEFAULT_BOT_NAME)

    @property
    def bot_slogan(self) -> str:
        return str(self._section("bot").get("slogan") or DEFAULT_BOT_SLOGAN)

    @property
    def embed_color(self) -> discord.Colour:
        """Return the brand colour. Accepts ``"#FFD700"``, ``"FFD700"`` or an int."""
        raw = self._section("bot").get("color", DEFAULT_BOT_COLOR)
        try:
            value = int(raw.lstrip("#"), 16) if isinstance(raw, str) else int(raw)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Invalid bot colour %r, using default", raw)
            value = DEFAULT_BOT_COLOR
        return discord.Colour(value)

    @property
    def embed_footer(self) -> str:
        footer = self._section("embeds").get("footer")
        return str(footer) if footer else f"{self.bot_name} | {self.bot_slogan}"

    # --------------------------
    # Modmail
    # --------------------------
    @property
    def idle_timeout_policy(self) -> IdleTimeoutPolicy:
        """Return the idle timeout offsets for modmail threads.

        Invalid combinations fall back to the 30s / 50s / 60s defaults with a
        10 second channel deletion grace.
        """
        section = self._section("modmail")
        try:
            return IdleTimeoutPolicy(
                warning_after=self._number(section, "warning_after_seconds", 30.0),
                final_warning_after=self._number(section, "final_warning_after_seconds", 50.0),
                close_after=self._number(section, "close_after_seconds", 60.0),
                deletion_grace=self._number(section, "channel_deletion_delay_seconds", 10.0),
            )
        except ValueError as exc:
            logger.error("[APP CONFIGURATION] %s; using default idle timeouts", exc)
            return IdleTimeoutPolicy()

    @property
    def selection_timeout(self) -> float:
        """Seconds a server selection prompt stays valid. Default 300."""
        return self._number(self._section("modmail"), "selection_timeout_seconds", 300.0)

    @property
    def blocked_notice_cooldown(self) -> float:
        """Seconds between two 'you are blocked' notices to one member. Default 3600."""
        return self._number(self._section("modmail"), "blocked_notice_cooldown_seconds", 3600.0)

    @property
    def modmail_category_name(self) -> str:
        return str(self._section("modmail").get("category_name") or "MODMAIL TICKETS")

    @property
    def modmail_channel_prefix(self) -> str:
        return str(self._section("modmail").get("channel_prefix") or "modmail-")

    @property
    def support_role_name(self) -> str:
        return str(self._section("modmail").get("support_role_name") or "Staff")

    @property
    def pending_selection_policy(self) -> PendingSelectionPolicy:
        return PendingSelectionPolicy.parse(self._section("modmail").get("pending_selection_policy", "reprompt"))

    @property
    def support_guild_id(self) -> int | None:
        """Guild used by the ``default_guild`` pending selection policy.

        ``SUPPORT_GUILD_ID`` in the environment takes precedence over the file.
        """
        raw = os.getenv("SUPPORT_GUILD_ID") or self._section("modmail").get("support_guild_id")
        if raw in (None, ""):
            return None
        try:
            return int(raw)
        except (TypeError, ValueError):
            logger.warning("[APP CONFIGURATION] Invalid support guild id %r", raw)
            return None

    # --------------------------
    # Server logs
    # --------------------------
    @property
    def log_categories(self) -> Dict[LogCategory, LogCategoryInfo]:
        return build_category_catalogue(self._section("logging").get("categories"))

    @property
    def default_log_channel_name(self) -> str:
        return str(self._section("logging").get("default_channel_name") or "monkey-logs")


# Shared application-wide configuration instance
app_config = AppConfig(CONFIG_PATH)

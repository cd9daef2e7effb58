from typing import List, Optional

import discord

from herald.configuration.app_configuration import app_config
from herald.configuration.guild_settings import guild_settings_manager
from herald.datatypes.log_categories import LogCategory
from herald.util.embeds import INFO_COLOR, create_embed
from herald.util.logger import get_logger

logger = get_logger("logging_ui")

CATEGORY_UI_ORDER: tuple[LogCategory, ...] = (
    LogCategory.MESSAGES,
    LogCategory.MEMBERS,
    LogCategory.VOICE,
    LogCategory.ROLES,
    LogCategory.CHANNELS,
    LogCategory.SERVER,
)


def _channel_mention(channel_id: Optional[int]) -> str:
    return f"<#{channel_id}>" if channel_id else "Not set"


def build_categories_embed(guild_id: int) -> discord.Embed:
    """Create an embed listing every log category and whether it is on."""
    settings = guild_settings_manager.get_guild_settings(guild_id)
    catalogue = app_config.log_categories

    lines: List[str] = []
    for category in CATEGORY_UI_ORDER:
        info = catalogue[category]
        state = "✅ Enabled" if settings.is_category_enabled(category) else "❌ Disabled"
        lines.append(f"{info.emoji} **{info.name}** - {state}\n{info.description}")

    return create_embed(
        title="📋 Log Categories",
        description="\n\n".join(lines),
        color=INFO_COLOR,
        fields=[("Main Log Channel", _channel_mention(settings.logging_channel_id), False)],
        footer="Use the menu below to choose which categories are logged.",
    )


def build_logs_overview_embed(guild_id: int) -> discord.Embed:
    """Create an embed showing where each category is logged."""
    settings = guild_settings_manager.get_guild_settings(guild_id)
    catalogue = app_config.log_categories

    fields = []
    for category in CATEGORY_UI_ORDER:
        info = catalogue[category]
        if settings.is_category_enabled(category):
            channel_id = settings.category_channel_id(category)
            value = _channel_mention(channel_id)
            if category.value in settings.category_channels:
                value += " (custom)"
        else:
            value = "Disabled"
        fields.append((info.label, value, True))

    ignored_channels = ", ".join(f"<#{cid}>" for cid in settings.ignored_channels) or "None"
    ignored_roles = ", ".join(f"<@&{rid}>" for rid in settings.ignored_roles) or "None"
    fields.append(("Ignored Channels", ignored_channels, False))
    fields.append(("Ignored Roles", ignored_roles, False))

    return create_embed(
        title="📊 Logging Configuration",
        description=f"Main log channel: {_channel_mention(settings.logging_channel_id)}",
        color=INFO_COLOR,
        fields=fields,
    )


class CategorySelect(discord.ui.Select):
    """Multi-select whose selected options are the enabled categories."""

    def __init__(self, guild_id: int):
        settings = guild_settings_manager.get_guild_settings(guild_id)
        catalogue = app_config.log_categories
        options = [
            discord.SelectOption(
                label=catalogue[category].name,
                value=category.value,
                description=catalogue[category].description[:100],
                emoji=catalogue[category].emoji,
                default=settings.is_category_enabled(category),
            )
            for category in CATEGORY_UI_ORDER
        ]
        super().__init__(
            placeholder="Select the categories to log",
            min_values=0,
            max_values=len(options),
            options=options,
        )

    async def callback(self, interaction: discord.Interaction) -> None:
        view: CategoriesView = self.view  # type: ignore[assignment]

        if not view.can_manage(interaction.user):
            await interaction.response.send_message(
                "You need the Manage Server permission to change logging settings.",
                ephemeral=True,
            )
            return

        selected = {LogCategory.parse(value) for value in self.values}
        changed = 0
        for category in CATEGORY_UI_ORDER:
            if guild_settings_manager.set_category_enabled(view.guild_id, category, category in selected):
                changed += 1
        await view.refresh_message(interaction, flash=f"Updated {changed} log categor{'y' if changed == 1 else 'ies'}.")


class CategoriesView(discord.ui.View):
    """Interactive overview for toggling log categories."""

    def __init__(self, guild_id: int, *, timeout_seconds: int = 300):
        super().__init__(timeout=timeout_seconds)
        self.guild_id = guild_id
        self.refresh_items()

    def refresh_items(self) -> None:
        self.clear_items()
        self.add_item(CategorySelect(self.guild_id))

    def can_manage(self, member: Optional[discord.abc.Snowflake]) -> bool:
        """Check whether the interacting user can manage guild settings."""
        if member is None:
            return False
        permissions = getattr(member, "guild_permissions", None)
        return bool(getattr(permissions, "manage_guild", False) or getattr(permissions, "administrator", False))

    async def refresh_message(self, interaction: discord.Interaction, *, flash: Optional[str] = None) -> None:
        """Refresh the embed and the menu on the active message."""
        self.refresh_items()
        embed = build_categories_embed(self.guild_id)
        try:
            await interaction.response.edit_message(content=flash, embed=embed, view=self)
        except discord.HTTPException as exc:
            logger.debug("[LOGGING UI] Could not refresh categories panel: %s", exc)

    async def on_timeout(self) -> None:  # pragma: no cover - relies on Discord timers
        for child in self.children:
            child.disabled = True
        if self.message is not None:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass

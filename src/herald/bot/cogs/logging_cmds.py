"""
Logging cog: configure which server events are logged and where.

Commands
- /setup channel: pick (or create) the main log channel and finish setup
- /logs view | setchannel | reset: per-category channel routing
- /enable, /disable: toggle a single category
- /categories: interactive category panel
- /ignore channel | role | list: events from these are never logged
- /reset all | logging | modmail: wipe configuration

Everything needs Administrator or Manage Server, and everything except
/setup needs setup to have been completed. Responses are ephemeral.
"""

from typing import Optional

import discord
from discord import Option
from discord.ext import commands

from herald.configuration.app_configuration import app_config
from herald.configuration.guild_settings import guild_settings_manager
from herald.datatypes.log_categories import DEFAULT_CATEGORY_INFO, LogCategory
from herald.modmail.modmail_service import ModmailService
from herald.ui.logging_ui import CategoriesView, build_categories_embed, build_logs_overview_embed
from herald.util.discord_utils import has_any_permission
from herald.util.embeds import INFO_COLOR, create_embed, error_embed, success_embed
from herald.util.logger import get_logger

logger = get_logger("logging_cog")

SETUP_REQUIRED_MESSAGE = "You need to set up the logging system first. Use `/setup` to get started."
NO_PERMISSION_MESSAGE = "You need the Administrator or Manage Server permission to use this command."
GUILD_ONLY_MESSAGE = "This command can only be used in a server."

CATEGORY_CHOICES = [
    discord.OptionChoice(name=info.name, value=category.value) for category, info in DEFAULT_CATEGORY_INFO.items()
]


class LoggingCog(commands.Cog):
    """Server log configuration commands."""

    setup_group = discord.SlashCommandGroup("setup", "Set up the logging system")
    logs = discord.SlashCommandGroup("logs", "View and route log categories")
    ignore = discord.SlashCommandGroup("ignore", "Exclude channels and roles from logging")
    reset = discord.SlashCommandGroup("reset", "Reset server configuration")

    def __init__(self, discord_bot_instance, modmail_service: Optional[ModmailService] = None):
        self.discord_bot_instance = discord_bot_instance
        self.modmail_service = modmail_service
        logger.info("Logging cog loaded")

    async def _check_access(self, ctx: discord.ApplicationContext, *, require_setup: bool = True) -> bool:
        if ctx.guild is None:
            await ctx.respond(GUILD_ONLY_MESSAGE, ephemeral=True)
            return False
        if not has_any_permission(ctx, "manage_guild"):
            await ctx.respond(NO_PERMISSION_MESSAGE, ephemeral=True)
            return False
        if require_setup and not guild_settings_manager.get_guild_settings(ctx.guild.id).setup_completed:
            await ctx.respond(SETUP_REQUIRED_MESSAGE, ephemeral=True)
            return False
        return True

    @staticmethod
    def _label(category: LogCategory) -> str:
        return app_config.log_categories[category].label

    # -------------------- /setup --------------------

    @setup_group.command(name="channel", description="Choose or create the main log channel.")
    async def setup_channel(
        self,
        ctx: discord.ApplicationContext,
        channel: Option(discord.TextChannel, "Existing channel to log into.", required=False, default=None),  # type: ignore
        create: Option(bool, "Create a new private log channel.", default=False),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx, require_setup=False):
            return
        await ctx.defer(ephemeral=True)

        if channel is None or create:
            name = app_config.default_log_channel_name
            overwrites = {
                ctx.guild.default_role: discord.PermissionOverwrite(view_channel=False),
                ctx.guild.me: discord.PermissionOverwrite(view_channel=True, send_messages=True, embed_links=True),
            }
            try:
                channel = await ctx.guild.create_text_channel(name, overwrites=overwrites, reason="Herald log channel")
            except discord.HTTPException as exc:
                logger.error(f"Failed to create log channel in guild {ctx.guild.id}: {exc}")
                await ctx.send_followup(embed=error_embed(f"Could not create `#{name}`."), ephemeral=True)
                return

        categories = [info.category for info in app_config.log_categories.values() if info.enabled_by_default]
        guild_settings_manager.complete_setup(ctx.guild.id, channel.id, categories)
        logger.info(f"Logging set up in guild {ctx.guild.name} ({ctx.guild.id}) -> #{channel.name}")

        enabled = "\n".join(self._label(category) for category in categories) or "None"
        await ctx.send_followup(
            embed=create_embed(
                title="✅ Logging Set Up",
                description=f"Server events will be logged in {channel.mention}.",
                color=INFO_COLOR,
                fields=[("Enabled Categories", enabled, False)],
            ),
            ephemeral=True,
        )

    # -------------------- /logs --------------------

    @logs.command(name="view", description="Show where each category is logged.")
    async def logs_view(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        await ctx.respond(embed=build_logs_overview_embed(ctx.guild.id), ephemeral=True)

    @logs.command(name="setchannel", description="Send one category to its own channel.")
    async def logs_setchannel(
        self,
        ctx: discord.ApplicationContext,
        category: Option(str, "Log category.", choices=CATEGORY_CHOICES),  # type: ignore
        channel: Option(discord.TextChannel, "Channel for this category.", required=True),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx):
            return
        parsed = LogCategory.parse(category)
        guild_settings_manager.set_category_channel(ctx.guild.id, parsed, channel.id)
        await ctx.respond(
            embed=success_embed(f"{self._label(parsed)} events will be logged in {channel.mention}."),
            ephemeral=True,
        )

    @logs.command(name="reset", description="Send a category back to the main log channel.")
    async def logs_reset(
        self,
        ctx: discord.ApplicationContext,
        category: Option(str, "Log category.", choices=CATEGORY_CHOICES),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx):
            return
        parsed = LogCategory.parse(category)
        if not guild_settings_manager.reset_category_channel(ctx.guild.id, parsed):
            await ctx.respond(
                embed=error_embed(f"{self._label(parsed)} already uses the main log channel."), ephemeral=True
            )
            return
        await ctx.respond(
            embed=success_embed(f"{self._label(parsed)} events will be logged in the main log channel."),
            ephemeral=True,
        )

    # -------------------- /enable, /disable, /categories --------------------

    @commands.slash_command(name="enable", description="Enable a log category.")
    async def enable(
        self,
        ctx: discord.ApplicationContext,
        category: Option(str, "Log category.", choices=CATEGORY_CHOICES),  # type: ignore
    ) -> None:
        await self._set_category(ctx, category, True)

    @commands.slash_command(name="disable", description="Disable a log category.")
    async def disable(
        self,
        ctx: discord.ApplicationContext,
        category: Option(str, "Log category.", choices=CATEGORY_CHOICES),  # type: ignore
    ) -> None:
        await self._set_category(ctx, category, False)

    async def _set_category(self, ctx: discord.ApplicationContext, category: str, enabled: bool) -> None:
        if not await self._check_access(ctx):
            return
        parsed = LogCategory.parse(category)
        state = "enabled" if enabled else "disabled"
        if not guild_settings_manager.set_category_enabled(ctx.guild.id, parsed, enabled):
            await ctx.respond(embed=error_embed(f"{self._label(parsed)} is already {state}."), ephemeral=True)
            return
        await ctx.respond(embed=success_embed(f"{self._label(parsed)} logging has been **{state}**."), ephemeral=True)

    @commands.slash_command(name="categories", description="Open a panel to choose which categories are logged.")
    async def categories(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        view = CategoriesView(ctx.guild.id)
        await ctx.respond(embed=build_categories_embed(ctx.guild.id), view=view, ephemeral=True)

    # -------------------- /ignore --------------------

    @ignore.command(name="channel", description="Toggle ignoring a channel.")
    async def ignore_channel(
        self,
        ctx: discord.ApplicationContext,
        channel: Option(discord.abc.GuildChannel, "Channel to toggle.", required=True),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx):
            return
        ignored = guild_settings_manager.toggle_ignored_channel(ctx.guild.id, channel.id)
        verb = "now ignored" if ignored else "no longer ignored"
        await ctx.respond(embed=success_embed(f"{channel.mention} is {verb}."), ephemeral=True)

    @ignore.command(name="role", description="Toggle ignoring members with a role.")
    async def ignore_role(
        self,
        ctx: discord.ApplicationContext,
        role: Option(discord.Role, "Role to toggle.", required=True),  # type: ignore
    ) -> None:
        if not await self._check_access(ctx):
            return
        ignored = guild_settings_manager.toggle_ignored_role(ctx.guild.id, role.id)
        verb = "now ignored" if ignored else "no longer ignored"
        await ctx.respond(embed=success_embed(f"{role.mention} is {verb}."), ephemeral=True)

    @ignore.command(name="list", description="List ignored channels and roles.")
    async def ignore_list(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        settings = guild_settings_manager.get_guild_settings(ctx.guild.id)
        channels = "\n".join(f"<#{channel_id}>" for channel_id in settings.ignored_channels) or "None"
        roles = "\n".join(f"<@&{role_id}>" for role_id in settings.ignored_roles) or "None"
        await ctx.respond(
            embed=create_embed(
                title="🙈 Ignored Channels and Roles",
                color=INFO_COLOR,
                fields=[("Channels", channels, True), ("Roles", roles, True)],
            ),
            ephemeral=True,
        )

    # -------------------- /reset --------------------

    @reset.command(name="logging", description="Clear all logging settings.")
    async def reset_logging(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        guild_settings_manager.reset_logging(ctx.guild.id)
        await ctx.respond(embed=success_embed("Logging settings have been reset. Run `/setup` to log again."), ephemeral=True)

    @reset.command(name="modmail", description="Disable modmail and clear its settings and blocks.")
    async def reset_modmail(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        await ctx.defer(ephemeral=True)
        await self._reset_modmail(ctx)
        await ctx.send_followup(embed=success_embed("Modmail settings have been reset."), ephemeral=True)

    @reset.command(name="all", description="Reset every setting for this server.")
    async def reset_all(self, ctx: discord.ApplicationContext) -> None:
        if not await self._check_access(ctx):
            return
        await ctx.defer(ephemeral=True)
        await self._reset_modmail(ctx)
        guild_settings_manager.reset_logging(ctx.guild.id)
        logger.info(f"All settings reset in guild {ctx.guild.name} ({ctx.guild.id}) by {ctx.author}")
        await ctx.send_followup(embed=success_embed("All settings for this server have been reset."), ephemeral=True)

    async def _reset_modmail(self, ctx: discord.ApplicationContext) -> None:
        if self.modmail_service is not None:
            await self.modmail_service.close_guild_threads(ctx.guild.id, ctx.author, "Modmail settings were reset")
        guild_settings_manager.reset_modmail(ctx.guild.id)


def setup(discord_bot_instance, modmail_service: Optional[ModmailService] = None):
    """Register the LoggingCog with the bot."""
    discord_bot_instance.add_cog(LoggingCog(discord_bot_instance, modmail_service))

from typing import TYPE_CHECKING, Optional, Sequence

import discord

from herald.modmail.errors import ModmailError
from herald.util.embeds import error_embed, success_embed
from herald.util.logger import get_logger

if TYPE_CHECKING:
    from herald.modmail.modmail_service import ModmailService

logger = get_logger("modmail_ui")

SERVER_SELECT_CUSTOM_ID = "modmail_server_select"
REPLY_MAX_LENGTH = 4000


class ServerSelect(discord.ui.Select):
    """Dropdown listing the guilds a member can contact."""

    def __init__(self, guilds: Sequence[discord.Guild]):
        options = [
            discord.SelectOption(
                label=guild.name[:100],
                value=str(guild.id),
                description=f"Send your message to {guild.name}"[:100],
                emoji="📬",
            )
            for guild in guilds
        ]
        super().__init__(
            custom_id=SERVER_SELECT_CUSTOM_ID,
            placeholder="Select a server to contact",
            min_values=1,
            max_values=1,
            options=options,
        )

    async def callback(self, interaction: discord.Interaction) -> None:
        view: ServerSelectView = self.view  # type: ignore[assignment]
        await view.complete(interaction, int(self.values[0]))


class ServerSelectView(discord.ui.View):
    """Server selection prompt sent to members of several modmail guilds."""

    def __init__(self, service: "ModmailService", guilds: Sequence[discord.Guild], *, timeout: float = 300):
        super().__init__(timeout=timeout)
        self.service = service
        self.add_item(ServerSelect(guilds))

    def disable_all(self) -> None:
        for child in self.children:
            child.disabled = True

    async def complete(self, interaction: discord.Interaction, guild_id: int) -> None:
        """Hand the choice to the modmail service and report the outcome."""
        await interaction.response.defer()
        prompt_id: Optional[int] = interaction.message.id if interaction.message is not None else None
        text = await self.service.handle_selection(interaction.user.id, guild_id, prompt_id)

        self.disable_all()
        self.stop()
        try:
            await interaction.edit_original_response(view=self)
        except discord.HTTPException as exc:
            logger.debug("[MODMAIL UI] Could not disable server selection prompt: %s", exc)
        await interaction.followup.send(content=text)

    async def on_timeout(self) -> None:  # pragma: no cover - relies on Discord timers
        self.disable_all()
        if self.message is not None:
            try:
                await self.message.edit(view=self)
            except discord.HTTPException:
                pass


class ReplyModal(discord.ui.Modal):
    """Modal for writing a longer staff reply from a thread channel."""

    def __init__(self, service: "ModmailService", channel_id: int):
        super().__init__(title="Reply to User")
        self.service = service
        self.channel_id = channel_id
        self.add_item(
            discord.ui.InputText(
                label="Message",
                placeholder="Type your reply to the user...",
                style=discord.InputTextStyle.long,
                max_length=REPLY_MAX_LENGTH,
                required=True,
            )
        )

    async def callback(self, interaction: discord.Interaction) -> None:
        content = self.children[0].value or ""
        await interaction.response.defer(ephemeral=True)
        try:
            await self.service.staff_reply(self.channel_id, interaction.user, content)
        except ModmailError as exc:
            await interaction.followup.send(embed=error_embed(str(exc)), ephemeral=True)
            return
        await interaction.followup.send(embed=success_embed("Your reply has been sent to the user."), ephemeral=True)

"""Tests for the modmail selection prompt and reply modal."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from herald.modmail.errors import ModmailError
from herald.modmail.modmail_service import ModmailService
from herald.ui.modmail_ui import ReplyModal, ServerSelectView

from conftest import http_error


@pytest.fixture
def service():
    return MagicMock(spec=ModmailService)


def make_interaction(message_id=None):
    return SimpleNamespace(
        user=SimpleNamespace(id=7),
        message=SimpleNamespace(id=message_id) if message_id else None,
        response=SimpleNamespace(defer=AsyncMock()),
        edit_original_response=AsyncMock(),
        followup=SimpleNamespace(send=AsyncMock()),
    )


async def test_selection_view_lists_guilds(service):
    guilds = [SimpleNamespace(id=1, name="Alpha"), SimpleNamespace(id=2, name="Beta")]

    view = ServerSelectView(service, guilds)

    (select,) = view.children
    assert [option.label for option in select.options] == ["Alpha", "Beta"]
    assert [option.value for option in select.options] == ["1", "2"]


async def test_selection_completes_and_disables(service):
    service.handle_selection.return_value = "Your message has been sent to **Beta**."
    view = ServerSelectView(service, [SimpleNamespace(id=2, name="Beta")])
    interaction = make_interaction(message_id=55)

    await view.complete(interaction, 2)

    service.handle_selection.assert_awaited_once_with(7, 2, 55)
    assert all(child.disabled for child in view.children)
    interaction.edit_original_response.assert_awaited_once_with(view=view)
    interaction.followup.send.assert_awaited_once_with(content="Your message has been sent to **Beta**.")


async def test_selection_survives_uneditable_prompt(service):
    service.handle_selection.return_value = "done"
    view = ServerSelectView(service, [SimpleNamespace(id=2, name="Beta")])
    interaction = make_interaction()
    interaction.edit_original_response.side_effect = http_error()

    await view.complete(interaction, 2)

    service.handle_selection.assert_awaited_once_with(7, 2, None)
    interaction.followup.send.assert_awaited_once_with(content="done")


async def test_reply_modal_sends_reply(service):
    modal = ReplyModal(service, 1234)
    modal.children[0] = SimpleNamespace(value="On it")
    interaction = make_interaction()

    await modal.callback(interaction)

    service.staff_reply.assert_awaited_once_with(1234, interaction.user, "On it")
    assert interaction.followup.send.call_args.kwargs["embed"].title == "✅ Success"


async def test_reply_modal_reports_failure(service):
    service.staff_reply.side_effect = ModmailError("This channel is not an active modmail thread.")
    modal = ReplyModal(service, 1234)
    modal.children[0] = SimpleNamespace(value="On it")
    interaction = make_interaction()

    await modal.callback(interaction)

    embed = interaction.followup.send.call_args.kwargs["embed"]
    assert embed.description == "This channel is not an active modmail thread."

"""Tests for modmail embeds and channel naming."""

import pytest

from herald.datatypes.discord_datatypes import UserID
from herald.datatypes.modmail_datatypes import AttachmentRef, IdleStage, InboundMessage
from herald.modmail import relay_formatting

from conftest import START


class TestChannelNames:
    def test_lowercases_and_prefixes(self):
        assert relay_formatting.thread_channel_name("modmail-", "RoyalJester", 1) == "modmail-royaljester"

    def test_collapses_unsupported_characters(self):
        assert relay_formatting.thread_channel_name("modmail-", "Sir Lancelot!!", 1) == "modmail-sir-lancelot"

    def test_falls_back_to_user_id(self):
        assert relay_formatting.thread_channel_name("modmail-", "👑👑", 1234) == "modmail-1234"

    def test_respects_discord_length_limit(self):
        assert len(relay_formatting.thread_channel_name("modmail-", "a" * 200, 1)) == 100


class TestAttachments:
    def test_none_without_attachments(self):
        assert relay_formatting.format_attachments(()) is None

    def test_links_each_attachment(self):
        refs = [AttachmentRef("a.png", "https://cdn.example/a.png"), AttachmentRef("b.txt", "https://cdn.example/b.txt")]
        assert relay_formatting.format_attachments(refs) == (
            "[a.png](https://cdn.example/a.png)\n[b.txt](https://cdn.example/b.txt)"
        )

    def test_truncates_to_field_limit(self):
        refs = [AttachmentRef(f"file{i}.png", "https://cdn.example/" + "x" * 80) for i in range(30)]
        value = relay_formatting.format_attachments(refs)
        assert len(value) <= relay_formatting.FIELD_VALUE_LIMIT
        assert value.endswith("more")


def test_inbound_relay_embed():
    message = InboundMessage(
        author_id=UserID(42),
        author_tag="RoyalJester",
        author_name="RoyalJester",
        content="",
        account_created_at=START,
        attachments=(AttachmentRef("a.png", "https://cdn.example/a.png"),),
    )
    embed = relay_formatting.inbound_relay_embed(message)

    assert embed.author.name == "RoyalJester"
    assert embed.description == relay_formatting.EMPTY_CONTENT_PLACEHOLDER
    assert embed.fields[0].name == "Attachments"
    assert embed.footer.text == "User ID: 42"


def test_staff_reply_embeds_share_layout():
    dm, echo = relay_formatting.staff_reply_embeds("Duchess", None, "On it")

    assert dm.author.name == echo.author.name == "Duchess (Staff)"
    assert dm.description == echo.description == "On it"
    assert dm.footer.text == echo.footer.text == "Staff Reply"
    assert dm.colour != echo.colour


def test_long_content_is_truncated():
    dm, _ = relay_formatting.staff_reply_embeds("Duchess", None, "x" * 5000)
    assert len(dm.description) == relay_formatting.DESCRIPTION_LIMIT


def test_thread_header_embed():
    message = InboundMessage(
        author_id=UserID(42),
        author_tag="RoyalJester",
        author_name="RoyalJester",
        content="hello",
        account_created_at=START,
    )
    embed = relay_formatting.thread_header_embed(message)

    assert embed.title == "New Modmail Thread - RoyalJester"
    fields = {field.name: field.value for field in embed.fields}
    assert fields["User"] == "RoyalJester (42)"
    assert fields["Account Created"] == f"<t:{int(START.timestamp())}:R>"
    assert "/modmail close" in fields["Commands"]


def test_idle_warning_embeds():
    channel, dm = relay_formatting.idle_warning_embeds(IdleStage.WARNING, 30)
    assert channel.title == "⚠️ Inactivity Warning"
    assert "30 seconds" in dm.description

    channel, dm = relay_formatting.idle_warning_embeds(IdleStage.FINAL_WARNING, 10)
    assert channel.title == "⚠️ Final Warning"
    assert "10 seconds" in channel.description

    with pytest.raises(ValueError):
        relay_formatting.idle_warning_embeds(IdleStage.AUTO_CLOSE, 0)


def test_auto_close_embeds_describe_idle_span():
    channel, dm = relay_formatting.auto_close_embeds("RoyalJester", 42, 95, 60)
    assert "1 minute of inactivity" in channel.description
    assert "1 minute of inactivity" in dm.description
    assert {field.name: field.value for field in channel.fields}["Thread Duration"] == "1m 35s"

    channel, _ = relay_formatting.auto_close_embeds("RoyalJester", 42, 95, 90)
    assert "1m 30s of inactivity" in channel.description


def test_deletion_notice():
    assert relay_formatting.deletion_notice(10) == "This channel will be deleted in 10 seconds."

"""Exceptions raised inside the modmail relay.

They never reach Discord users directly: :class:`ModmailService` turns them
into a log entry plus a short reply.
"""


class ModmailError(Exception):
    """Base class for modmail failures."""


class ThreadCreationError(ModmailError):
    """The support channel (or its category) could not be created."""


class StaleChannelError(ModmailError):
    """A thread's support channel no longer exists."""

    def __init__(self, channel_id: int):
        super().__init__(f"Modmail channel {channel_id} no longer exists")
        self.channel_id = channel_id

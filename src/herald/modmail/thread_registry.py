"""
In-memory registry of open modmail threads, keyed by member.

The registry lives as long as the process; nothing here is persisted. Removing
a record always cancels its idle timers first, so no timer outlives its record.
"""

from typing import Dict, Iterator, List, Optional, Union

from herald.datatypes.discord_datatypes import ChannelID, UserID
from herald.datatypes.modmail_datatypes import ThreadRecord, ThreadStatus
from herald.util.logger import get_logger

logger = get_logger("thread_registry")


class ThreadRegistry:
    """Map of ``user_id -> ThreadRecord`` with at most one record per member."""

    def __init__(self) -> None:
        self._threads: Dict[UserID, ThreadRecord] = {}

    def __len__(self) -> int:
        return len(self._threads)

    def __contains__(self, user_id: object) -> bool:
        return user_id in self._threads

    def __iter__(self) -> Iterator[ThreadRecord]:
        return iter(list(self._threads.values()))

    def get(self, user_id: Union[UserID, int]) -> Optional[ThreadRecord]:
        return self._threads.get(UserID(user_id))

    def find_by_channel(self, channel_id: Union[ChannelID, int]) -> Optional[ThreadRecord]:
        """Return the record whose support channel is ``channel_id``."""
        key = ChannelID(channel_id)
        for record in self._threads.values():
            if record.channel_id == key:
                return record
        return None

    def add(self, record: ThreadRecord) -> None:
        """Register a new open thread.

        Raises:
            ValueError: If the member already has a thread.
        """
        if record.user_id in self._threads:
            raise ValueError(f"User {record.user_id} already has an open modmail thread")
        self._threads[record.user_id] = record
        logger.debug("[THREAD REGISTRY] Registered thread %s for user %s", record.channel_id, record.user_id)

    def remove(self, user_id: Union[UserID, int], *, expected: Optional[ThreadRecord] = None) -> Optional[ThreadRecord]:
        """Close and remove a member's record.

        Timers are cancelled before the record leaves the registry. With
        ``expected`` set, nothing happens unless the stored record is that
        exact object, so a late caller cannot remove a newer thread.

        Returns:
            The removed record, or None if nothing was removed.
        """
        key = UserID(user_id)
        record = self._threads.get(key)
        if record is None or (expected is not None and record is not expected):
            return None

        cancelled = record.timers.cancel_all()
        record.status = ThreadStatus.CLOSED
        del self._threads[key]
        logger.debug(
            "[THREAD REGISTRY] Removed thread %s for user %s (%d timers cancelled)",
            record.channel_id,
            key,
            cancelled,
        )
        return record

    def records(self) -> List[ThreadRecord]:
        return list(self._threads.values())

    def clear(self) -> List[ThreadRecord]:
        """Remove every record, cancelling their timers. Returns what was removed."""
        removed = []
        for user_id in list(self._threads):
            record = self.remove(user_id)
            if record is not None:
                removed.append(record)
        return removed

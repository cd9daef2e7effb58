"""
Modmail relay.

A member's direct messages to the bot are mirrored into a private staff channel
in one guild, and staff replies are relayed back. State is kept in memory for
the lifetime of the process and owned by a single :class:`ModmailService`.

- **thread_registry.py**: user id -> open thread record
- **server_resolution.py**: picks the guild a conversation belongs to
- **thread_lifecycle.py**: channel creation, relaying, and idle timers
- **relay_formatting.py**: embeds for every modmail message
- **modmail_service.py**: the entry point used by listeners and commands
"""

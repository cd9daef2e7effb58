"""Row-level SQL access for guild settings, modmail blocks, and thread history."""

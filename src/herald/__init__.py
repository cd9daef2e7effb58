"""
Royal Court Herald - Discord server management bot

The Herald keeps a server's staff informed and reachable. It relays direct
messages from members into private staff channels (modmail), posts server
activity into configurable log channels, and exposes slash commands to
configure both.

Core Components:

- **Modmail**: Maps a member's direct messages to a per-guild support channel,
  lets members in several guilds pick which one to contact, and closes idle
  threads after a warning / final warning / close sequence
- **Server Logs**: Posts message, member, role, channel, and voice events into
  per-category log channels with ignore lists for channels and roles
- **Guild Settings**: Per-server modmail and logging configuration persisted
  to SQLite, including per-guild modmail blocks

Usage:
    from herald.main import main
    main()  # Starts the bot
"""

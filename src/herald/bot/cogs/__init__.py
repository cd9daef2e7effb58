"""
Cogs registered by :func:`herald.main.load_cogs`.

- **events_listener.py**: on_ready presence and central command error handling
- **direct_message_listener.py**: feeds direct messages into the modmail service
- **modmail_cmds.py**: /modmail, /modmail-setup, /modmail-stats
- **logging_cmds.py**: /setup, /logs, /enable, /disable, /categories, /ignore, /reset
- **server_logs_listener.py**: posts guild events into log channels
- **general_cmds.py**: /ping, /help
"""

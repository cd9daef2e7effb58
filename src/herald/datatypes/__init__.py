"""
Typed data structures shared across the Herald.

- **discord_datatypes.py**: Type-safe wrappers around Discord snowflake IDs.
- **modmail_datatypes.py**: Thread records, pending server selections, idle
  timeout policy, and resolution results for the modmail system.
- **log_categories.py**: The catalogue of server log categories.
"""

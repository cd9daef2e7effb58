"""
Utility functions and helpers for the Herald.

This package provides reusable utilities:

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log aggregation. Suppresses noise from
  Discord and networking libraries.
- **format_utils.py**: Duration and timestamp formatting shared by embeds.
- **embeds.py**: Branded embed builders (standard, success, error, log entry).
"""

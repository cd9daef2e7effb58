"""
Configuration management for the Herald.

This package handles all application and guild-level configuration:

- **app_configuration.py**: File-locked YAML configuration loader for global
  settings. Provides bot branding, modmail timings and naming, and the logging
  category catalogue. Falls back gracefully on missing or malformed config files.
- **guild_settings.py**: Per-guild modmail and logging settings with an
  in-memory cache, non-blocking persistence, and per-guild modmail blocks.
"""

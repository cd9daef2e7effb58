"""
Database package for the Herald.

Provides a single long-lived SQLite connection, schema management, and the
Database coordinator used by the settings manager and the modmail history.

Public API:
    - database: Global Database instance
    - get_db: Get the global Database instance
    - Database: Main database management class
"""

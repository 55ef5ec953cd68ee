"""
Database migrations module.

Versioned, ordered migrations for the SQLite state store.
Migrations are applied in order and tracked in the migration_history table.
"""

from .runner import MigrationRunner, get_all_migrations

__all__ = ["MigrationRunner", "get_all_migrations"]

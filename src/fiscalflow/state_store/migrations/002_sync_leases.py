"""
Migration 002: Add sync_leases table.

At most one row per company. A run holds the row while it pulls the feed;
rows past expires_at are considered abandoned.
"""

import sqlite3

VERSION = 2
NAME = "sync_leases"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create sync_leases table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sync_leases (
            company_id INTEGER PRIMARY KEY,
            owner TEXT NOT NULL,
            acquired_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            FOREIGN KEY (company_id) REFERENCES companies(id)
        )
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove sync_leases table."""
    conn.execute("DROP TABLE IF EXISTS sync_leases")

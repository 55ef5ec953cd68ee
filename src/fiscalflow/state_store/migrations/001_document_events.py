"""
Migration 001: Add document_events table.

Append-only audit trail; one row per successful manifestation.
"""

import sqlite3

VERSION = 1
NAME = "document_events"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create document_events table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS document_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            document_id INTEGER NOT NULL,
            event_type TEXT NOT NULL,  -- e.g. 'manifestation'
            event_description TEXT NOT NULL,
            event_date TEXT NOT NULL,
            FOREIGN KEY (document_id) REFERENCES documents(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_document_events_document ON document_events(document_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove document_events table."""
    conn.execute("DROP TABLE IF EXISTS document_events")

"""
Versioned schema changes for the fiscalflow state database.

Each migration lives in this package as `NNN_name.py` and exposes `VERSION`,
`NAME`, `upgrade(conn)` and optionally `downgrade(conn)`. Applied versions
are tracked in the `migration_history` table.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MigrationStep = Callable[[sqlite3.Connection], None]


@dataclass
class Migration:
    """A single versioned schema change."""

    version: int
    name: str
    upgrade: MigrationStep
    downgrade: MigrationStep | None = None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """Load every migration module in this package, ordered by version."""
    found = []
    for path in Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py"):
        module = importlib.import_module(f"{__package__}.{path.stem}")
        found.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        )
    return sorted(found, key=lambda m: m.version)


class MigrationRunner:
    """Applies and reverts migrations on one open connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS migration_history (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
            """
            )

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migration_history").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Highest applied version, 0 for a fresh database."""
        return max(self.get_applied_versions(), default=0)

    def _run_step(self, migration: Migration, step: MigrationStep, bookkeeping: tuple) -> None:
        """Run one schema step and its history update as a unit."""
        try:
            step(self.conn)
            self.conn.execute(*bookkeeping)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error(f"Migration {migration.label} failed")
            raise

    def apply_migration(self, migration: Migration) -> None:
        logger.info(f"Applying migration {migration.label}")
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        # Concurrent openers may race to record the same version
        self._run_step(
            migration,
            migration.upgrade,
            (
                "INSERT OR IGNORE INTO migration_history (version, name, applied_at) "
                "VALUES (?, ?, ?)",
                (migration.version, migration.name, applied_at),
            ),
        )

    def rollback_migration(self, migration: Migration) -> None:
        """Revert one migration; raises NotImplementedError without a downgrade."""
        if migration.downgrade is None:
            raise NotImplementedError(f"Migration {migration.label} cannot be rolled back")
        logger.info(f"Rolling back migration {migration.label}")
        self._run_step(
            migration,
            migration.downgrade,
            ("DELETE FROM migration_history WHERE version = ?", (migration.version,)),
        )

    def run_pending(self) -> list[int]:
        """Apply every migration not yet recorded. Returns the versions applied."""
        applied = self.get_applied_versions()
        done = []
        for migration in get_all_migrations():
            if migration.version in applied:
                continue
            self.apply_migration(migration)
            done.append(migration.version)

        if done:
            logger.info(f"Applied migrations {done}")
        return done

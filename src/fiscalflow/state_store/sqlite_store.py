"""
SQLite-based state store implementation.

Tables:
- companies: Companies whose distribution feed is synced
- suppliers: Issuers, unique by normalized tax id
- documents: Ingested fiscal documents, UNIQUE on access_key
- sync_runs: One row per sync run (append, then a single terminal update)
- document_events: Append-only audit trail (migration 001)
- sync_leases: Per-company run exclusion (migration 002)
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


class SyncRunStatus(str, Enum):
    """Status of a sync run."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class StoreError(Exception):
    """Base exception for state store errors."""

    pass


class DuplicateDocumentError(StoreError):
    """A document with this access key already exists."""

    def __init__(self, access_key: str):
        self.access_key = access_key
        super().__init__(f"Document with access_key '{access_key}' already exists")


class DuplicateCompanyError(StoreError):
    """A company with this tax id already exists."""

    def __init__(self, cnpj: str):
        self.cnpj = cnpj
        super().__init__(f"Company with CNPJ '{cnpj}' already exists")


def _iso(moment: datetime) -> str:
    # Fixed precision keeps lexical order equal to time order
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _utc_now() -> str:
    return _iso(datetime.now(timezone.utc))


@dataclass
class CompanyRecord:
    """Record of a registered company."""

    id: int
    cnpj: str
    legal_name: str
    trade_name: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "CompanyRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            cnpj=row["cnpj"],
            legal_name=row["legal_name"],
            trade_name=row["trade_name"],
            created_at=row["created_at"],
        )


@dataclass
class SupplierRecord:
    """Record of a document issuer."""

    id: int
    cnpj_cpf: str
    name: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SupplierRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            cnpj_cpf=row["cnpj_cpf"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class DocumentRecord:
    """Record of an ingested fiscal document."""

    id: int
    company_id: int
    supplier_id: int | None
    access_key: str
    document_type: str
    document_number: str
    series: str
    issue_date: str
    total_value: Decimal
    protocol: str | None
    status: str
    manifestation_status: str
    raw_data: dict[str, Any]
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DocumentRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            company_id=row["company_id"],
            supplier_id=row["supplier_id"],
            access_key=row["access_key"],
            document_type=row["document_type"],
            document_number=row["document_number"],
            series=row["series"],
            issue_date=row["issue_date"],
            total_value=Decimal(row["total_value"]),
            protocol=row["protocol"],
            status=row["status"],
            manifestation_status=row["manifestation_status"],
            raw_data=json.loads(row["raw_data"]) if row["raw_data"] else {},
            created_at=row["created_at"],
        )


@dataclass
class SyncRunRecord:
    """Record of one sync run."""

    id: int
    company_id: int
    last_nsu: int
    final_nsu: int | None
    status: SyncRunStatus
    documents_synced: int
    details: str | None
    started_at: str
    finished_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SyncRunRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            company_id=row["company_id"],
            last_nsu=row["last_nsu"],
            final_nsu=row["final_nsu"],
            status=SyncRunStatus(row["status"]),
            documents_synced=row["documents_synced"],
            details=row["details"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
        )


class StateStore:
    """
    SQLite-based state store for the sync engine.

    Provides persistent tracking of:
    - Companies and suppliers
    - Ingested documents (idempotent on access_key)
    - Sync runs (resume cursor)
    - Manifestation audit events
    - Per-company sync leases

    Each operation opens its own connection, so one StateStore may be shared
    across threads. Uniqueness is enforced by the schema, not by callers.
    """

    SCHEMA_VERSION = 1
    BUSY_TIMEOUT_SECONDS = 30

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=self.BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS companies (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    cnpj TEXT NOT NULL UNIQUE,
                    legal_name TEXT NOT NULL,
                    trade_name TEXT,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS suppliers (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    cnpj_cpf TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company_id INTEGER NOT NULL,
                    supplier_id INTEGER,
                    access_key TEXT NOT NULL UNIQUE,
                    document_type TEXT NOT NULL,
                    document_number TEXT NOT NULL,
                    series TEXT NOT NULL,
                    issue_date TEXT NOT NULL,
                    total_value TEXT NOT NULL,  -- Decimal as text
                    protocol TEXT,
                    status TEXT NOT NULL,
                    manifestation_status TEXT NOT NULL DEFAULT 'none',
                    raw_data TEXT,  -- JSON, verbatim source payload
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (company_id) REFERENCES companies(id),
                    FOREIGN KEY (supplier_id) REFERENCES suppliers(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company_id INTEGER NOT NULL,
                    last_nsu INTEGER NOT NULL DEFAULT 0,
                    final_nsu INTEGER,
                    status TEXT NOT NULL,
                    documents_synced INTEGER NOT NULL DEFAULT 0,
                    details TEXT,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    FOREIGN KEY (company_id) REFERENCES companies(id)
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_company_id ON documents(company_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sync_runs_company_status "
                "ON sync_runs(company_id, status, finished_at)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Company methods

    def create_company(
        self,
        cnpj: str,
        legal_name: str,
        trade_name: str | None = None,
    ) -> int:
        """Create a company. Returns the company ID."""
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO companies (cnpj, legal_name, trade_name, created_at)
                    VALUES (?, ?, ?, ?)
                """,
                    (cnpj, legal_name, trade_name, _utc_now()),
                )
            except sqlite3.IntegrityError:
                raise DuplicateCompanyError(cnpj)
            return cursor.lastrowid or 0

    def get_company(self, company_id: int) -> CompanyRecord | None:
        """Get a company by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM companies WHERE id = ?", (company_id,)).fetchone()
            return CompanyRecord.from_row(row) if row else None

    def get_company_by_tax_id(self, cnpj: str) -> CompanyRecord | None:
        """Get a company by normalized CNPJ."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM companies WHERE cnpj = ?", (cnpj,)).fetchone()
            return CompanyRecord.from_row(row) if row else None

    def list_companies(self) -> list[CompanyRecord]:
        """List all companies."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM companies ORDER BY id").fetchall()
            return [CompanyRecord.from_row(row) for row in rows]

    # Supplier methods

    def upsert_supplier(self, cnpj_cpf: str, name: str) -> int:
        """Insert a supplier or overwrite its name (last write wins). Returns the ID."""
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO suppliers (cnpj_cpf, name, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(cnpj_cpf) DO UPDATE SET
                    name = excluded.name,
                    updated_at = excluded.updated_at
            """,
                (cnpj_cpf, name, now, now),
            )
            row = conn.execute(
                "SELECT id FROM suppliers WHERE cnpj_cpf = ?", (cnpj_cpf,)
            ).fetchone()
            return row["id"]

    def get_supplier_by_tax_id(self, cnpj_cpf: str) -> SupplierRecord | None:
        """Get supplier by normalized tax id."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM suppliers WHERE cnpj_cpf = ?", (cnpj_cpf,)
            ).fetchone()
            return SupplierRecord.from_row(row) if row else None

    def count_suppliers(self) -> int:
        """Count suppliers."""
        with self._transaction() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM suppliers").fetchone()
            return row["count"] if row else 0

    # Document methods

    def document_exists(self, access_key: str) -> bool:
        """Check if a document with this access key was ingested."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM documents WHERE access_key = ?", (access_key,)
            ).fetchone()
            return row is not None

    def insert_document(
        self,
        company_id: int,
        access_key: str,
        document_type: str,
        document_number: str,
        series: str,
        issue_date: str,
        total_value: Decimal,
        status: str,
        protocol: str | None = None,
        supplier_id: int | None = None,
        manifestation_status: str = "none",
        raw_data: dict[str, Any] | None = None,
    ) -> int:
        """
        Insert a document row. Returns the document ID.

        Raises:
            DuplicateDocumentError: If access_key already exists
        """
        with self._transaction() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO documents
                    (company_id, supplier_id, access_key, document_type, document_number,
                     series, issue_date, total_value, protocol, status, manifestation_status,
                     raw_data, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        company_id,
                        supplier_id,
                        access_key,
                        document_type,
                        document_number,
                        series,
                        issue_date,
                        str(total_value),
                        protocol,
                        status,
                        manifestation_status,
                        json.dumps(raw_data or {}, ensure_ascii=False, default=str),
                        _utc_now(),
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "access_key" in str(e):
                    raise DuplicateDocumentError(access_key)
                raise
            return cursor.lastrowid or 0

    def get_document(self, document_id: int) -> DocumentRecord | None:
        """Get a document by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
            return DocumentRecord.from_row(row) if row else None

    def get_document_by_access_key(self, access_key: str) -> DocumentRecord | None:
        """Get a document by access key."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE access_key = ?", (access_key,)
            ).fetchone()
            return DocumentRecord.from_row(row) if row else None

    def count_documents(self, company_id: int | None = None) -> int:
        """Count documents, optionally for one company."""
        with self._transaction() as conn:
            if company_id is None:
                row = conn.execute("SELECT COUNT(*) as count FROM documents").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) as count FROM documents WHERE company_id = ?",
                    (company_id,),
                ).fetchone()
            return row["count"] if row else 0

    # Manifestation methods

    def record_manifestation(
        self,
        document_id: int,
        manifestation_status: str,
        description: str,
    ) -> None:
        """Set a document's manifestation status and append its audit event atomically."""
        now = _utc_now()
        with self._transaction() as conn:
            conn.execute(
                "UPDATE documents SET manifestation_status = ? WHERE id = ?",
                (manifestation_status, document_id),
            )
            conn.execute(
                """
                INSERT INTO document_events (document_id, event_type, event_description, event_date)
                VALUES (?, ?, ?, ?)
            """,
                (document_id, "manifestation", description, now),
            )

    def get_document_events(self, document_id: int) -> list[dict[str, Any]]:
        """Get audit events for a document, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM document_events WHERE document_id = ? ORDER BY id ASC",
                (document_id,),
            ).fetchall()
            return [dict(row) for row in rows]

    # Sync run methods

    def create_sync_run(self, company_id: int, last_nsu: int, details: str | None = None) -> int:
        """Create an in-progress sync run. Returns the run ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_runs (company_id, last_nsu, status, details, started_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (company_id, last_nsu, SyncRunStatus.IN_PROGRESS.value, details, _utc_now()),
            )
            return cursor.lastrowid or 0

    def finish_sync_run(
        self,
        sync_run_id: int,
        final_nsu: int,
        status: SyncRunStatus,
        documents_synced: int,
        details: str | None = None,
    ) -> bool:
        """
        Record the terminal state of a sync run.

        Only an in-progress run is updated, so the terminal update happens once.

        Returns:
            True if updated, False if the run was missing or already finished
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE sync_runs
                SET final_nsu = ?, status = ?, documents_synced = ?, details = ?, finished_at = ?
                WHERE id = ? AND status = ?
            """,
                (
                    final_nsu,
                    status.value,
                    documents_synced,
                    details,
                    _utc_now(),
                    sync_run_id,
                    SyncRunStatus.IN_PROGRESS.value,
                ),
            )
            return cursor.rowcount > 0

    def get_sync_run(self, sync_run_id: int) -> SyncRunRecord | None:
        """Get a sync run by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM sync_runs WHERE id = ?", (sync_run_id,)).fetchone()
            return SyncRunRecord.from_row(row) if row else None

    def get_last_successful_sync_run(self, company_id: int) -> SyncRunRecord | None:
        """Most recent successful run for a company, newest finish time first."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM sync_runs
                WHERE company_id = ? AND status = ?
                ORDER BY finished_at DESC, id DESC
                LIMIT 1
            """,
                (company_id, SyncRunStatus.SUCCESS.value),
            ).fetchone()
            return SyncRunRecord.from_row(row) if row else None

    def list_sync_runs(self, company_id: int | None = None, limit: int = 20) -> list[SyncRunRecord]:
        """List recent sync runs, newest first."""
        with self._transaction() as conn:
            if company_id is None:
                rows = conn.execute(
                    "SELECT * FROM sync_runs ORDER BY started_at DESC, id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM sync_runs WHERE company_id = ?
                    ORDER BY started_at DESC, id DESC LIMIT ?
                """,
                    (company_id, limit),
                ).fetchall()
            return [SyncRunRecord.from_row(row) for row in rows]

    # Sync lease methods

    def acquire_sync_lease(self, company_id: int, owner: str, ttl_seconds: int) -> bool:
        """
        Try to take the sync lease for a company.

        Expired leases are cleared first, so a crashed holder blocks the
        company for at most ttl_seconds.

        Returns:
            True if the lease was acquired
        """
        now = datetime.now(timezone.utc)
        now_iso = _iso(now)
        expires = _iso(now + timedelta(seconds=ttl_seconds))

        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM sync_leases WHERE company_id = ? AND expires_at <= ?",
                (company_id, now_iso),
            )
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO sync_leases (company_id, owner, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
            """,
                (company_id, owner, now_iso, expires),
            )
            return cursor.rowcount > 0

    def release_sync_lease(self, company_id: int, owner: str) -> bool:
        """Release a lease held by owner. Returns True if released."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM sync_leases WHERE company_id = ? AND owner = ?",
                (company_id, owner),
            )
            return cursor.rowcount > 0

    def get_sync_lease(self, company_id: int) -> dict[str, Any] | None:
        """Get the current lease row for a company."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM sync_leases WHERE company_id = ?", (company_id,)
            ).fetchone()
            return dict(row) if row else None

    # Statistics

    def get_stats(self, company_id: int | None = None) -> dict[str, Any]:
        """Get document statistics, optionally for one company."""
        where = ""
        params: tuple = ()
        if company_id is not None:
            where = "WHERE company_id = ?"
            params = (company_id,)

        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT document_type, manifestation_status, total_value FROM documents {where}",
                params,
            ).fetchall()

            by_type: dict[str, int] = {}
            by_manifestation: dict[str, int] = {}
            total_value = Decimal("0")
            for row in rows:
                by_type[row["document_type"]] = by_type.get(row["document_type"], 0) + 1
                if row["document_type"] == "NFE":
                    status = row["manifestation_status"]
                    by_manifestation[status] = by_manifestation.get(status, 0) + 1
                total_value += Decimal(row["total_value"])

            suppliers = conn.execute("SELECT COUNT(*) as count FROM suppliers").fetchone()

        last_run = self.get_last_successful_sync_run(company_id) if company_id is not None else None

        return {
            "documents_total": len(rows),
            "documents_by_type": by_type,
            "manifestation_summary": by_manifestation,
            "total_value": total_value,
            "suppliers_total": suppliers["count"] if suppliers else 0,
            "last_nsu": last_run.final_nsu if last_run else None,
            "last_sync_at": last_run.finished_at if last_run else None,
        }

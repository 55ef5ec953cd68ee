"""
State Store (SQLite-based).

Persistent DB for tracking:
- Companies and suppliers
- Ingested fiscal documents
- Sync runs and their resume cursor
- Manifestation audit events

Enforces uniqueness on access_key and supplier tax id.
"""

from .sqlite_store import (
    CompanyRecord,
    DocumentRecord,
    DuplicateCompanyError,
    DuplicateDocumentError,
    StateStore,
    StoreError,
    SupplierRecord,
    SyncRunRecord,
    SyncRunStatus,
)

__all__ = [
    "StateStore",
    "StoreError",
    "CompanyRecord",
    "DocumentRecord",
    "SupplierRecord",
    "SyncRunRecord",
    "SyncRunStatus",
    "DuplicateCompanyError",
    "DuplicateDocumentError",
]

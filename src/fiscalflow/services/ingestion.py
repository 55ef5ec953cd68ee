"""Idempotent document ingestion.

Both the sync loop and the webhook path converge here. The store's UNIQUE
constraint on access_key is the final guard: a lost insert race is reported
as a duplicate, never as an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from fiscalflow.schemas import MissingAccessKeyError, NormalizedDocument, normalize_document
from fiscalflow.state_store import DuplicateDocumentError

if TYPE_CHECKING:
    from fiscalflow.state_store import StateStore

logger = logging.getLogger(__name__)


class IngestOutcome(str, Enum):
    """Outcome of ingesting one raw feed record."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    MISSING_KEY = "missing_key"


@dataclass
class IngestResult:
    """Result of ingesting one normalized document."""

    inserted: bool
    document_id: int | None = None


class DocumentIngestor:
    """Persists normalized documents at most once per access key."""

    def __init__(self, state_store: StateStore) -> None:
        self.store = state_store

    def ingest(self, document: NormalizedDocument) -> IngestResult:
        """Ingest a normalized document.

        Args:
            document: Output of normalize_document.

        Returns:
            IngestResult; inserted is False when the access key already exists.
        """
        if self.store.document_exists(document.access_key):
            logger.debug("Document %s already ingested", document.access_key)
            return IngestResult(inserted=False)

        supplier_id = self._upsert_supplier(document)

        try:
            document_id = self.store.insert_document(
                company_id=document.company_id,
                supplier_id=supplier_id,
                access_key=document.access_key,
                document_type=document.document_type.value,
                document_number=document.document_number,
                series=document.series,
                issue_date=document.issue_date,
                total_value=document.total_value,
                protocol=document.protocol,
                status=document.status.value,
                manifestation_status=document.manifestation_status.value,
                raw_data=document.raw_data,
            )
        except DuplicateDocumentError:
            logger.debug("Lost insert race for %s; treating as duplicate", document.access_key)
            return IngestResult(inserted=False)

        logger.info(f"Ingested document {document.access_key} (id={document_id})")
        return IngestResult(inserted=True, document_id=document_id)

    def ingest_raw(self, raw: dict[str, Any], company_id: int) -> IngestOutcome:
        """Normalize and ingest one raw feed record.

        Errors other than a missing access key propagate to the caller.
        """
        try:
            document = normalize_document(raw, company_id)
        except MissingAccessKeyError as e:
            logger.warning(f"Skipping feed record without access key: {e}")
            return IngestOutcome.MISSING_KEY

        result = self.ingest(document)
        return IngestOutcome.INSERTED if result.inserted else IngestOutcome.DUPLICATE

    def _upsert_supplier(self, document: NormalizedDocument) -> int | None:
        if not document.supplier_tax_id:
            return None
        try:
            return self.store.upsert_supplier(
                cnpj_cpf=document.supplier_tax_id,
                name=document.supplier_name or "",
            )
        except Exception as e:
            logger.warning(
                "Supplier upsert failed for %s, storing document without supplier: %s",
                document.supplier_tax_id,
                e,
            )
            return None

"""Recipient manifestation of NF-e documents.

Every input is validated before the remote call. The local status changes
only after the remote authority accepted the event, and the status update and
its audit event are written together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fiscalflow.schemas import DocumentType, ManifestationStatus

if TYPE_CHECKING:
    from fiscalflow.feed_client import FeedClient
    from fiscalflow.state_store import StateStore

logger = logging.getLogger(__name__)

# Remote event type -> local status
MANIFESTATION_TYPES: dict[str, ManifestationStatus] = {
    "ciencia": ManifestationStatus.ACKNOWLEDGED,
    "confirmacao": ManifestationStatus.CONFIRMED,
    "desconhecimento": ManifestationStatus.UNKNOWN,
    "nao_realizada": ManifestationStatus.UNREALIZED,
}

# Types the remote rejects without a justification
JUSTIFICATION_REQUIRED = frozenset({"desconhecimento", "nao_realizada"})

DESCRIPTIONS = {
    "ciencia": "Ciência da Operação",
    "confirmacao": "Confirmação da Operação",
    "desconhecimento": "Desconhecimento da Operação",
    "nao_realizada": "Operação Não Realizada",
}

_STATUS_ALIASES = {status.value: event for event, status in MANIFESTATION_TYPES.items()}


class ManifestationValidationError(ValueError):
    """Manifestation input was rejected before contacting the remote."""

    pass


class DocumentNotFoundError(LookupError):
    """The requested document does not exist."""

    def __init__(self, document_id: int):
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found")


class NotManifestableError(ManifestationValidationError):
    """Only NFE documents accept manifestation."""

    pass


@dataclass
class ManifestationResult:
    document_id: int
    access_key: str
    event_type: str
    manifestation_status: ManifestationStatus
    remote_response: dict[str, Any]


def resolve_event_type(manifestation_type: str) -> str:
    """Map an event type or its status alias to the remote event type."""
    key = (manifestation_type or "").strip().lower()
    if key in MANIFESTATION_TYPES:
        return key
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key]
    raise ManifestationValidationError(
        f"Unsupported manifestation type: {manifestation_type!r} "
        f"(expected one of {', '.join(MANIFESTATION_TYPES)})"
    )


class ManifestationService:
    def __init__(self, feed_client: FeedClient, state_store: StateStore) -> None:
        self.feed = feed_client
        self.store = state_store

    def manifest(
        self,
        document_id: int,
        manifestation_type: str,
        justification: str | None = None,
    ) -> ManifestationResult:
        """Manifest a document.

        Raises:
            ManifestationValidationError: Unsupported type or missing justification
            DocumentNotFoundError: Unknown document
            NotManifestableError: Document is not an NFE
            FeedError: Remote rejected or failed; nothing local changed
        """
        event_type = resolve_event_type(manifestation_type)
        justification = (justification or "").strip() or None
        if event_type in JUSTIFICATION_REQUIRED and not justification:
            raise ManifestationValidationError(f"Justification is required for {event_type}")

        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.document_type != DocumentType.NFE.value:
            raise NotManifestableError(
                f"Only NFE documents can be manifested (document {document_id} "
                f"is {document.document_type})"
            )

        company = self.store.get_company(document.company_id)
        if company is None:
            raise DocumentNotFoundError(document_id)

        remote_response = self.feed.post_manifestation(
            tax_id=company.cnpj,
            access_key=document.access_key,
            event_type=event_type,
            justification=justification,
        )

        status = MANIFESTATION_TYPES[event_type]
        description = DESCRIPTIONS[event_type]
        if justification:
            description = f"{description} - {justification}"
        self.store.record_manifestation(document.id, status.value, description)

        logger.info(f"Document {document.access_key} manifested as {event_type}")

        return ManifestationResult(
            document_id=document.id,
            access_key=document.access_key,
            event_type=event_type,
            manifestation_status=status,
            remote_response=remote_response,
        )

"""
Canonical fiscal document schema and the feed payload normalizer.

`normalize_document` is pure: it maps one raw feed record (the shape returned
by the distribution list call, a single-document fetch, or a webhook-driven
fetch) into a NormalizedDocument. It is deliberately lenient: only a missing
access key drops the record; every other field is defaulted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from .aliases import (
    ACCESS_KEY_ALIASES,
    DOCUMENT_NUMBER_ALIASES,
    DOCUMENT_TYPE_ALIASES,
    ISSUE_DATE_ALIASES,
    PROTOCOL_ALIASES,
    SERIES_ALIASES,
    STATUS_ALIASES,
    SUPPLIER_NAME_ALIASES,
    SUPPLIER_TAX_ID_ALIASES,
    TOTAL_VALUE_ALIASES,
    first_present,
    normalize_tax_id,
)

logger = logging.getLogger(__name__)

UNKNOWN_SUPPLIER_NAME = "Não informado"


class DocumentType(str, Enum):
    """Fiscal document types delivered by the feed."""

    NFE = "NFE"  # invoice
    NFCE = "NFCE"  # consumer invoice
    CTE = "CTE"  # transport invoice
    NFSE = "NFSE"  # service invoice


class AuthorizationStatus(str, Enum):
    """Authorization status at the tax authority."""

    AUTHORIZED = "authorized"
    CANCELED = "canceled"
    DENIED = "denied"


class ManifestationStatus(str, Enum):
    """Recipient manifestation status (NFE only)."""

    NONE = "none"
    ACKNOWLEDGED = "acknowledged"
    CONFIRMED = "confirmed"
    UNKNOWN = "unknown"
    UNREALIZED = "unrealized"


class MissingAccessKeyError(ValueError):
    """Raw record has no access key under any alias; the record is skipped."""

    pass


@dataclass
class NormalizedDocument:
    """A feed record mapped onto the canonical Document shape."""

    access_key: str
    company_id: int
    document_type: DocumentType
    document_number: str
    series: str
    issue_date: str  # ISO timestamp
    total_value: Decimal
    status: AuthorizationStatus
    protocol: str | None = None
    manifestation_status: ManifestationStatus = ManifestationStatus.NONE
    supplier_tax_id: str | None = None  # digits only
    supplier_name: str | None = None
    raw_data: dict[str, Any] = field(default_factory=dict)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_document_type(value: Any) -> DocumentType:
    """Map a remote document type label to DocumentType (default NFE)."""
    if not value:
        return DocumentType.NFE
    label = str(value).upper().replace("-", "").replace("_", "").strip()
    try:
        return DocumentType(label)
    except ValueError:
        logger.debug(f"Unrecognized document type {value!r}, defaulting to NFE")
        return DocumentType.NFE


def parse_authorization_status(value: Any) -> AuthorizationStatus:
    """Only "cancelada" maps to canceled; anything else is authorized."""
    if isinstance(value, str) and value.strip().lower() == "cancelada":
        return AuthorizationStatus.CANCELED
    return AuthorizationStatus.AUTHORIZED


def parse_total_value(value: Any) -> Decimal:
    """Parse a monetary value, defaulting to zero."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, float):
        value = str(value)
    text = str(value).strip()
    if "," in text:
        if text.rfind(",") > text.rfind("."):
            # Brazilian format: "1.234,56"
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    try:
        return Decimal(text)
    except InvalidOperation:
        logger.debug(f"Unparseable total value {value!r}, defaulting to 0")
        return Decimal("0")


def normalize_document(raw: dict[str, Any], company_id: int) -> NormalizedDocument:
    """
    Normalize a raw feed record.

    Args:
        raw: Raw document dict as returned by the feed
        company_id: Owning company ID

    Returns:
        NormalizedDocument

    Raises:
        MissingAccessKeyError: If no access key alias is present
    """
    access_key = first_present(raw, ACCESS_KEY_ALIASES)
    if not access_key:
        raise MissingAccessKeyError(
            f"Document has none of the access key fields {ACCESS_KEY_ALIASES}"
        )

    supplier_tax_id = normalize_tax_id(first_present(raw, SUPPLIER_TAX_ID_ALIASES)) or None
    supplier_name = None
    if supplier_tax_id:
        supplier_name = first_present(raw, SUPPLIER_NAME_ALIASES) or UNKNOWN_SUPPLIER_NAME

    protocol = first_present(raw, PROTOCOL_ALIASES)

    return NormalizedDocument(
        access_key=str(access_key).strip(),
        company_id=company_id,
        document_type=parse_document_type(first_present(raw, DOCUMENT_TYPE_ALIASES)),
        document_number=str(first_present(raw, DOCUMENT_NUMBER_ALIASES) or "0"),
        series=str(first_present(raw, SERIES_ALIASES) or "0"),
        issue_date=str(first_present(raw, ISSUE_DATE_ALIASES) or _utc_now_iso()),
        total_value=parse_total_value(first_present(raw, TOTAL_VALUE_ALIASES)),
        status=parse_authorization_status(first_present(raw, STATUS_ALIASES)),
        protocol=str(protocol) if protocol else None,
        supplier_tax_id=supplier_tax_id,
        supplier_name=supplier_name,
        raw_data=raw,
    )

"""
Canonical schemas and payload normalization.

- fiscal_document: Document enums, NormalizedDocument, normalize_document
- aliases: prioritized field-name aliases for inconsistent remote payloads
"""

from .aliases import first_present, normalize_tax_id
from .fiscal_document import (
    AuthorizationStatus,
    DocumentType,
    ManifestationStatus,
    MissingAccessKeyError,
    NormalizedDocument,
    normalize_document,
)

__all__ = [
    "AuthorizationStatus",
    "DocumentType",
    "ManifestationStatus",
    "MissingAccessKeyError",
    "NormalizedDocument",
    "first_present",
    "normalize_document",
    "normalize_tax_id",
]

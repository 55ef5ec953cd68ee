"""Sync, ingestion and manifestation services."""

from fiscalflow.services.companies import CompanyService, InvalidCompanyError
from fiscalflow.services.downloads import DocumentDownloadService, DownloadedFile
from fiscalflow.services.ingestion import DocumentIngestor, IngestOutcome, IngestResult
from fiscalflow.services.manifestation import (
    DocumentNotFoundError,
    ManifestationResult,
    ManifestationService,
    ManifestationValidationError,
    NotManifestableError,
)
from fiscalflow.services.sync_runner import (
    BackoffStrategy,
    CompanyNotFoundError,
    ExponentialBackoff,
    FixedBackoff,
    SyncAlreadyRunningError,
    SyncRunController,
    SyncRunResult,
)
from fiscalflow.services.webhook import WebhookListener, WebhookResult

__all__ = [
    "BackoffStrategy",
    "CompanyNotFoundError",
    "CompanyService",
    "DocumentDownloadService",
    "DocumentIngestor",
    "DocumentNotFoundError",
    "DownloadedFile",
    "ExponentialBackoff",
    "FixedBackoff",
    "IngestOutcome",
    "IngestResult",
    "InvalidCompanyError",
    "ManifestationResult",
    "ManifestationService",
    "ManifestationValidationError",
    "NotManifestableError",
    "SyncAlreadyRunningError",
    "SyncRunController",
    "SyncRunResult",
    "WebhookListener",
    "WebhookResult",
]

"""Download of a stored document's XML or DANFE PDF from the feed."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from fiscalflow.feed_client.client import DOWNLOAD_FILE_TYPES
from fiscalflow.services.manifestation import DocumentNotFoundError

if TYPE_CHECKING:
    from fiscalflow.feed_client import FeedClient
    from fiscalflow.state_store import DocumentRecord, StateStore

CONTENT_TYPES = {"xml": "application/xml", "pdf": "application/pdf"}


@dataclass
class DownloadedFile:
    filename: str
    content_type: str
    content: bytes


def suggested_filename(document: DocumentRecord, file_type: str) -> str:
    """`{access_key}.xml` for XML, `DANFE_{number}_{series}.pdf` for PDF."""
    if file_type == "xml":
        return f"{document.access_key}.xml"
    return f"DANFE_{document.document_number}_{document.series}.pdf"


class DocumentDownloadService:
    def __init__(self, feed_client: FeedClient, state_store: StateStore) -> None:
        self.feed = feed_client
        self.store = state_store

    def download(self, document_id: int, file_type: str) -> DownloadedFile:
        """Fetch a document file.

        Raises:
            ValueError: file_type is not xml or pdf
            DocumentNotFoundError: Unknown document
        """
        if file_type not in DOWNLOAD_FILE_TYPES:
            raise ValueError(f'file_type must be "xml" or "pdf", got: {file_type!r}')

        document = self.store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        content = self.feed.download_document(document.access_key, file_type)
        return DownloadedFile(
            filename=suggested_filename(document, file_type),
            content_type=CONTENT_TYPES[file_type],
            content=content,
        )

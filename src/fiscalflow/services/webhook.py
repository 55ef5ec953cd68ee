"""Nuvem Fiscal webhook event handling.

Events only announce that a document is available; the document itself is
fetched from the feed and ingested through the same idempotent path as a
sync run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fiscalflow.schemas.aliases import (
    ACCESS_KEY_ALIASES,
    EVENT_ACCESS_KEY_ALIASES,
    EVENT_TAX_ID_ALIASES,
    EVENT_TYPE_ALIASES,
    first_present,
    normalize_tax_id,
)
from fiscalflow.services.ingestion import DocumentIngestor, IngestOutcome

if TYPE_CHECKING:
    from fiscalflow.feed_client import FeedClient
    from fiscalflow.state_store import StateStore

logger = logging.getLogger(__name__)

# Event types mentioning either marker are document-availability events
RELEVANT_EVENT_MARKERS = ("dist", "document")


@dataclass
class WebhookResult:
    """Counters for one webhook delivery."""

    processed: int = 0
    errors: int = 0
    ignored: int = 0
    inserted: int = 0


def is_relevant_event(event_type: Any) -> bool:
    """True for distribution/document events (case-insensitive)."""
    if not event_type:
        return False
    label = str(event_type).lower()
    return any(marker in label for marker in RELEVANT_EVENT_MARKERS)


class WebhookListener:
    """Handles pushed document-availability events."""

    def __init__(
        self,
        feed_client: FeedClient,
        state_store: StateStore,
        ingestor: DocumentIngestor | None = None,
    ) -> None:
        self.feed = feed_client
        self.store = state_store
        self.ingestor = ingestor or DocumentIngestor(state_store)

    def handle(self, payload: dict[str, Any] | list[Any]) -> WebhookResult:
        """Handle one delivery: a single event object or a list of them.

        One failing event never stops the others.
        """
        events = payload if isinstance(payload, list) else [payload]
        result = WebhookResult()

        for event in events:
            if not isinstance(event, dict) or not is_relevant_event(
                first_present(event, EVENT_TYPE_ALIASES)
            ):
                result.ignored += 1
                continue

            try:
                if self._handle_event(event):
                    result.inserted += 1
                result.processed += 1
            except Exception as e:
                logger.error(f"Webhook event processing failed: {e}")
                result.errors += 1

        logger.info(
            "Webhook delivery handled: %d processed, %d inserted, %d errors, %d ignored",
            result.processed,
            result.inserted,
            result.errors,
            result.ignored,
        )
        return result

    def _handle_event(self, event: dict[str, Any]) -> bool:
        """Process one relevant event. Returns True if a document was inserted."""
        access_key = first_present(event, EVENT_ACCESS_KEY_ALIASES)
        tax_id = normalize_tax_id(first_present(event, EVENT_TAX_ID_ALIASES))
        if not access_key or not tax_id:
            logger.debug("Webhook event without access key or tax id, skipping")
            return False

        access_key = str(access_key).strip()
        if self.store.document_exists(access_key):
            logger.debug("Webhook document %s already ingested", access_key)
            return False

        company = self.store.get_company_by_tax_id(tax_id)
        if company is None:
            logger.debug("Webhook event for unknown company %s, skipping", tax_id)
            return False

        raw = self.feed.fetch_document_by_key(access_key)
        if first_present(raw, ACCESS_KEY_ALIASES) is None:
            raw = {**raw, "chave": access_key}
        return self.ingestor.ingest_raw(raw, company.id) == IngestOutcome.INSERTED

"""Sync run controller for the NF-e distribution feed.

A run resumes from the final cursor of the company's last successful run,
then alternates advance/list calls until the feed reports no more documents.
Each run is recorded as one SyncRun row: created in_progress, finalized once.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fiscalflow.feed_client import FeedError
from fiscalflow.services.ingestion import DocumentIngestor, IngestOutcome
from fiscalflow.state_store import SyncRunStatus

if TYPE_CHECKING:
    from fiscalflow.config import Config
    from fiscalflow.feed_client import FeedClient
    from fiscalflow.state_store import CompanyRecord, StateStore

logger = logging.getLogger(__name__)


class CompanyNotFoundError(LookupError):
    """The requested company does not exist."""

    def __init__(self, company_id: int):
        self.company_id = company_id
        super().__init__(f"Company {company_id} not found")


class SyncAlreadyRunningError(RuntimeError):
    """Another run holds the sync lease for this company."""

    def __init__(self, company_id: int):
        self.company_id = company_id
        super().__init__(f"A sync run is already in progress for company {company_id}")


class BackoffStrategy(ABC):
    """Delay policy while the remote feed reports it is still processing."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before listing, for the Nth consecutive processing response."""


class FixedBackoff(BackoffStrategy):
    def __init__(self, delay: float = 5.0):
        self.delay = delay

    def next_delay(self, attempt: int) -> float:
        return self.delay


class ExponentialBackoff(BackoffStrategy):
    def __init__(self, base: float = 5.0, factor: float = 2.0, max_delay: float = 60.0):
        self.base = base
        self.factor = factor
        self.max_delay = max_delay

    def next_delay(self, attempt: int) -> float:
        return min(self.base * self.factor ** max(attempt - 1, 0), self.max_delay)


def build_backoff(name: str, delay: float, max_delay: float) -> BackoffStrategy:
    """Build a backoff strategy from its config name ("fixed" or "exponential")."""
    if name == "exponential":
        return ExponentialBackoff(base=delay, max_delay=max_delay)
    if name == "fixed":
        return FixedBackoff(delay)
    raise ValueError(f"Unknown backoff strategy: {name}")


@dataclass
class SyncRunResult:
    """Outcome of one sync run."""

    sync_run_id: int
    status: SyncRunStatus
    documents_synced: int
    start_cursor: int
    final_cursor: int
    iterations: int
    message: str
    detail: str | None = None

    @property
    def success(self) -> bool:
        return self.status == SyncRunStatus.SUCCESS


class SyncRunController:
    """Drives one sync run per call to run()."""

    def __init__(
        self,
        feed_client: FeedClient,
        state_store: StateStore,
        ingestor: DocumentIngestor | None = None,
        *,
        page_size: int = 50,
        backoff: BackoffStrategy | None = None,
        inter_batch_pause: float = 2.0,
        tolerate_batch_failure: bool = True,
        deadline_seconds: float | None = None,
        lock_runs: bool = True,
        lease_ttl_seconds: int = 900,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the controller.

        Args:
            feed_client: Remote distribution feed client.
            state_store: Document and sync run store.
            ingestor: Ingestor to use (built from state_store if omitted).
            page_size: Documents requested per list call.
            backoff: Delay policy for "processing" feed responses.
            inter_batch_pause: Seconds to pause between iterations.
            tolerate_batch_failure: If True a feed error ends the loop but the
                run is still recorded as success; if False it is recorded failed.
            deadline_seconds: Optional wall-clock bound for the loop.
            lock_runs: Take the per-company sync lease.
            lease_ttl_seconds: Lease expiry for crashed holders.
            sleep: Sleep function (injectable for tests).
            clock: Monotonic clock (injectable for tests).
        """
        self.feed = feed_client
        self.store = state_store
        self.ingestor = ingestor or DocumentIngestor(state_store)
        self.page_size = page_size
        self.backoff = backoff or FixedBackoff()
        self.inter_batch_pause = inter_batch_pause
        self.tolerate_batch_failure = tolerate_batch_failure
        self.deadline_seconds = deadline_seconds
        self.lock_runs = lock_runs
        self.lease_ttl_seconds = lease_ttl_seconds
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(
        cls, config: Config, feed_client: FeedClient, state_store: StateStore
    ) -> SyncRunController:
        """Build a controller from the sync section of the config."""
        sync = config.sync
        return cls(
            feed_client,
            state_store,
            page_size=sync.page_size,
            backoff=build_backoff(
                sync.backoff, sync.processing_delay_seconds, sync.max_backoff_seconds
            ),
            inter_batch_pause=sync.inter_batch_pause_seconds,
            tolerate_batch_failure=sync.tolerate_batch_failure,
            deadline_seconds=sync.deadline_seconds,
            lock_runs=sync.lock_runs,
            lease_ttl_seconds=sync.lease_ttl_seconds,
        )

    def run(self, company_id: int, cancel: threading.Event | None = None) -> SyncRunResult:
        """Run one sync for a company.

        Args:
            company_id: Company to sync.
            cancel: Optional event; when set, the loop stops before the next
                iteration and the run is finalized with partial progress.

        Raises:
            CompanyNotFoundError: Unknown company.
            SyncAlreadyRunningError: Another run holds the lease.
        """
        company = self.store.get_company(company_id)
        if company is None:
            raise CompanyNotFoundError(company_id)

        owner = uuid.uuid4().hex
        if self.lock_runs and not self.store.acquire_sync_lease(
            company_id, owner, self.lease_ttl_seconds
        ):
            raise SyncAlreadyRunningError(company_id)

        try:
            return self._run_locked(company, cancel)
        finally:
            if self.lock_runs:
                self.store.release_sync_lease(company_id, owner)

    def _run_locked(self, company: CompanyRecord, cancel: threading.Event | None) -> SyncRunResult:
        last_run = self.store.get_last_successful_sync_run(company.id)
        start_cursor = last_run.final_nsu if last_run and last_run.final_nsu is not None else 0
        sync_run_id = self.store.create_sync_run(
            company.id, start_cursor, details="Sincronização iniciada"
        )
        logger.info(
            f"Sync run {sync_run_id} started for company {company.id} "
            f"({company.cnpj}) at NSU {start_cursor}"
        )

        cursor = start_cursor
        inserted = 0
        iterations = 0
        processing_attempts = 0
        started = self._clock()
        stop_reason: str | None = None
        batch_error: FeedError | None = None

        try:
            while True:
                if cancel is not None and cancel.is_set():
                    stop_reason = "cancelada"
                    break
                if (
                    self.deadline_seconds is not None
                    and self._clock() - started >= self.deadline_seconds
                ):
                    stop_reason = "prazo esgotado"
                    break

                iterations += 1
                try:
                    advance = self.feed.advance_feed(company.cnpj, cursor)
                    if advance.is_processing:
                        processing_attempts += 1
                        delay = self.backoff.next_delay(processing_attempts)
                        logger.info("Feed still processing, waiting %.1fs", delay)
                        self._sleep(delay)
                    else:
                        processing_attempts = 0

                    documents = self.feed.list_documents(
                        company.cnpj, page_size=self.page_size, page_offset=0
                    )
                except FeedError as e:
                    logger.error(f"Sync batch error for company {company.id}: {e}")
                    batch_error = e
                    break

                if not documents:
                    logger.debug("Feed returned no documents, ending run")
                    break

                for raw in documents:
                    try:
                        if self.ingestor.ingest_raw(raw, company.id) == IngestOutcome.INSERTED:
                            inserted += 1
                    except Exception as e:
                        logger.warning(
                            "Failed to ingest document %s: %s",
                            raw.get("chave") or raw.get("chave_acesso"),
                            e,
                        )

                if advance.new_cursor is not None:
                    cursor = advance.new_cursor
                if not advance.has_more:
                    break
                self._sleep(self.inter_batch_pause)

        except Exception as e:
            logger.exception(f"Sync run {sync_run_id} aborted")
            self.store.finish_sync_run(
                sync_run_id,
                final_nsu=cursor,
                status=SyncRunStatus.FAILED,
                documents_synced=inserted,
                details=f"{inserted} documentos processados. Erro: {e}",
            )
            raise

        details = f"{inserted} documentos processados."
        status = SyncRunStatus.SUCCESS
        if batch_error is not None:
            details += f" Erro no lote: {batch_error}"
            if not self.tolerate_batch_failure:
                status = SyncRunStatus.FAILED
        if stop_reason is not None:
            details += f" Interrompida: {stop_reason}."

        self.store.finish_sync_run(
            sync_run_id,
            final_nsu=cursor,
            status=status,
            documents_synced=inserted,
            details=details,
        )

        logger.info(
            "Sync run %d finished: %s, %d documents, NSU %d -> %d in %d iterations",
            sync_run_id,
            status.value,
            inserted,
            start_cursor,
            cursor,
            iterations,
        )

        if status == SyncRunStatus.SUCCESS:
            message = f"Sincronização concluída. {inserted} documentos."
        else:
            message = f"Sincronização falhou. {inserted} documentos."

        return SyncRunResult(
            sync_run_id=sync_run_id,
            status=status,
            documents_synced=inserted,
            start_cursor=start_cursor,
            final_cursor=cursor,
            iterations=iterations,
            message=message,
            detail=details,
        )

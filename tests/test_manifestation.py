"""Tests for recipient manifestation."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fiscalflow.feed_client import FeedAPIError, FeedClient
from fiscalflow.schemas import ManifestationStatus
from fiscalflow.services.downloads import DocumentDownloadService
from fiscalflow.services.ingestion import DocumentIngestor
from fiscalflow.services.manifestation import (
    DocumentNotFoundError,
    ManifestationService,
    ManifestationValidationError,
    NotManifestableError,
    resolve_event_type,
)

from conftest import ACCESS_KEY_1, ACCESS_KEY_2, COMPANY_CNPJ, make_raw_document


@pytest.fixture
def feed() -> MagicMock:
    client = MagicMock(spec=FeedClient)
    client.post_manifestation.return_value = {"status": "registrado"}
    return client


@pytest.fixture
def nfe_id(store, company_id) -> int:
    DocumentIngestor(store).ingest_raw(make_raw_document(ACCESS_KEY_1), company_id)
    return store.get_document_by_access_key(ACCESS_KEY_1).id


@pytest.fixture
def cte_id(store, company_id) -> int:
    DocumentIngestor(store).ingest_raw(
        make_raw_document(ACCESS_KEY_2, tipo_documento="cte"), company_id
    )
    return store.get_document_by_access_key(ACCESS_KEY_2).id


class TestResolveEventType:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("ciencia", "ciencia"),
            ("CONFIRMACAO", "confirmacao"),
            ("acknowledged", "ciencia"),
            ("unrealized", "nao_realizada"),
        ],
    )
    def test_aliases(self, value, expected):
        assert resolve_event_type(value) == expected

    def test_unsupported(self):
        with pytest.raises(ManifestationValidationError):
            resolve_event_type("cancelamento")


class TestManifestationService:
    @pytest.mark.parametrize(
        "manifestation_type,status",
        [
            ("ciencia", ManifestationStatus.ACKNOWLEDGED),
            ("confirmacao", ManifestationStatus.CONFIRMED),
        ],
    )
    def test_positive_manifestation(self, store, nfe_id, feed, manifestation_type, status):
        result = ManifestationService(feed, store).manifest(nfe_id, manifestation_type)

        assert result.manifestation_status == status
        feed.post_manifestation.assert_called_once_with(
            tax_id=COMPANY_CNPJ,
            access_key=ACCESS_KEY_1,
            event_type=manifestation_type,
            justification=None,
        )
        assert store.get_document(nfe_id).manifestation_status == status.value
        events = store.get_document_events(nfe_id)
        assert len(events) == 1
        assert events[0]["event_type"] == "manifestation"

    @pytest.mark.parametrize("manifestation_type", ["desconhecimento", "nao_realizada"])
    @pytest.mark.parametrize("justification", [None, "", "   "])
    def test_negative_requires_justification(
        self, store, nfe_id, feed, manifestation_type, justification
    ):
        """Negative manifestations without justification never reach the remote."""
        with pytest.raises(ManifestationValidationError):
            ManifestationService(feed, store).manifest(nfe_id, manifestation_type, justification)

        feed.post_manifestation.assert_not_called()
        assert store.get_document(nfe_id).manifestation_status == "none"
        assert store.get_document_events(nfe_id) == []

    def test_negative_with_justification(self, store, nfe_id, feed):
        result = ManifestationService(feed, store).manifest(
            nfe_id, "desconhecimento", "Mercadoria não solicitada"
        )

        assert result.manifestation_status == ManifestationStatus.UNKNOWN
        assert feed.post_manifestation.call_args.kwargs["justification"] == (
            "Mercadoria não solicitada"
        )
        events = store.get_document_events(nfe_id)
        assert events[0]["event_description"] == (
            "Desconhecimento da Operação - Mercadoria não solicitada"
        )

    def test_unsupported_type(self, store, nfe_id, feed):
        with pytest.raises(ManifestationValidationError):
            ManifestationService(feed, store).manifest(nfe_id, "cancelar")
        feed.post_manifestation.assert_not_called()

    def test_unknown_document(self, store, company_id, feed):
        with pytest.raises(DocumentNotFoundError):
            ManifestationService(feed, store).manifest(999, "ciencia")
        feed.post_manifestation.assert_not_called()

    def test_non_nfe_rejected(self, store, cte_id, feed):
        with pytest.raises(NotManifestableError):
            ManifestationService(feed, store).manifest(cte_id, "ciencia")
        feed.post_manifestation.assert_not_called()

    def test_remote_failure_leaves_state_unchanged(self, store, nfe_id, feed):
        feed.post_manifestation.side_effect = FeedAPIError(400, "Bad Request", "evento duplicado")

        with pytest.raises(FeedAPIError):
            ManifestationService(feed, store).manifest(nfe_id, "confirmacao")

        assert store.get_document(nfe_id).manifestation_status == "none"
        assert store.get_document_events(nfe_id) == []

    def test_remanifestation_overwrites_status(self, store, nfe_id, feed):
        service = ManifestationService(feed, store)
        service.manifest(nfe_id, "ciencia")
        service.manifest(nfe_id, "confirmacao")

        assert store.get_document(nfe_id).manifestation_status == "confirmed"
        assert len(store.get_document_events(nfe_id)) == 2


class TestDocumentDownload:
    def test_xml_filename(self, store, nfe_id, feed):
        feed.download_document.return_value = b"<nfeProc/>"

        downloaded = DocumentDownloadService(feed, store).download(nfe_id, "xml")

        assert downloaded.filename == f"{ACCESS_KEY_1}.xml"
        assert downloaded.content_type == "application/xml"
        assert downloaded.content == b"<nfeProc/>"
        feed.download_document.assert_called_once_with(ACCESS_KEY_1, "xml")

    def test_pdf_filename(self, store, nfe_id, feed):
        feed.download_document.return_value = b"%PDF"

        downloaded = DocumentDownloadService(feed, store).download(nfe_id, "pdf")

        assert downloaded.filename == "DANFE_123_1.pdf"

    def test_unknown_document(self, store, company_id, feed):
        with pytest.raises(DocumentNotFoundError):
            DocumentDownloadService(feed, store).download(42, "xml")

    def test_bad_file_type(self, store, nfe_id, feed):
        with pytest.raises(ValueError):
            DocumentDownloadService(feed, store).download(nfe_id, "zip")

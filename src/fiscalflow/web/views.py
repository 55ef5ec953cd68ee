"""
Views for the fiscalflow HTTP surface.

All endpoints speak JSON. Error bodies are {"error": message}.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

from django.conf import settings
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from ..config import Config, load_config
from ..feed_client import FeedClient, FeedError, create_feed_client
from ..services import (
    CompanyNotFoundError,
    DocumentDownloadService,
    DocumentNotFoundError,
    ManifestationService,
    ManifestationValidationError,
    NotManifestableError,
    SyncAlreadyRunningError,
    SyncRunController,
    WebhookListener,
)
from ..state_store import StateStore

logger = logging.getLogger(__name__)

# One feed client (and token provider) per process
_feed_client: FeedClient | None = None
_feed_client_lock = threading.Lock()


def _get_config() -> Config:
    """Load application config, with the state DB path from Django settings."""
    config = load_config(settings.FISCALFLOW_CONFIG_PATH)
    state_db = getattr(settings, "STATE_DB_PATH", None)
    if state_db:
        config.state_db_path = Path(state_db)
    return config


def _get_store() -> StateStore:
    """Get the state store instance."""
    return StateStore(settings.STATE_DB_PATH)


def _get_feed_client() -> FeedClient:
    """Get the process-wide feed client."""
    global _feed_client
    with _feed_client_lock:
        if _feed_client is None:
            _feed_client = create_feed_client(_get_config())
        return _feed_client


def _parse_json_body(request: HttpRequest) -> Any:
    return json.loads(request.body.decode("utf-8") or "null")


def _error(message: str, status: int = 400) -> JsonResponse:
    return JsonResponse({"error": message}, status=status)


@csrf_exempt
@require_http_methods(["POST"])
def nuvem_fiscal_webhook(request: HttpRequest) -> HttpResponse:
    """Receive Nuvem Fiscal events. Always answers 200 so the sender does not retry."""
    try:
        payload = _parse_json_body(request)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"Webhook with unparseable body: {e}")
        return JsonResponse({"error": f"Invalid JSON: {e}", "processed": 0, "errors": 0})

    if not isinstance(payload, (dict, list)):
        return JsonResponse(
            {"error": "Payload must be an object or array", "processed": 0, "errors": 0}
        )

    try:
        listener = WebhookListener(_get_feed_client(), _get_store())
        result = listener.handle(payload)
    except Exception as e:
        logger.exception("Webhook handling failed")
        return JsonResponse({"error": str(e), "processed": 0, "errors": 0})

    return JsonResponse(
        {
            "message": f"Processados: {result.processed}, Erros: {result.errors}",
            "processed": result.processed,
            "errors": result.errors,
        }
    )


@csrf_exempt
@require_http_methods(["POST"])
def trigger_sync(request: HttpRequest) -> HttpResponse:
    """Run one sync for {"company_id": N} and report the documents inserted."""
    try:
        body = _parse_json_body(request)
    except (ValueError, UnicodeDecodeError):
        return _error("Invalid JSON")

    company_id = body.get("company_id") if isinstance(body, dict) else None
    if not company_id:
        return _error("company_id é obrigatório")
    try:
        company_id = int(company_id)
    except (TypeError, ValueError):
        return _error("company_id must be an integer")

    config = _get_config()
    controller = SyncRunController.from_config(config, _get_feed_client(), _get_store())

    try:
        result = controller.run(company_id)
    except CompanyNotFoundError:
        return _error("Empresa não encontrada", 404)
    except SyncAlreadyRunningError as e:
        return _error(str(e), 409)
    except Exception as e:
        logger.exception(f"Sync for company {company_id} failed")
        return _error(str(e) or "Erro interno", 500)

    return JsonResponse(
        {
            "message": result.message,
            "documents_synced": result.documents_synced,
            "sync_run_id": result.sync_run_id,
            "status": result.status.value,
        }
    )


@csrf_exempt
@require_http_methods(["POST"])
def manifest_document(request: HttpRequest) -> HttpResponse:
    """Manifest an NF-e: {"document_id", "manifestation_type", "justification"?}."""
    try:
        body = _parse_json_body(request)
    except (ValueError, UnicodeDecodeError):
        return _error("Invalid JSON")
    if not isinstance(body, dict):
        return _error("Payload must be an object")

    document_id = body.get("document_id")
    manifestation_type = body.get("manifestation_type")
    if not document_id or not manifestation_type:
        return _error("document_id e manifestation_type são obrigatórios")
    try:
        document_id = int(document_id)
    except (TypeError, ValueError):
        return _error("document_id must be an integer")

    service = ManifestationService(_get_feed_client(), _get_store())
    try:
        result = service.manifest(document_id, manifestation_type, body.get("justification"))
    except NotManifestableError as e:
        return _error(str(e), 422)
    except ManifestationValidationError as e:
        return _error(str(e), 400)
    except DocumentNotFoundError:
        return _error("Documento não encontrado", 404)
    except FeedError as e:
        logger.error(f"Manifestation of document {document_id} rejected by remote: {e}")
        return _error(str(e), 502)

    return JsonResponse(
        {
            "message": "Manifestação realizada com sucesso",
            "manifestation_status": result.manifestation_status.value,
            "nuvem_fiscal_response": result.remote_response,
        }
    )


@require_http_methods(["GET"])
def download_document(request: HttpRequest) -> HttpResponse:
    """Stream a document's XML or DANFE PDF as an attachment."""
    document_id = request.GET.get("document_id")
    file_type = request.GET.get("file_type")
    if not document_id or not file_type:
        return _error("document_id e file_type são obrigatórios")
    if file_type not in ("xml", "pdf"):
        return _error('file_type deve ser "xml" ou "pdf"')
    try:
        document_id_int = int(document_id)
    except ValueError:
        return _error("document_id must be an integer")

    service = DocumentDownloadService(_get_feed_client(), _get_store())
    try:
        downloaded = service.download(document_id_int, file_type)
    except DocumentNotFoundError:
        return _error("Documento não encontrado", 404)
    except FeedError as e:
        return _error(f"Erro ao baixar documento: {e}", 502)

    response = HttpResponse(downloaded.content, content_type=downloaded.content_type)
    response["Content-Disposition"] = f'attachment; filename="{downloaded.filename}"'
    return response

"""
Nuvem Fiscal distribution feed client implementation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import NUVEM_FISCAL_API_URL
from .auth import TokenProvider
from .errors import FeedAPIError, FeedConnectionError, FeedError

logger = logging.getLogger(__name__)

# Feed status meaning "batch not ready yet"
PROCESSING_STATUS = "processando"

DOWNLOAD_FILE_TYPES = ("xml", "pdf")


def _to_cursor(value: Any) -> Optional[int]:
    """Coerce an NSU value from the API (int or numeric string) to int."""
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring non-numeric NSU value: {value!r}")
        return None


@dataclass
class FeedAdvanceResult:
    """Result of asking the feed to prepare the next batch."""

    status: str
    new_cursor: Optional[int] = None
    max_cursor: Optional[int] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_processing(self) -> bool:
        """True when the remote batch is not ready yet."""
        return (self.status or "").lower() == PROCESSING_STATUS

    @property
    def has_more(self) -> bool:
        """True while the feed reports pending NSUs beyond the new cursor."""
        if self.new_cursor is None or self.max_cursor is None:
            return False
        return self.new_cursor < self.max_cursor

    @classmethod
    def from_api_response(cls, data: dict) -> "FeedAdvanceResult":
        """Create from distribution API response."""
        return cls(
            status=str(data.get("status") or ""),
            new_cursor=_to_cursor(data.get("ult_nsu")),
            max_cursor=_to_cursor(data.get("max_nsu")),
            raw=data,
        )


class FeedClient:
    """
    Client for the Nuvem Fiscal API.

    Features:
    - Advance the NF-e distribution cursor
    - List buffered documents and fetch single documents by access key
    - Post recipient manifestations
    - Register companies and download XML/PDF files
    - Transport retry with backoff for GET requests only
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_PAGE_SIZE = 50

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = NUVEM_FISCAL_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize feed client.

        Args:
            token_provider: Shared bearer token provider
            base_url: API base URL
            timeout: Request timeout in seconds
            max_retries: Transport retries for idempotent GETs
            backoff_factor: Backoff factor for retries
        """
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        # POSTs (advance, manifestation) are never replayed by the transport
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> requests.Response:
        """Make an authenticated API request with error handling."""
        url = f"{self.base_url}{endpoint}"
        headers = {"Authorization": f"Bearer {self.token_provider.get_token()}"}
        if json_data is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise FeedConnectionError(f"Failed to connect to Nuvem Fiscal at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise FeedConnectionError(f"Request to Nuvem Fiscal timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise FeedError(f"Request failed: {e}")

        if not response.ok:
            if response.status_code == 401:
                # Force a fresh exchange on the next call
                self.token_provider.invalidate()
            raise FeedAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )

        return response

    def _json(self, response: requests.Response) -> dict[str, Any]:
        """Decode a JSON object body; anything else is an API error."""
        try:
            data = response.json()
        except ValueError as e:
            raise FeedAPIError(
                status_code=response.status_code,
                message=f"Invalid JSON in response: {e}",
                response_body=response.text,
            )
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise FeedAPIError(
                status_code=response.status_code,
                message=f"Expected a JSON object, got {type(data).__name__}",
                response_body=response.text,
            )
        return data

    def test_connection(self) -> bool:
        """Test credentials and connectivity."""
        try:
            self._request("GET", "/empresas", params={"$top": 1})
            return True
        except FeedError:
            return False

    def advance_feed(self, tax_id: str, cursor: int) -> FeedAdvanceResult:
        """
        Ask the feed to prepare the batch after `cursor`.

        Single round trip; a "processando" status is returned to the caller,
        who owns the waiting policy.

        Args:
            tax_id: Company CNPJ/CPF
            cursor: Last NSU already consumed

        Returns:
            FeedAdvanceResult with status, new cursor and max cursor
        """
        response = self._request(
            "POST",
            "/distribuicao/nfe",
            json_data={
                "cpf_cnpj": tax_id,
                "tipo_consulta": "dist-nsu",
                "ultimo_nsu": cursor,
            },
        )
        result = FeedAdvanceResult.from_api_response(self._json(response))
        logger.debug(
            "Advanced feed for %s from NSU %s: status=%s ult_nsu=%s max_nsu=%s",
            tax_id,
            cursor,
            result.status,
            result.new_cursor,
            result.max_cursor,
        )
        return result

    def list_documents(
        self,
        tax_id: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        page_offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        List raw documents currently buffered in the feed.

        Args:
            tax_id: Company CNPJ/CPF
            page_size: Maximum documents to return
            page_offset: Documents to skip

        Returns:
            Raw document dicts (empty when nothing is available)
        """
        response = self._request(
            "GET",
            "/distribuicao/nfe/documentos",
            params={"cpf_cnpj": tax_id, "$top": page_size, "$skip": page_offset},
        )
        documents = self._json(response).get("data") or []
        if not isinstance(documents, list):
            raise FeedAPIError(
                status_code=response.status_code,
                message=f"Expected a document list, got {type(documents).__name__}",
                response_body=response.text,
            )
        logger.debug(f"Listed {len(documents)} documents for {tax_id}")
        return documents

    def fetch_document_by_key(self, access_key: str) -> dict[str, Any]:
        """
        Fetch one document's full payload by access key.

        Args:
            access_key: 44-digit NF-e access key

        Returns:
            Raw document dict
        """
        response = self._request("GET", f"/distribuicao/nfe/documentos/{access_key}")
        return self._json(response)

    def post_manifestation(
        self,
        tax_id: str,
        access_key: str,
        event_type: str,
        justification: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Record a recipient manifestation event on the remote authority.

        Args:
            tax_id: Recipient company CNPJ/CPF
            access_key: Document access key
            event_type: ciencia, confirmacao, desconhecimento or nao_realizada
            justification: Required by the remote for negative events

        Returns:
            Remote acknowledgement payload
        """
        payload: dict[str, Any] = {
            "cpf_cnpj": tax_id,
            "chave_nfe": access_key,
            "tipo_evento": event_type,
        }
        if justification:
            payload["justificativa"] = justification

        response = self._request("POST", "/distribuicao/nfe/manifestacoes", json_data=payload)
        try:
            return self._json(response)
        except FeedAPIError:
            # 2xx means the remote accepted the event
            logger.warning(f"Unreadable manifestation acknowledgement for {access_key}")
            return {}

    def register_company(
        self,
        tax_id: str,
        legal_name: str,
        trade_name: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Register a company with the remote provider.

        Args:
            tax_id: Normalized CNPJ
            legal_name: Razão social
            trade_name: Nome fantasia (defaults to legal name)
            email: Contact email
            address: Endereço payload (placeholder address when omitted)

        Returns:
            Remote company payload
        """
        payload: dict[str, Any] = {
            "cpf_cnpj": tax_id,
            "nome_razao_social": legal_name,
            "nome_fantasia": trade_name or legal_name,
            "endereco": address
            or {
                "logradouro": "A definir",
                "numero": "S/N",
                "bairro": "A definir",
                "codigo_municipio": "3550308",
                "cidade": "São Paulo",
                "uf": "SP",
                "cep": "01001000",
            },
        }
        if email:
            payload["email"] = email

        response = self._request("POST", "/empresas", json_data=payload)
        return self._json(response)

    def download_document(self, access_key: str, file_type: str) -> bytes:
        """
        Download a document's XML or DANFE PDF.

        Args:
            access_key: Document access key
            file_type: "xml" or "pdf"

        Returns:
            File bytes
        """
        if file_type not in DOWNLOAD_FILE_TYPES:
            raise ValueError(f"file_type must be one of {DOWNLOAD_FILE_TYPES}, got: {file_type}")

        response = self._request("GET", f"/distribuicao/nfe/documentos/{access_key}/{file_type}")
        return response.content

"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from fiscalflow.state_store import StateStore

COMPANY_CNPJ = "12345678000190"
SUPPLIER_CNPJ = "98765432000110"

ACCESS_KEY_1 = "35240112345678000190550010000001231000001234"
ACCESS_KEY_2 = "35240112345678000190550010000001241000001241"
ACCESS_KEY_3 = "35240112345678000190550010000001251000001258"


def make_raw_document(access_key: str, **overrides) -> dict:
    """Build a raw feed record as returned by the distribution list call."""
    raw = {
        "chave": access_key,
        "tipo_documento": "nfe",
        "numero": "123",
        "serie": "1",
        "data_emissao": "2024-01-15T10:30:00-03:00",
        "valor": "1500.75",
        "protocolo": "135240000000001",
        "situacao": "autorizada",
        "cnpj_emitente": "98.765.432/0001-10",
        "nome_emitente": "Fornecedor Exemplo LTDA",
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def company_id(store) -> int:
    """A registered company."""
    return store.create_company(COMPANY_CNPJ, "Empresa Teste LTDA", "Empresa Teste")


@pytest.fixture
def sample_raw_document() -> dict:
    """Sample raw NF-e record from the distribution feed."""
    return make_raw_document(ACCESS_KEY_1)

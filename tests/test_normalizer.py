"""Tests for feed record normalization and alias lookup."""

from decimal import Decimal

import pytest

from fiscalflow.schemas import (
    AuthorizationStatus,
    DocumentType,
    ManifestationStatus,
    MissingAccessKeyError,
    first_present,
    normalize_document,
    normalize_tax_id,
)
from fiscalflow.schemas.fiscal_document import UNKNOWN_SUPPLIER_NAME, parse_total_value

from conftest import ACCESS_KEY_1, make_raw_document


class TestFirstPresent:
    def test_first_alias_wins(self):
        assert first_present({"chave": "a", "chave_acesso": "b"}, ("chave", "chave_acesso")) == "a"

    def test_falls_through_empty_values(self):
        payload = {"chave": "", "chave_acesso": None, "data": {"chave": "nested"}}
        assert first_present(payload, ("chave", "chave_acesso", "data.chave")) == "nested"

    def test_missing_returns_none(self):
        assert first_present({"data": "not-a-dict"}, ("data.chave",)) is None


class TestNormalizeTaxId:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("12.345.678/0001-90", "12345678000190"),
            ("123.456.789-09", "12345678909"),
            (12345678000190, "12345678000190"),
            (None, ""),
        ],
    )
    def test_strips_non_digits(self, value, expected):
        assert normalize_tax_id(value) == expected


class TestNormalizeDocument:
    def test_full_record(self):
        doc = normalize_document(make_raw_document(ACCESS_KEY_1), company_id=7)

        assert doc.access_key == ACCESS_KEY_1
        assert doc.company_id == 7
        assert doc.document_type == DocumentType.NFE
        assert doc.document_number == "123"
        assert doc.series == "1"
        assert doc.total_value == Decimal("1500.75")
        assert doc.protocol == "135240000000001"
        assert doc.status == AuthorizationStatus.AUTHORIZED
        assert doc.manifestation_status == ManifestationStatus.NONE
        assert doc.supplier_tax_id == "98765432000110"
        assert doc.supplier_name == "Fornecedor Exemplo LTDA"

    def test_raw_payload_kept_verbatim(self):
        raw = make_raw_document(ACCESS_KEY_1, extra_field={"x": 1})
        doc = normalize_document(raw, company_id=1)
        assert doc.raw_data == raw

    def test_alternate_aliases(self):
        raw = {
            "chave_acesso": ACCESS_KEY_1,
            "emit_cnpj": "98765432000110",
            "emit_nome": "Outro Nome",
        }
        doc = normalize_document(raw, company_id=1)

        assert doc.access_key == ACCESS_KEY_1
        assert doc.supplier_tax_id == "98765432000110"
        assert doc.supplier_name == "Outro Nome"

    def test_missing_access_key_raises(self):
        raw = make_raw_document(ACCESS_KEY_1)
        del raw["chave"]
        with pytest.raises(MissingAccessKeyError):
            normalize_document(raw, company_id=1)

    def test_minimal_record_gets_defaults(self):
        doc = normalize_document({"chave": ACCESS_KEY_1}, company_id=1)

        assert doc.document_type == DocumentType.NFE
        assert doc.document_number == "0"
        assert doc.series == "0"
        assert doc.total_value == Decimal("0")
        assert doc.protocol is None
        assert doc.supplier_tax_id is None
        assert doc.supplier_name is None
        assert doc.issue_date.endswith("Z")

    def test_supplier_name_defaults_when_tax_id_present(self):
        doc = normalize_document({"chave": ACCESS_KEY_1, "cnpj_emitente": "1"}, company_id=1)
        assert doc.supplier_name == UNKNOWN_SUPPLIER_NAME

    @pytest.mark.parametrize(
        "situacao,expected",
        [
            ("cancelada", AuthorizationStatus.CANCELED),
            ("autorizada", AuthorizationStatus.AUTHORIZED),
            ("denegada", AuthorizationStatus.AUTHORIZED),
            ("", AuthorizationStatus.AUTHORIZED),
            (None, AuthorizationStatus.AUTHORIZED),
            ("qualquer coisa", AuthorizationStatus.AUTHORIZED),
        ],
    )
    def test_lenient_status_mapping(self, situacao, expected):
        doc = normalize_document(make_raw_document(ACCESS_KEY_1, situacao=situacao), company_id=1)
        assert doc.status == expected

    @pytest.mark.parametrize(
        "tipo,expected",
        [
            ("nfe", DocumentType.NFE),
            ("NFCe", DocumentType.NFCE),
            ("cte", DocumentType.CTE),
            ("NFS-e", DocumentType.NFSE),
            ("mdfe", DocumentType.NFE),
        ],
    )
    def test_document_type_mapping(self, tipo, expected):
        doc = normalize_document(make_raw_document(ACCESS_KEY_1, tipo_documento=tipo), 1)
        assert doc.document_type == expected


class TestParseTotalValue:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1500.75", Decimal("1500.75")),
            ("1500,75", Decimal("1500.75")),
            ("1.234,56", Decimal("1234.56")),
            ("1.234.567,8", Decimal("1234567.8")),
            ("1,234.56", Decimal("1234.56")),
            (1500.75, Decimal("1500.75")),
            (10, Decimal("10")),
            ("abc", Decimal("0")),
            (None, Decimal("0")),
        ],
    )
    def test_parse(self, value, expected):
        assert parse_total_value(value) == expected

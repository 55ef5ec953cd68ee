"""Tests for company registration."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from fiscalflow.feed_client import FeedAPIError, FeedClient
from fiscalflow.services.companies import CompanyService, InvalidCompanyError
from fiscalflow.state_store import StateStore, StoreError


class TestCompanyService:
    def test_register_normalizes_cnpj(self, store):
        company = CompanyService(store).register("12.345.678/0001-90", "Empresa Teste LTDA")

        assert company.cnpj == "12345678000190"
        assert store.get_company_by_tax_id("12345678000190").id == company.id

    @pytest.mark.parametrize("cnpj", ["123", "123.456.789-09", "", "1234567800019012"])
    def test_invalid_cnpj(self, store, cnpj):
        with pytest.raises(InvalidCompanyError):
            CompanyService(store).register(cnpj, "Empresa")

    def test_legal_name_required(self, store):
        with pytest.raises(InvalidCompanyError):
            CompanyService(store).register("12345678000190", "  ")

    def test_duplicate_rejected(self, store):
        service = CompanyService(store)
        service.register("12345678000190", "Empresa")

        with pytest.raises(InvalidCompanyError):
            service.register("12.345.678/0001-90", "Outra")

    def test_registers_remotely(self, store):
        feed = MagicMock(spec=FeedClient)

        CompanyService(store, feed).register(
            "12345678000190", "Empresa Teste LTDA", trade_name="Teste", email="fiscal@teste.com"
        )

        feed.register_company.assert_called_once_with(
            tax_id="12345678000190",
            legal_name="Empresa Teste LTDA",
            trade_name="Teste",
            email="fiscal@teste.com",
        )

    def test_remote_failure_is_not_fatal(self, store):
        feed = MagicMock(spec=FeedClient)
        feed.register_company.side_effect = FeedAPIError(409, "Conflict")

        company = CompanyService(store, feed).register("12345678000190", "Empresa")

        assert store.get_company(company.id) is not None

    def test_missing_record_after_insert_is_store_error(self):
        store = MagicMock(spec=StateStore)
        store.create_company.return_value = 7
        store.get_company.return_value = None

        with pytest.raises(StoreError):
            CompanyService(store).register("12345678000190", "Empresa")

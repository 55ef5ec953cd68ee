"""Company registration.

A company is stored locally first; registering it with the remote provider is
best-effort and never fails the local registration.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fiscalflow.feed_client import FeedError
from fiscalflow.schemas import normalize_tax_id
from fiscalflow.state_store import CompanyRecord, DuplicateCompanyError, StoreError

if TYPE_CHECKING:
    from fiscalflow.feed_client import FeedClient
    from fiscalflow.state_store import StateStore

logger = logging.getLogger(__name__)

CNPJ_LENGTH = 14


class InvalidCompanyError(ValueError):
    """Company data was rejected (bad CNPJ, missing name, or already registered)."""

    pass


class CompanyService:
    def __init__(self, state_store: StateStore, feed_client: FeedClient | None = None) -> None:
        self.store = state_store
        self.feed = feed_client

    def register(
        self,
        cnpj: str,
        legal_name: str,
        trade_name: str | None = None,
        email: str | None = None,
    ) -> CompanyRecord:
        """Register a company locally and, if a feed client is set, remotely.

        Raises:
            InvalidCompanyError: CNPJ is not 14 digits, legal name is empty,
                or the CNPJ is already registered.
        """
        clean_cnpj = normalize_tax_id(cnpj)
        if len(clean_cnpj) != CNPJ_LENGTH:
            raise InvalidCompanyError(f"Invalid CNPJ: {cnpj!r}")
        if not legal_name or not legal_name.strip():
            raise InvalidCompanyError("Legal name is required")

        try:
            company_id = self.store.create_company(
                cnpj=clean_cnpj,
                legal_name=legal_name.strip(),
                trade_name=trade_name or None,
            )
        except DuplicateCompanyError as e:
            raise InvalidCompanyError(f"CNPJ {clean_cnpj} is already registered") from e

        logger.info(f"Registered company {company_id} ({clean_cnpj})")

        if self.feed is not None:
            try:
                self.feed.register_company(
                    tax_id=clean_cnpj,
                    legal_name=legal_name.strip(),
                    trade_name=trade_name,
                    email=email,
                )
            except FeedError as e:
                logger.warning(f"Failed to register company {clean_cnpj} with Nuvem Fiscal: {e}")

        company = self.store.get_company(company_id)
        if company is None:
            raise StoreError(f"Company {company_id} vanished after insert")
        return company

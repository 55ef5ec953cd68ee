"""Tests for state store."""

import sqlite3
import time
from decimal import Decimal

import pytest

from fiscalflow.state_store import (
    DuplicateCompanyError,
    DuplicateDocumentError,
    StateStore,
    SyncRunStatus,
)
from fiscalflow.state_store.migrations import MigrationRunner, get_all_migrations
from fiscalflow.state_store.migrations.runner import Migration

from conftest import ACCESS_KEY_1, ACCESS_KEY_2, COMPANY_CNPJ, SUPPLIER_CNPJ


def insert_document(store: StateStore, company_id: int, access_key: str, **overrides) -> int:
    values = {
        "company_id": company_id,
        "access_key": access_key,
        "document_type": "NFE",
        "document_number": "123",
        "series": "1",
        "issue_date": "2024-01-15T10:30:00-03:00",
        "total_value": Decimal("100.50"),
        "status": "authorized",
        "raw_data": {"chave": access_key},
    }
    values.update(overrides)
    return store.insert_document(**values)


class TestStateStore:
    """Tests for SQLite state store."""

    def test_init_creates_db(self, temp_db):
        """Initializing creates database file."""
        StateStore(temp_db)
        assert temp_db.exists()

    def test_init_creates_tables(self, store):
        """All required tables are created, including migrated ones."""
        conn = store._get_connection()
        try:
            tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = [t[0] for t in tables]

            assert "companies" in table_names
            assert "suppliers" in table_names
            assert "documents" in table_names
            assert "sync_runs" in table_names
            assert "document_events" in table_names
            assert "sync_leases" in table_names
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        StateStore(temp_db)
        store = StateStore(temp_db)
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            assert runner.get_current_version() == max(m.version for m in get_all_migrations())
            assert runner.run_pending() == []
        finally:
            conn.close()


class TestMigrations:
    def test_migrations_are_ordered(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:2] == [1, 2]

    def test_rollback_drops_table(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            leases = next(m for m in get_all_migrations() if m.name == "sync_leases")
            runner.rollback_migration(leases)

            assert 2 not in runner.get_applied_versions()
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            assert "sync_leases" not in tables
        finally:
            conn.close()

    def test_rollback_without_downgrade(self, store):
        conn = store._get_connection()
        try:
            runner = MigrationRunner(conn)
            one_way = Migration(version=99, name="one_way", upgrade=lambda c: None)
            runner.apply_migration(one_way)

            with pytest.raises(NotImplementedError):
                runner.rollback_migration(one_way)
            assert runner.get_current_version() == 99
        finally:
            conn.close()


class TestCompanyOperations:
    def test_create_and_get(self, store):
        company_id = store.create_company(COMPANY_CNPJ, "Empresa Teste LTDA", "Empresa Teste")

        company = store.get_company(company_id)
        assert company is not None
        assert company.cnpj == COMPANY_CNPJ
        assert company.trade_name == "Empresa Teste"
        assert store.get_company_by_tax_id(COMPANY_CNPJ).id == company_id

    def test_duplicate_cnpj_rejected(self, store, company_id):
        with pytest.raises(DuplicateCompanyError):
            store.create_company(COMPANY_CNPJ, "Outra")

    def test_list_companies(self, store, company_id):
        other = store.create_company("11222333000181", "Outra Empresa")
        assert [c.id for c in store.list_companies()] == [company_id, other]

    def test_unknown_company(self, store):
        assert store.get_company(999) is None
        assert store.get_company_by_tax_id("00000000000000") is None


class TestSupplierOperations:
    def test_upsert_inserts_then_overwrites_name(self, store):
        first_id = store.upsert_supplier(SUPPLIER_CNPJ, "Nome Antigo")
        second_id = store.upsert_supplier(SUPPLIER_CNPJ, "Nome Novo")

        assert first_id == second_id
        assert store.get_supplier_by_tax_id(SUPPLIER_CNPJ).name == "Nome Novo"
        assert store.count_suppliers() == 1


class TestDocumentOperations:
    def test_insert_and_get(self, store, company_id):
        document_id = insert_document(store, company_id, ACCESS_KEY_1)

        doc = store.get_document(document_id)
        assert doc.access_key == ACCESS_KEY_1
        assert doc.total_value == Decimal("100.50")
        assert doc.manifestation_status == "none"
        assert doc.raw_data == {"chave": ACCESS_KEY_1}
        assert store.document_exists(ACCESS_KEY_1)
        assert store.get_document_by_access_key(ACCESS_KEY_1).id == document_id

    def test_duplicate_access_key_rejected(self, store, company_id):
        insert_document(store, company_id, ACCESS_KEY_1)

        with pytest.raises(DuplicateDocumentError) as exc_info:
            insert_document(store, company_id, ACCESS_KEY_1, document_number="999")

        assert exc_info.value.access_key == ACCESS_KEY_1
        assert store.count_documents() == 1

    def test_access_key_unique_across_companies(self, store, company_id):
        other = store.create_company("11222333000181", "Outra Empresa")
        insert_document(store, company_id, ACCESS_KEY_1)

        with pytest.raises(DuplicateDocumentError):
            insert_document(store, other, ACCESS_KEY_1)

    def test_unknown_company_is_integrity_error(self, store):
        with pytest.raises(sqlite3.IntegrityError):
            insert_document(store, 999, ACCESS_KEY_1)

    def test_record_manifestation_writes_status_and_event(self, store, company_id):
        document_id = insert_document(store, company_id, ACCESS_KEY_1)

        store.record_manifestation(document_id, "confirmed", "Confirmação da Operação")

        assert store.get_document(document_id).manifestation_status == "confirmed"
        events = store.get_document_events(document_id)
        assert len(events) == 1
        assert events[0]["event_type"] == "manifestation"
        assert events[0]["event_description"] == "Confirmação da Operação"


class TestSyncRunOperations:
    def test_create_and_finish(self, store, company_id):
        run_id = store.create_sync_run(company_id, 100)
        run = store.get_sync_run(run_id)
        assert run.status == SyncRunStatus.IN_PROGRESS
        assert run.last_nsu == 100

        assert store.finish_sync_run(
            run_id, 150, SyncRunStatus.SUCCESS, 3, "3 documentos processados."
        )

        run = store.get_sync_run(run_id)
        assert run.status == SyncRunStatus.SUCCESS
        assert run.final_nsu == 150
        assert run.documents_synced == 3
        assert run.finished_at is not None

    def test_finish_happens_once(self, store, company_id):
        run_id = store.create_sync_run(company_id, 0)
        assert store.finish_sync_run(run_id, 10, SyncRunStatus.SUCCESS, 1)
        assert not store.finish_sync_run(run_id, 20, SyncRunStatus.FAILED, 0)
        assert store.get_sync_run(run_id).final_nsu == 10

    def test_last_successful_ignores_failed_and_in_progress(self, store, company_id):
        ok = store.create_sync_run(company_id, 0)
        store.finish_sync_run(ok, 100, SyncRunStatus.SUCCESS, 5)
        time.sleep(0.01)
        failed = store.create_sync_run(company_id, 100)
        store.finish_sync_run(failed, 180, SyncRunStatus.FAILED, 2)
        store.create_sync_run(company_id, 100)

        last = store.get_last_successful_sync_run(company_id)
        assert last.id == ok
        assert last.final_nsu == 100

    def test_last_successful_is_newest(self, store, company_id):
        first = store.create_sync_run(company_id, 0)
        store.finish_sync_run(first, 100, SyncRunStatus.SUCCESS, 5)
        time.sleep(0.01)
        second = store.create_sync_run(company_id, 100)
        store.finish_sync_run(second, 140, SyncRunStatus.SUCCESS, 2)

        assert store.get_last_successful_sync_run(company_id).final_nsu == 140

    def test_list_sync_runs_newest_first(self, store, company_id):
        first = store.create_sync_run(company_id, 0)
        second = store.create_sync_run(company_id, 0)

        runs = store.list_sync_runs(company_id)
        assert [r.id for r in runs] == [second, first]


class TestSyncLeases:
    def test_lease_is_exclusive(self, store, company_id):
        assert store.acquire_sync_lease(company_id, "owner-a", ttl_seconds=60)
        assert not store.acquire_sync_lease(company_id, "owner-b", ttl_seconds=60)

        assert store.release_sync_lease(company_id, "owner-a")
        assert store.acquire_sync_lease(company_id, "owner-b", ttl_seconds=60)

    def test_release_requires_owner(self, store, company_id):
        store.acquire_sync_lease(company_id, "owner-a", ttl_seconds=60)
        assert not store.release_sync_lease(company_id, "owner-b")
        assert store.get_sync_lease(company_id)["owner"] == "owner-a"

    def test_expired_lease_is_reclaimed(self, store, company_id):
        store.acquire_sync_lease(company_id, "crashed", ttl_seconds=0)
        assert store.acquire_sync_lease(company_id, "owner-b", ttl_seconds=60)
        assert store.get_sync_lease(company_id)["owner"] == "owner-b"


class TestStats:
    def test_stats_per_company(self, store, company_id):
        insert_document(store, company_id, ACCESS_KEY_1, total_value=Decimal("10.25"))
        insert_document(
            store, company_id, ACCESS_KEY_2, document_type="CTE", total_value=Decimal("5")
        )
        run_id = store.create_sync_run(company_id, 0)
        store.finish_sync_run(run_id, 42, SyncRunStatus.SUCCESS, 2)

        stats = store.get_stats(company_id)

        assert stats["documents_total"] == 2
        assert stats["documents_by_type"] == {"NFE": 1, "CTE": 1}
        assert stats["manifestation_summary"] == {"none": 1}
        assert stats["total_value"] == Decimal("15.25")
        assert stats["last_nsu"] == 42

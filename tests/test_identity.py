"""Tests for the identity mapper and tenant scoping."""

import threading
from unittest.mock import Mock

import pytest

from syncable.engine.identity import IdentityMapper
from syncable.exceptions import IdentityMappingError
from syncable.services.store import InMemoryStore
from syncable.services.tenant import TenantContext


@pytest.fixture
def mapper(store):
    return IdentityMapper(store)


def test_resolve_remote_returns_latest_upsert(mapper):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")
    mapper.upsert("Customer", 1, "Client", 11, "system_b")

    assert mapper.resolve_remote("Customer", 1, "system_b") == ("Client", 11)


def test_repeated_upsert_keeps_single_row(mapper, store):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")
    mapper.upsert("Customer", 1, "Client", 11, "system_b")

    assert len(store.list_mappings("Customer")) == 1
    assert mapper.resolve_local("Client", 10, "system_b") is None
    assert mapper.resolve_local("Client", 11, "system_b") == ("Customer", 1)


def test_mappings_are_per_system(mapper):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")
    mapper.upsert("Customer", 1, "Contact", 77, "system_c")

    assert mapper.resolve_remote("Customer", 1, "system_b") == ("Client", 10)
    assert mapper.resolve_remote("Customer", 1, "system_c") == ("Contact", 77)


def test_remote_pair_cannot_map_to_two_local_records(mapper):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")

    with pytest.raises(IdentityMappingError):
        mapper.upsert("Customer", 2, "Client", 10, "system_b")

    assert mapper.resolve_local("Client", 10, "system_b") == ("Customer", 1)


def test_ids_compare_as_text(mapper):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")

    assert mapper.resolve_local("Client", "10", "system_b") == ("Customer", 1)


def test_delete_mapping_removes_both_directions(mapper):
    mapper.upsert("Customer", 1, "Client", 10, "system_b")

    assert mapper.delete_mapping("Customer", 1, "system_b") is True
    assert mapper.resolve_remote("Customer", 1, "system_b") is None
    assert mapper.resolve_local("Client", 10, "system_b") is None
    assert mapper.delete_mapping("Customer", 1, "system_b") is False


def test_tenant_is_ignored_when_tenancy_disabled(store):
    mapper = IdentityMapper(store, TenantContext(enabled=False))
    mapper.upsert("Customer", 1, "Client", 10, "system_b", tenant_id="acme")

    assert mapper.resolve_remote("Customer", 1, "system_b", tenant_id="other") == ("Client", 10)
    assert store.list_mappings("Customer")[0].tenant_id is None


def test_tenant_scopes_lookups_when_tenancy_enabled(store):
    mapper = IdentityMapper(store, TenantContext(enabled=True))
    mapper.upsert("Customer", 1, "Client", 10, "system_b", tenant_id="acme")
    mapper.upsert("Customer", 1, "Client", 20, "system_b", tenant_id="globex")

    assert mapper.resolve_remote("Customer", 1, "system_b", tenant_id="acme") == ("Client", 10)
    assert mapper.resolve_remote("Customer", 1, "system_b", tenant_id="globex") == ("Client", 20)
    assert mapper.resolve_remote("Customer", 1, "system_b") is None


def test_current_tenant_is_used_when_none_given(store):
    tenant = TenantContext(enabled=True)
    mapper = IdentityMapper(store, tenant)

    with tenant.use("acme"):
        mapper.upsert("Customer", 1, "Client", 10, "system_b")
        assert mapper.resolve_remote("Customer", 1, "system_b") == ("Client", 10)

    assert mapper.resolve_remote("Customer", 1, "system_b") is None
    assert mapper.resolve_remote("Customer", 1, "system_b", tenant_id="acme") == ("Client", 10)


def test_concurrent_upserts_leave_one_row():
    store = InMemoryStore()
    mapper = IdentityMapper(store)

    threads = [
        threading.Thread(target=mapper.upsert, args=("Customer", 1, "Client", remote_id, "system_b"))
        for remote_id in range(20)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    rows = store.list_mappings("Customer")
    assert len(rows) == 1
    assert mapper.resolve_local("Client", rows[0].remote_id, "system_b") == ("Customer", 1)


def test_tenant_context_disabled_returns_none():
    tenant = TenantContext(enabled=False, resolver=lambda: "acme")

    with tenant.use("globex"):
        assert tenant.current() is None


def test_tenant_context_falls_back_to_resolver():
    tenant = TenantContext(enabled=True, resolver=lambda: "acme")

    assert tenant.current() == "acme"
    with tenant.use("globex"):
        assert tenant.current() == "globex"


def test_with_tenant_filter_on_dict_and_query():
    tenant = TenantContext(enabled=True, identifier_column="company_id")
    query = Mock()

    assert tenant.with_tenant_filter({"status": "open"}, "acme") == {"status": "open", "company_id": "acme"}
    tenant.with_tenant_filter(query, "acme")
    query.where.assert_called_once_with("company_id", "==", "acme")


def test_with_tenant_filter_untouched_without_tenant():
    tenant = TenantContext(enabled=True)

    assert tenant.with_tenant_filter({"status": "open"}) == {"status": "open"}
    assert TenantContext(enabled=False).with_tenant_filter({"a": 1}, "acme") == {"a": 1}

"""Tests for the Firestore store against an in-memory stand-in client."""

from datetime import timedelta
from unittest.mock import MagicMock, call, patch

import pytest
from google.cloud import firestore

from syncable.exceptions import IdentityMappingError
from syncable.models.records import (
    ConflictStatus, IdentityMapping, SyncAction, SyncConflict, SyncLogEntry, SyncLogStatus, utcnow
)
from syncable.services.firestore import FirestoreStore, _doc_id


class FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data)


class FakeDocument:
    def __init__(self, docs, doc_id):
        self._docs = docs
        self.id = doc_id

    def get(self, transaction=None):
        return FakeSnapshot(self._docs.get(self.id))

    def set(self, data):
        self._docs[self.id] = dict(data)

    def delete(self):
        self._docs.pop(self.id, None)


class FakeCollection:
    def __init__(self):
        self.docs = {}

    def document(self, doc_id):
        return FakeDocument(self.docs, doc_id)


class FakeWriter:
    """Transaction and write batch: both apply writes to the documents."""

    def set(self, ref, data):
        ref.set(data)

    def delete(self, ref):
        ref.delete()

    def commit(self):
        pass


class FakeFirestore:
    project = "test-project"

    def __init__(self):
        self.collections = {}

    def collection(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def transaction(self):
        return FakeWriter()

    def batch(self):
        return FakeWriter()


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def fs_store(db):
    with patch("syncable.services.firestore.firestore.transactional", side_effect=lambda fn: fn):
        yield FirestoreStore(client=db)


def mapping(local_id=1, remote_id=99, **kwargs):
    return IdentityMapping(
        local_type="Customer", local_id=local_id, remote_type="Client", remote_id=remote_id,
        system_id="system_b", **kwargs,
    )


def test_doc_id_quotes_parts():
    assert _doc_id("Customer", 1, "system_b", None) == "Customer|1|system_b|"
    assert _doc_id("a|b", "c/d") == "a%7Cb|c%2Fd"


def test_upsert_writes_mapping_and_remote_index(fs_store, db):
    fs_store.upsert_mapping(mapping())

    assert "Customer|1|system_b|" in db.collection("syncable_id_mappings").docs
    assert db.collection("syncable_id_mapping_remotes").docs == {
        "Client|99|system_b|": {"mapping_id": "Customer|1|system_b|"}
    }
    assert fs_store.get_mapping_by_local("Customer", 1, "system_b").remote_id == 99
    assert fs_store.get_mapping_by_remote("Client", "99", "system_b").local_id == 1


def test_upsert_moves_remote_index(fs_store, db):
    fs_store.upsert_mapping(mapping(remote_id=99))
    stored = fs_store.upsert_mapping(mapping(remote_id=100))

    assert stored.remote_id == 100
    assert list(db.collection("syncable_id_mapping_remotes").docs) == ["Client|100|system_b|"]
    assert len(db.collection("syncable_id_mappings").docs) == 1
    assert fs_store.get_mapping_by_remote("Client", 99, "system_b") is None


def test_upsert_rejects_remote_bound_elsewhere(fs_store):
    fs_store.upsert_mapping(mapping(local_id=1))

    with pytest.raises(IdentityMappingError):
        fs_store.upsert_mapping(mapping(local_id=2))

    assert fs_store.get_mapping_by_local("Customer", 2, "system_b") is None


def test_tenant_is_part_of_the_key(fs_store):
    fs_store.upsert_mapping(mapping(tenant_id="acme"))

    assert fs_store.get_mapping_by_local("Customer", 1, "system_b") is None
    assert fs_store.get_mapping_by_local("Customer", 1, "system_b", "acme").tenant_id == "acme"


def test_delete_mapping_removes_both_documents(fs_store, db):
    fs_store.upsert_mapping(mapping())

    assert fs_store.delete_mapping("Customer", 1, "system_b") is True
    assert db.collection("syncable_id_mappings").docs == {}
    assert db.collection("syncable_id_mapping_remotes").docs == {}
    assert fs_store.delete_mapping("Customer", 1, "system_b") is False


def test_conflict_round_trip(fs_store):
    conflict = SyncConflict(
        model_type="Customer", model_id=1, conflicting_fields=["name"],
        local_values={"name": "Local"}, remote_values={"name": "Remote"}, origin_system_id="system_b",
    )
    fs_store.create_conflict(conflict)

    loaded = fs_store.get_conflict(conflict.id)
    loaded.status = ConflictStatus.RESOLVED
    loaded.resolved_at = utcnow()
    fs_store.save_conflict(loaded)

    reloaded = fs_store.get_conflict(conflict.id)
    assert reloaded.status == ConflictStatus.RESOLVED
    assert reloaded.resolved_at is not None
    assert fs_store.get_conflict("missing") is None


@pytest.fixture
def query_client():
    client = MagicMock()
    query = client.collection.return_value
    query.where.return_value = query
    query.order_by.return_value = query
    query.limit.return_value = query
    return client


def test_find_latest_log_query(query_client):
    entry = SyncLogEntry(
        model_type="Customer", model_id=1, action=SyncAction.UPDATE, status=SyncLogStatus.SUCCESS,
        data={"origin_system_id": "system_b"},
    )
    query = query_client.collection.return_value
    query.stream.return_value = [FakeSnapshot(entry.to_firestore())]
    store = FirestoreStore(client=query_client)
    since = utcnow() - timedelta(minutes=5)

    found = store.find_latest_log("Customer", 1, SyncLogStatus.SUCCESS, "system_b", since)

    assert found.id == entry.id
    assert found.origin_system_id == "system_b"
    query_client.collection.assert_called_with("syncable_logs")
    assert query.where.call_args_list == [
        call("model_type", "==", "Customer"),
        call("model_id", "==", 1),
        call("status", "==", "success"),
        call("data.origin_system_id", "==", "system_b"),
        call("created_at", ">=", since),
    ]
    query.order_by.assert_called_once_with("created_at", direction=firestore.Query.DESCENDING)
    query.limit.assert_called_once_with(1)


def test_find_latest_log_none(query_client):
    query_client.collection.return_value.stream.return_value = []

    assert FirestoreStore(client=query_client).find_latest_log(
        "Customer", 1, SyncLogStatus.SUCCESS, "system_b"
    ) is None


def test_list_conflicts_filters(query_client):
    query = query_client.collection.return_value
    query.stream.return_value = []

    FirestoreStore(client=query_client).list_conflicts(ConflictStatus.PENDING, "Customer", 10)

    assert query.where.call_args_list == [
        call("status", "==", "pending"),
        call("model_type", "==", "Customer"),
    ]
    query.limit.assert_called_once_with(10)


def test_errors_are_logged_and_raised(query_client):
    query_client.collection.side_effect = RuntimeError("unavailable")
    store = FirestoreStore(client=query_client)

    with pytest.raises(RuntimeError):
        store.list_logs()

"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from unittest.mock import Mock

import pytest

# Ensure src directory is in Python path for all tests
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from syncable.core.config import ApiSettings, QueueSettings, SyncSettings
from syncable.engine.events import EventBus
from syncable.engine.sync import SyncOrchestrator
from syncable.integrations.client import SyncApiClient
from syncable.models.domain import SyncableModel
from syncable.services.encryption import EncryptionService
from syncable.services.repository import InMemoryRepository
from syncable.services.store import InMemoryStore

ENCRYPTION_KEY = EncryptionService.generate_key()


class Customer(SyncableModel):
    sync_target = "Client"
    sync_map = {"name": "full_name", "email": "email", "status": "status"}
    sync_relations = {
        "addresses": {"type": "hasMany", "target_relation": "locations", "fields": {"city": "town"}},
    }
    sync_relation_keys = {"locations": "town"}

    def __init__(self, **attributes):
        super().__init__(**attributes)
        self.received_notes = []

    def handle_additional_notes(self, data):
        self.received_notes.append(data)


class Invoice(SyncableModel):
    sync_conditions = {"status": ["open", "paid"]}


@pytest.fixture
def settings():
    """Settings for a system talking to 'system_b', with inline jobs and no delays."""
    return SyncSettings(
        system_id="system_a",
        api=ApiSettings(
            base_url="http://remote.test",
            key="shared-secret",
            retry_attempts=3,
            retry_delay=0,
            target_system_id="system_b",
        ),
        queue=QueueSettings(enabled=False),
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def repository():
    return InMemoryRepository(Customer, Invoice)


@pytest.fixture
def mock_client():
    client = Mock(spec=SyncApiClient)
    client.send.return_value = {"success": True, "data": {"id": 99, "model_type": "Client"}}
    return client


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def orchestrator(settings, store, repository, mock_client, events):
    return SyncOrchestrator(settings, store, repository, client=mock_client, events=events)


@pytest.fixture
def saved_customer(repository):
    customer = Customer(name="Ada Lovelace", email="ada@example.com", status="active")
    repository.save(customer)
    return customer

"""Tests for settings and secret loading."""

from unittest.mock import MagicMock

import pytest

from syncable.core.config import SyncSettings, get_bool_env, get_required_env
from syncable.services.secrets import SecretManagerService


def test_defaults():
    settings = SyncSettings()

    assert settings.api.retry_attempts == 3
    assert settings.api.retry_delay == 5
    assert settings.queue.enabled is True
    assert settings.tenancy.identifier_column == "tenant_id"
    assert settings.bidirectional.detection_window_minutes == 5
    assert settings.conflict_resolution.strategy == "last_write_wins"
    assert settings.differential_sync.enabled is True
    assert settings.encryption.enabled is False


def test_from_env(monkeypatch):
    monkeypatch.setenv("SYNCABLE_SYSTEM_ID", "system_a")
    monkeypatch.setenv("SYNCABLE_TARGET_URL", "https://b.example.com")
    monkeypatch.setenv("SYNCABLE_API_KEY", "shared-secret")
    monkeypatch.setenv("SYNCABLE_RETRY_ATTEMPTS", "5")
    monkeypatch.setenv("SYNCABLE_QUEUE_ENABLED", "false")
    monkeypatch.setenv("SYNCABLE_BIDIRECTIONAL_ENABLED", "yes")
    monkeypatch.setenv("SYNCABLE_CONFLICT_STRATEGY", "manual")
    monkeypatch.setenv("SYNCABLE_TARGET_TENANT_ID", "acme")

    settings = SyncSettings.from_env()

    assert settings.system_id == "system_a"
    assert settings.api.base_url == "https://b.example.com"
    assert settings.api.key == "shared-secret"
    assert settings.api.retry_attempts == 5
    assert settings.queue.enabled is False
    assert settings.bidirectional.enabled is True
    assert settings.conflict_resolution.strategy == "manual"
    assert settings.target_tenant_id == "acme"


def test_secrets_take_precedence_over_environment(monkeypatch):
    monkeypatch.setenv("SYNCABLE_API_KEY", "from-env")
    monkeypatch.setenv("SYNCABLE_ENCRYPTION_KEY", "env-key")
    client = MagicMock()

    def access(request):
        if request["name"].endswith("/syncable-api-key/versions/latest"):
            response = MagicMock()
            response.payload.data = b"from-secret-manager"
            return response
        raise RuntimeError("secret not found")

    client.access_secret_version.side_effect = access

    settings = SyncSettings.from_env(SecretManagerService(project_id="test-project", client=client))

    assert settings.api.key == "from-secret-manager"
    assert settings.encryption.key == "env-key"


@pytest.mark.parametrize("value,expected", [
    ("1", True), ("true", True), ("On", True), ("0", False), ("no", False), ("", False),
])
def test_get_bool_env(monkeypatch, value, expected):
    monkeypatch.setenv("SYNCABLE_FLAG", value)

    assert get_bool_env("SYNCABLE_FLAG") is expected


def test_get_required_env_missing(monkeypatch):
    monkeypatch.delenv("SYNCABLE_MISSING", raising=False)

    with pytest.raises(ValueError):
        get_required_env("SYNCABLE_MISSING")


def test_secret_is_fetched_once():
    client = MagicMock()
    client.access_secret_version.return_value.payload.data = b"s3cret"
    service = SecretManagerService(project_id="test-project", client=client)

    assert service.get_secret("syncable-api-key") == "s3cret"
    assert service.get_secret("syncable-api-key") == "s3cret"

    client.access_secret_version.assert_called_once_with(
        request={"name": "projects/test-project/secrets/syncable-api-key/versions/latest"}
    )


def test_secret_falls_back_to_default():
    client = MagicMock()
    client.access_secret_version.side_effect = RuntimeError("permission denied")
    service = SecretManagerService(project_id="test-project", client=client)

    assert service.get_secret_or_default("syncable-api-key", "from-env") == "from-env"


def test_secret_service_requires_project(monkeypatch):
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

    with pytest.raises(ValueError):
        SecretManagerService(client=MagicMock())

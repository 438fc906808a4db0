"""Tests for the sync API client."""

import logging
from unittest.mock import Mock, patch

import pytest
import requests

from syncable.core.config import ApiSettings
from syncable.exceptions import SyncAuthenticationError, SyncRequestError, TransientTransportError
from syncable.integrations.client import (
    API_KEY_ENCRYPTED_HEADER, API_KEY_HEADER, SyncApiClient, endpoint_for_action
)
from syncable.models.records import SyncAction
from syncable.services.encryption import EncryptionService


def make_response(status_code=200, json_data=None, reason="OK", text=""):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def api_settings():
    return ApiSettings(base_url="http://remote.test/", key="shared-secret", retry_attempts=3, retry_delay=0)


@pytest.fixture
def encryption():
    return EncryptionService(EncryptionService.generate_key())


@pytest.fixture
def client(api_settings, encryption):
    client = SyncApiClient(api_settings, encryption)
    client.session.request = Mock()
    return client


@pytest.mark.parametrize("action,endpoint", [
    ("create", "/api/syncable/create"),
    (SyncAction.UPDATE, "/api/syncable/update"),
    ("delete", "/api/syncable/delete"),
    ("batch", "/api/syncable/batch"),
    ("anything", "/api/syncable"),
])
def test_endpoint_for_action(action, endpoint):
    assert endpoint_for_action(action) == endpoint


def test_send_posts_payload_to_action_endpoint(client):
    client.session.request.return_value = make_response(json_data={"success": True})

    result = client.send({"source_model": "Customer"}, "create")

    assert result == {"success": True}
    args, kwargs = client.session.request.call_args
    assert args == ("POST", "http://remote.test/api/syncable/create")
    assert kwargs["json"] == {"source_model": "Customer"}
    assert kwargs["timeout"] == 30


def test_api_key_is_encrypted_by_default(client, encryption):
    client.session.request.return_value = make_response(json_data={"success": True})

    client.send({}, "update")

    headers = client.session.request.call_args.kwargs["headers"]
    assert headers[API_KEY_ENCRYPTED_HEADER] == "true"
    assert encryption.decrypt(headers[API_KEY_HEADER]) == "shared-secret"


def test_plaintext_api_key_when_encryption_disabled(api_settings, encryption):
    api_settings.encrypt_key = False
    client = SyncApiClient(api_settings, encryption)
    client.session.request = Mock(return_value=make_response(json_data={"success": True}))

    client.send({}, "update")

    headers = client.session.request.call_args.kwargs["headers"]
    assert headers == {API_KEY_HEADER: "shared-secret", API_KEY_ENCRYPTED_HEADER: "false"}


def test_plaintext_api_key_when_key_encryption_fails(client, caplog):
    client.encryption = Mock()
    client.encryption.encrypt.side_effect = RuntimeError("broken")
    client.session.request.return_value = make_response(json_data={"success": True})

    with caplog.at_level(logging.ERROR, logger="syncable.integrations.client"):
        client.send({}, "update")

    assert "Failed to encrypt API key" in caplog.text

    headers = client.session.request.call_args.kwargs["headers"]
    assert headers[API_KEY_HEADER] == "shared-secret"
    assert headers[API_KEY_ENCRYPTED_HEADER] == "false"


@patch("syncable.integrations.client.time.sleep")
def test_connection_failure_then_success(mock_sleep, client):
    client.session.request.side_effect = [
        requests.exceptions.ConnectionError("connection refused"),
        make_response(json_data={"success": True, "data": {"id": 5}}),
    ]

    result = client.send({}, "create")

    assert result == {"success": True, "data": {"id": 5}}
    assert client.session.request.call_count == 2
    mock_sleep.assert_called_once_with(0)


@patch("syncable.integrations.client.time.sleep")
def test_server_errors_retried_until_budget_spent(mock_sleep, client):
    client.session.request.return_value = make_response(503, reason="Service Unavailable")

    with pytest.raises(TransientTransportError) as exc_info:
        client.send({}, "update")

    assert client.session.request.call_count == 3
    assert exc_info.value.status_code == 503


@patch("syncable.integrations.client.time.sleep")
def test_timeouts_are_transient(mock_sleep, client):
    client.session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(TransientTransportError):
        client.send({}, "update")

    assert client.session.request.call_count == 3


@patch("syncable.integrations.client.time.sleep")
def test_client_errors_are_not_retried(mock_sleep, client):
    client.session.request.return_value = make_response(422, reason="Unprocessable Entity")

    with pytest.raises(SyncRequestError) as exc_info:
        client.send({}, "update")

    assert not isinstance(exc_info.value, TransientTransportError)
    assert exc_info.value.status_code == 422
    assert exc_info.value.reason == "Unprocessable Entity"
    assert client.session.request.call_count == 1
    mock_sleep.assert_not_called()


def test_unauthorized_raises_authentication_error(client):
    client.session.request.return_value = make_response(401, reason="Unauthorized", text="Invalid API key.")

    with pytest.raises(SyncAuthenticationError):
        client.send({}, "update")

    assert client.session.request.call_count == 1


def test_non_json_response_returns_none(client):
    client.session.request.return_value = make_response(200)

    assert client.send({}, "update") is None


def test_send_batch(client):
    client.session.request.return_value = make_response(json_data={"success": True, "results": []})

    client.send_batch([{"action": "create", "data": {}}], "system_a")

    args, kwargs = client.session.request.call_args
    assert args[1] == "http://remote.test/api/syncable/batch"
    assert kwargs["json"] == {"operations": [{"action": "create", "data": {}}], "origin_system_id": "system_a"}

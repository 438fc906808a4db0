"""Tests for batch application of received operations."""

import pytest

from syncable.exceptions import SyncValidationError


def create_op(source_id, name):
    return {
        "action": "create",
        "data": {
            "source_model": "Client",
            "source_id": source_id,
            "target_model": "Customer",
            "data": {"name": name},
        },
    }


def test_operations_are_independent(orchestrator, repository):
    unmapped_update = {
        "action": "update",
        "data": {"source_model": "Client", "source_id": 404, "data": {"name": "Nobody"}},
    }

    result = orchestrator.batch(
        {"operations": [create_op(1, "First"), unmapped_update, create_op(3, "Third")]}, "system_b"
    )

    assert result["success"] is False
    assert len(result["results"]) == 3
    assert result["results"][0]["success"] is True
    assert result["results"][1]["success"] is False
    assert "No mapping" in result["results"][1]["error"]
    assert result["results"][2]["success"] is True
    names = sorted(c.get_attribute("name") for c in repository.all("Customer"))
    assert names == ["First", "Third"]


def test_all_operations_succeed(orchestrator):
    result = orchestrator.batch({"operations": [create_op(1, "First"), create_op(2, "Second")]}, "system_b")

    assert result["success"] is True
    assert [r["data"]["model_type"] for r in result["results"]] == ["Customer", "Customer"]


def test_bare_list_of_operations(orchestrator):
    result = orchestrator.batch([create_op(1, "First")], "system_b")

    assert result["success"] is True


def test_later_operations_see_earlier_ones(orchestrator, repository):
    update = {
        "action": "update",
        "data": {"source_model": "Client", "source_id": 1, "data": {"name": "Renamed"}},
    }

    result = orchestrator.batch({"operations": [create_op(1, "First"), update]}, "system_b")

    assert result["success"] is True
    assert [c.get_attribute("name") for c in repository.all("Customer")] == ["Renamed"]


@pytest.mark.parametrize("body", [{}, {"operations": "create"}, {"operations": None}])
def test_missing_operations_list_is_rejected(orchestrator, body):
    with pytest.raises(SyncValidationError):
        orchestrator.batch(body, "system_b")


@pytest.mark.parametrize("operation", [
    {"action": "create"},
    {"data": {"source_model": "Client", "source_id": 1}},
    {"action": "explode", "data": {}},
    "create",
])
def test_malformed_operation_fails_alone(orchestrator, operation):
    result = orchestrator.batch({"operations": [operation, create_op(2, "Second")]}, "system_b")

    assert result["success"] is False
    assert result["results"][0] == {
        "success": False,
        "error": 'Each operation requires "action" and "data" fields.',
    }
    assert result["results"][1]["success"] is True

"""
End-to-End Gateway Test Suite
Drives the SDK against the in-process fake gateway: request hashing
agreement, the approval lifecycle, error mapping, listing, replay and the
execution gate.

Usage:
    pytest tests/test_gateway_flow.py
"""

from __future__ import annotations

import pytest

from governance_sdk import (
    ActionRequest,
    ActionStatus,
    AuthenticationError,
    BatchItemError,
    ClientConfig,
    DecisionOutcome,
    GovernanceClient,
    GovernanceError,
    InvalidStateError,
    NotFoundError,
    PolicyDeniedError,
    compute_request_hash,
    execute_if_allowed,
    replay_decision,
    verify_request_hash,
)
from fake_gateway import server_request_hash


def _request(tool: str = "http", operation: str = "get", **params) -> ActionRequest:
    return ActionRequest(
        agent_id="agent:e2e",
        tool=tool,
        operation=operation,
        params=params or {"url": "https://example.com"},
    )


# ---------------------------------------------------------------------------
# Hash agreement
# ---------------------------------------------------------------------------

def test_client_hash_matches_server_hash(gateway_client):
    request = ActionRequest(
        agent_id="agent:e2e",
        tool="http",
        operation="post",
        params={"url": "https://example.com/ü", "body": {"z": [1, 2, {"b": None, "a": True}], "a": "x\ny"}},
        context={"trace": "t-1", "attempt": 2},
    )
    action = gateway_client.submit(request)
    assert action.request_hash == compute_request_hash(request)
    assert action.request_hash == server_request_hash(request.to_payload())
    assert verify_request_hash(action.raw, action.request_hash)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def test_allowed_action_runs_to_completion(gateway_client, gateway, clock):
    action = gateway_client.submit(_request())
    assert action.status == ActionStatus.ALLOWED
    assert action.outcome == DecisionOutcome.EXECUTE

    started = gateway_client.start(action.id)
    assert started.status == ActionStatus.EXECUTING

    clock.on_sleep = lambda: gateway.finish(action.id)
    done = gateway_client.wait_for_completion(action.id, poll_interval=0.5)
    assert done.status == ActionStatus.SUCCEEDED
    assert clock.sleeps == [0.5]


def test_approval_lifecycle(gateway_client, gateway):
    action = gateway_client.submit(_request("payments", "refund", amount=25))
    assert action.status == ActionStatus.PENDING_APPROVAL
    assert action.approval_token

    approved = gateway_client.approve(action.id)
    assert approved.status == ActionStatus.APPROVED
    assert ("GET", f"/v1/actions/{action.id}") in gateway.calls

    with pytest.raises(InvalidStateError):
        gateway_client.approve(action.id)

    assert gateway_client.start(action.id).status == ActionStatus.EXECUTING


def test_deny_records_reason(gateway_client):
    action = gateway_client.submit(_request("payments", "refund", amount=9000))
    denied = gateway_client.deny(action.id, reason="amount too large")
    assert denied.status == ActionStatus.DENIED
    assert denied.reason == "amount too large"


def test_stale_token_rejected(gateway_client):
    action = gateway_client.submit(_request("payments", "refund", amount=1))
    with pytest.raises(GovernanceError) as exc_info:
        gateway_client.approve(action.id, token="stale")
    assert exc_info.value.status_code == 403


def test_start_pending_action_conflicts(gateway_client):
    action = gateway_client.submit(_request("payments", "refund", amount=1))
    with pytest.raises(GovernanceError) as exc_info:
        gateway_client.start(action.id)
    assert exc_info.value.status_code == 409


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def test_policy_denial(gateway_client, gateway):
    with pytest.raises(PolicyDeniedError, match="Destructive command"):
        gateway_client.submit(_request("shell", "run", cmd="rm -rf /"))
    assert len(gateway.actions) == 1


def test_unknown_action(gateway_client):
    with pytest.raises(NotFoundError):
        gateway_client.get("does-not-exist")


def test_bad_token(gateway, clock):
    from fastapi.testclient import TestClient

    with TestClient(gateway.app) as http:
        config = ClientConfig(base_url="http://testserver", token="wrong", max_retries=3)
        client = GovernanceClient(config, http_client=http, sleep=clock.sleep, clock=clock)
        with pytest.raises(AuthenticationError):
            client.list_actions()
    assert clock.sleeps == []
    assert len(gateway.calls) == 1


# ---------------------------------------------------------------------------
# Listing, replay and batch
# ---------------------------------------------------------------------------

def test_list_actions_newest_first_with_filters(gateway_client):
    first = gateway_client.submit(_request())
    second = gateway_client.submit(_request("payments", "refund", amount=3))
    assert [a.id for a in gateway_client.list_actions()] == [second.id, first.id]
    assert [a.id for a in gateway_client.list_actions(tool="payments")] == [second.id]
    assert [a.id for a in gateway_client.list_actions(status="allowed")] == [first.id]
    assert [a.id for a in gateway_client.list_actions(limit=1, offset=1)] == [first.id]


def test_replay_creates_linked_action(gateway_client):
    original = gateway_client.submit(_request())
    replayed = gateway_client.replay(original.id)
    assert replayed.id != original.id
    assert replayed.context == {"replayed_from": original.id, "replay": True}
    assert replayed.params == original.params


def test_replay_decision_is_deterministic(gateway_client):
    action = gateway_client.submit(_request("payments", "refund", amount=4))
    by_id = replay_decision(action_id=action.id, client=gateway_client)
    by_provenance = replay_decision(provenance_id=action.provenance_id, client=gateway_client)
    assert by_id.success and by_provenance.success
    assert by_id.original_outcome == "ABSTAIN"


def test_batch_with_denied_item(gateway_client):
    results = gateway_client.submit_batch([
        _request(),
        _request("shell", "run", cmd="rm -rf /tmp"),
        _request("payments", "refund", amount=2),
    ])
    assert results[0].status == ActionStatus.ALLOWED
    assert isinstance(results[1], BatchItemError)
    assert "Destructive command" in results[1].error
    assert results[2].status == ActionStatus.PENDING_APPROVAL


def test_execute_if_allowed_against_gateway(gateway_client, gateway):
    ran = []
    allowed = execute_if_allowed(_request(), lambda *args: ran.append(args) or "ok", client=gateway_client)
    halted = execute_if_allowed(
        _request("shell", "run", cmd="rm -rf /"), lambda *args: ran.append(args), client=gateway_client,
    )
    assert allowed.executed and allowed.execution_result == "ok"
    assert halted.outcome == DecisionOutcome.HALT and not halted.executed
    assert len(ran) == 1
    assert gateway.actions == {}

"""
Execution Gate and Decision Replay Test Suite
Tests execute_if_allowed, replay_decision and the decision comparison
against scripted gate decisions.

Usage:
    pytest tests/test_gate.py
"""

from __future__ import annotations

import json

import pytest

from governance_sdk import (
    Action,
    ActionRequest,
    DecisionOutcome,
    GateDecision,
    NotFoundError,
    compare_decisions,
    execute_if_allowed,
    replay_decision,
)
from factories import action_body, decision_body, respond


def recorded_action(action_id: str = "act-1", **fields) -> dict:
    """An action body carrying the provenance of decision_body()."""
    decision = decision_body()
    return action_body(
        action_id,
        status="succeeded",
        outcome=decision["outcome"],
        reason_code=decision["reason_code"],
        request_hash=decision["request_hash"],
        policy_version=decision["policy_version"],
        policy_hash=decision["policy_hash"],
        profile_id=decision["profile_id"],
        profile_version=decision["profile_version"],
        profile_hash=decision["profile_hash"],
        runtime_version=decision["runtime_version"],
        provenance_id=f"prov-{action_id}",
        **fields,
    )


REQUEST = ActionRequest(agent_id="agent:test", tool="http", operation="get", params={"url": "u"})


# ---------------------------------------------------------------------------
# compare_decisions
# ---------------------------------------------------------------------------

def test_identical_decisions_match():
    result = compare_decisions(
        Action.from_response(recorded_action()),
        GateDecision.from_response(decision_body()),
    )
    assert result.success
    assert result.mismatches == []
    assert result.original_outcome == result.replayed_outcome == "EXECUTE"


def test_mismatches_listed_in_fixed_order():
    replayed = decision_body(
        outcome="HALT",
        reason_code="FORBIDDEN",
        request_hash="d" * 64,
        policy_hash="e" * 64,
        profile_hash="f" * 64,
        runtime_version="gateway-1.0.0",
    )
    result = compare_decisions(
        Action.from_response(recorded_action()),
        GateDecision.from_response(replayed),
    )
    assert not result.success
    assert result.mismatches == [
        "outcome: EXECUTE != HALT",
        "reason_code: POLICY_ALLOW != FORBIDDEN",
        "request_hash mismatch",
        "policy_hash mismatch (policy may have changed)",
        "profile_hash mismatch (profile may have changed)",
        "runtime_version: gateway-0.9.0 != gateway-1.0.0",
    ]
    assert not any([
        result.request_hash_match,
        result.policy_hash_match,
        result.profile_hash_match,
        result.runtime_version_match,
    ])


# ---------------------------------------------------------------------------
# replay_decision
# ---------------------------------------------------------------------------

def test_replay_by_action_id(make_client):
    client, server = make_client(respond(200, recorded_action()), respond(200, decision_body()))
    result = replay_decision(action_id="act-1", client=client)
    assert result.success
    assert server.paths == [("GET", "/v1/actions/act-1"), ("POST", "/v1/gate/decide")]
    assert json.loads(server.requests[1].content) == {
        "agent_id": "agent:test",
        "tool": "http",
        "operation": "get",
        "params": {"url": "https://example.com"},
        "context": {},
    }


def test_replay_detects_request_hash_change(make_client):
    client, _ = make_client(
        respond(200, recorded_action()),
        respond(200, decision_body(request_hash="0" * 64)),
    )
    result = replay_decision(action_id="act-1", client=client)
    assert result.success is False
    assert result.request_hash_match is False
    assert result.mismatches == ["request_hash mismatch"]


def test_replay_by_provenance_id(make_client):
    client, server = make_client(
        respond(200, {"actions": [recorded_action("act-1"), recorded_action("act-2")]}),
        respond(200, decision_body()),
    )
    result = replay_decision(provenance_id="prov-act-2", client=client)
    assert result.success
    assert server.requests[0].url.params["limit"] == "1000"


def test_replay_unknown_provenance(make_client):
    client, _ = make_client(respond(200, {"actions": [recorded_action("act-1")]}))
    with pytest.raises(NotFoundError):
        replay_decision(provenance_id="prov-missing", client=client)


@pytest.mark.parametrize("kwargs", [{}, {"action_id": "a", "provenance_id": "p"}])
def test_replay_requires_exactly_one_identifier(make_client, kwargs):
    client, server = make_client()
    with pytest.raises(ValueError):
        replay_decision(client=client, **kwargs)
    assert server.requests == []


# ---------------------------------------------------------------------------
# execute_if_allowed
# ---------------------------------------------------------------------------

def test_executor_runs_on_execute(make_client):
    calls = []

    def executor(tool, operation, params, context):
        calls.append((tool, operation, params, context))
        return {"status": 200}

    client, server = make_client(respond(200, decision_body()))
    result = execute_if_allowed(REQUEST, executor, client=client)
    assert result.executed
    assert result.execution_result == {"status": 200}
    assert result.execution_error is None
    assert result.outcome == DecisionOutcome.EXECUTE
    assert calls == [("http", "get", {"url": "u"}, {})]
    assert server.paths == [("POST", "/v1/gate/decide")]


@pytest.mark.parametrize("outcome", ["HALT", "ABSTAIN"])
def test_executor_skipped_unless_execute(make_client, outcome):
    calls = []
    client, _ = make_client(respond(200, decision_body(outcome, reason_code="FORBIDDEN")))
    result = execute_if_allowed(REQUEST, lambda *args: calls.append(args), client=client)
    assert not result.executed
    assert result.outcome == DecisionOutcome(outcome)
    assert result.reason_code == "FORBIDDEN"
    assert calls == []


def test_executor_failure_is_captured(make_client):
    def executor(tool, operation, params, context):
        raise RuntimeError("disk full")

    client, _ = make_client(respond(200, decision_body()))
    result = execute_if_allowed(REQUEST.model_dump(), executor, client=client)
    assert result.executed is False
    assert result.execution_error == "disk full"
    assert result.outcome == DecisionOutcome.EXECUTE


def test_decision_only_without_executor(make_client):
    client, _ = make_client(respond(200, decision_body()))
    result = execute_if_allowed(REQUEST, client=client)
    assert result.executed is False
    assert result.decision.request_hash == "a" * 64

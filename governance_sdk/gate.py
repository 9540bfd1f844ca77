"""
Governance SDK — Execution Gate and Decision Replay

Builds on the side-effect-free POST /v1/gate/decide call:

  execute_if_allowed  run a caller-supplied executor only on EXECUTE
  replay_decision     re-decide a recorded action and diff the result
                      against the original (outcome, reason code, request
                      hash, policy/profile hashes, runtime version)

Replay is the determinism audit: the same inputs under the same policy,
profile and runtime must produce the same outcome and the same hashes.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from governance_sdk.client import GovernanceClient, RequestLike, as_request, get_client
from governance_sdk.errors import NotFoundError
from governance_sdk.models import (
    Action,
    DecisionOutcome,
    ExecutionResult,
    GateDecision,
    ReplayResult,
)

logger = logging.getLogger(__name__)

PROVENANCE_SEARCH_LIMIT = 1000

ActionExecutor = Callable[[str, str, dict[str, Any], dict[str, Any]], Any]


def _value(field: Any) -> str:
    if field is None:
        return ""
    return getattr(field, "value", field)


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

def compare_decisions(original: Action, replayed: GateDecision) -> ReplayResult:
    """Diff an action's recorded decision against a fresh gate decision.

    Mismatches are listed in a fixed order: outcome, reason_code,
    request_hash, policy_hash, profile_hash, runtime_version.
    """
    mismatches: list[str] = []

    original_outcome = _value(original.outcome)
    replayed_outcome = _value(replayed.outcome)
    if original_outcome != replayed_outcome:
        mismatches.append(f"outcome: {original_outcome} != {replayed_outcome}")

    original_reason_code = original.reason_code or ""
    replayed_reason_code = replayed.reason_code or ""
    if original_reason_code != replayed_reason_code:
        mismatches.append(f"reason_code: {original_reason_code} != {replayed_reason_code}")

    request_hash_match = original.request_hash == replayed.request_hash
    if not request_hash_match:
        mismatches.append("request_hash mismatch")

    policy_hash_match = original.policy_hash == replayed.policy_hash
    if not policy_hash_match:
        mismatches.append("policy_hash mismatch (policy may have changed)")

    profile_hash_match = original.profile_hash == replayed.profile_hash
    if not profile_hash_match:
        mismatches.append("profile_hash mismatch (profile may have changed)")

    runtime_version_match = original.runtime_version == replayed.runtime_version
    if not runtime_version_match:
        mismatches.append(
            f"runtime_version: {original.runtime_version} != {replayed.runtime_version}"
        )

    return ReplayResult(
        success=not mismatches,
        original_outcome=original_outcome,
        replayed_outcome=replayed_outcome,
        original_reason_code=original_reason_code,
        replayed_reason_code=replayed_reason_code,
        request_hash_match=request_hash_match,
        policy_hash_match=policy_hash_match,
        profile_hash_match=profile_hash_match,
        runtime_version_match=runtime_version_match,
        mismatches=mismatches,
    )


def find_by_provenance(client: GovernanceClient, provenance_id: str) -> Action:
    """First recent action carrying ``provenance_id``. Raises NotFoundError."""
    for action in client.list_actions(limit=PROVENANCE_SEARCH_LIMIT):
        if action.provenance_id == provenance_id:
            return action
    raise NotFoundError(f"No action found with provenance_id '{provenance_id}'")


def replay_decision(
    action_id: str | None = None,
    provenance_id: str | None = None,
    client: GovernanceClient | None = None,
) -> ReplayResult:
    """
    Re-run the gate decision for a recorded action and compare.

    Exactly one of ``action_id`` / ``provenance_id`` must be given.
    Lookup by provenance scans recent actions; the first match wins.

    Returns:
        ReplayResult; ``success`` is True iff there are no mismatches.
    """
    if (action_id is None) == (provenance_id is None):
        raise ValueError("Provide exactly one of action_id or provenance_id")
    client = client or get_client()

    if provenance_id is not None:
        original = find_by_provenance(client, provenance_id)
    else:
        original = client.get(action_id)

    replayed = client.gate_decide(original.to_request())
    result = compare_decisions(original, replayed)
    if not result.success:
        logger.warning(
            "Decision replay for action %s diverged: %s",
            original.id, "; ".join(result.mismatches),
        )
    return result


# ---------------------------------------------------------------------------
# Gated execution
# ---------------------------------------------------------------------------

def execute_if_allowed(
    request: RequestLike,
    executor: ActionExecutor | None = None,
    client: GovernanceClient | None = None,
) -> ExecutionResult:
    """
    Decide ``request`` at the gate and run ``executor`` only on EXECUTE.

    The executor is called as ``executor(tool, operation, params, context)``.
    If it raises, the message is returned in ``execution_error``; executor
    failures are reported data, not protocol errors.
    """
    client = client or get_client()
    request = as_request(request)
    decision = client.gate_decide(request)
    result = ExecutionResult(
        decision=decision,
        outcome=decision.outcome,
        reason_code=decision.reason_code,
    )

    if decision.outcome != DecisionOutcome.EXECUTE or executor is None:
        return result

    tool, operation = request.tool, request.operation
    params, context = dict(request.params), dict(request.context)

    try:
        result.execution_result = executor(tool, operation, params, context)
        result.executed = True
    except Exception as exc:
        logger.warning("Executor for %s.%s failed: %s", tool, operation, exc)
        result.execution_error = str(exc) or exc.__class__.__name__
    return result

"""
Governance SDK — Data Models
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from governance_sdk.errors import GovernanceError


# ---------------------------------------------------------------------------
# Status state machine
# ---------------------------------------------------------------------------

class ActionStatus(str, Enum):
    ALLOWED = "allowed"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    DENIED = "denied"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    ActionStatus.SUCCEEDED,
    ActionStatus.FAILED,
    ActionStatus.DENIED,
})

REPLAYABLE_STATUSES = frozenset({
    ActionStatus.ALLOWED,
    ActionStatus.APPROVED,
    ActionStatus.SUCCEEDED,
})

# Directed and acyclic: a status never returns to an earlier one.
STATUS_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING_APPROVAL: frozenset({ActionStatus.APPROVED, ActionStatus.DENIED}),
    ActionStatus.ALLOWED: frozenset({ActionStatus.APPROVED, ActionStatus.DENIED, ActionStatus.EXECUTING}),
    ActionStatus.APPROVED: frozenset({ActionStatus.EXECUTING}),
    ActionStatus.EXECUTING: frozenset({ActionStatus.SUCCEEDED, ActionStatus.FAILED}),
    ActionStatus.DENIED: frozenset(),
    ActionStatus.SUCCEEDED: frozenset(),
    ActionStatus.FAILED: frozenset(),
}


def can_transition(src: ActionStatus, dst: ActionStatus) -> bool:
    """True if the server may move an action from ``src`` to ``dst``."""
    return dst in STATUS_TRANSITIONS[ActionStatus(src)]


class DecisionOutcome(str, Enum):
    EXECUTE = "EXECUTE"
    ABSTAIN = "ABSTAIN"
    HALT = "HALT"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ActionRequest(BaseModel):
    """A proposed tool invocation, as submitted for governance."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    tool: str
    operation: str
    params: dict[str, Any] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Reduced wire body for POST /v1/actions and /v1/gate/decide."""
        return {
            "agent_id": self.agent_id,
            "tool": self.tool,
            "operation": self.operation,
            "params": dict(self.params),
            "context": dict(self.context),
        }


# ---------------------------------------------------------------------------
# Server records
# ---------------------------------------------------------------------------

def _require_object(body: Any, kind: str) -> None:
    if not isinstance(body, dict):
        raise GovernanceError(
            f"Invalid response body for {kind}: expected a JSON object, got {type(body).__name__}"
        )


class Action(BaseModel):
    """Server snapshot of a governed action."""
    id: str
    agent_id: str
    tool: str
    operation: str
    params: dict[str, Any] = {}
    context: dict[str, Any] = {}
    status: ActionStatus
    decision: str | None = None       # allow | deny | require_approval
    reason: str | None = None
    risk_level: str | None = None     # low | medium | high
    approval_token: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    # Execution gate / provenance fields
    outcome: DecisionOutcome | None = None
    reason_code: str | None = None
    reason_details: dict[str, Any] | None = None
    request_hash: str | None = None
    policy_version: str | None = None
    policy_hash: str | None = None
    profile_id: str | None = None
    profile_version: str | None = None
    profile_hash: str | None = None
    runtime_version: str | None = None
    provenance_id: str | None = None

    raw: dict[str, Any] = {}             # full response body

    @classmethod
    def from_response(cls, body: Any) -> "Action":
        _require_object(body, "action")
        data = {**body, "raw": body}
        for key in ("params", "context"):
            if data.get(key) is None:
                data[key] = {}
        return cls.model_validate(data)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_request(self) -> ActionRequest:
        return ActionRequest(
            agent_id=self.agent_id,
            tool=self.tool,
            operation=self.operation,
            params=self.params or {},
            context=self.context or {},
        )

    def to_payload(self) -> dict[str, Any]:
        return self.to_request().to_payload()


class GateDecision(BaseModel):
    """Result of POST /v1/gate/decide. Never persisted by the server."""
    outcome: DecisionOutcome
    reason_code: str
    reason: str | None = None
    request_hash: str
    policy_version: str | None = None
    policy_hash: str | None = None
    profile_id: str | None = None
    profile_version: str | None = None
    profile_hash: str | None = None
    runtime_version: str | None = None
    provenance_id: str | None = None
    raw: dict[str, Any] = {}

    @classmethod
    def from_response(cls, body: Any) -> "GateDecision":
        _require_object(body, "gate decision")
        return cls.model_validate({**body, "raw": body})


# ---------------------------------------------------------------------------
# Client-side results
# ---------------------------------------------------------------------------

class ReplayResult(BaseModel):
    """Comparison of an original decision with a freshly computed one."""
    success: bool
    original_outcome: str
    replayed_outcome: str
    original_reason_code: str
    replayed_reason_code: str
    request_hash_match: bool
    policy_hash_match: bool
    profile_hash_match: bool
    runtime_version_match: bool
    mismatches: list[str] = []


class BatchItemError(BaseModel):
    """One failed item of a batch submission."""
    index: int
    error: str
    request: ActionRequest


class ExecutionResult(BaseModel):
    """Outcome of execute_if_allowed()."""
    decision: GateDecision
    outcome: DecisionOutcome
    reason_code: str
    executed: bool = False
    execution_result: Any = None
    execution_error: str | None = None

"""
Governance SDK

Client for submitting agent actions to an execution-governor service,
following them through approval and execution, and gating side effects
on the server's decision.

    from governance_sdk import GovernanceClient, ActionRequest

    client = GovernanceClient()
    action = client.submit(ActionRequest(
        agent_id="agent:ops", tool="http", operation="get",
        params={"url": "https://example.com"},
    ))
    action = client.block_until_approved(action.id)
"""

from __future__ import annotations

from governance_sdk.canonical import (
    ACTION_EXCLUDE_FIELDS,
    canonicalize,
    canonicalize_action_payload,
    compute_hash,
    compute_request_hash,
    verify_request_hash,
)
from governance_sdk.client import (
    GovernanceClient,
    allow,
    approve_action,
    block_until_approved,
    deny,
    deny_action,
    gate_decide,
    get_action,
    get_client,
    list_actions,
    on_events,
    replay_action,
    reset_client,
    start_action,
    submit_action,
    submit_actions,
    submit_and_wait,
    wait_for_completion,
)
from governance_sdk.config import ClientConfig, configure, get_config, reset_config
from governance_sdk.errors import (
    ActionDeniedError,
    AuthenticationError,
    BatchError,
    CanonicalizeError,
    GovernanceConnectionError,
    GovernanceError,
    GovernanceTimeoutError,
    GovernanceValidationError,
    InvalidStateError,
    NotFoundError,
    PolicyDeniedError,
    RequestFailedError,
    ServerError,
)
from governance_sdk.events import EventSource, EventStreamListener, HttpxEventSource
from governance_sdk.gate import compare_decisions, execute_if_allowed, replay_decision
from governance_sdk.governed import governed_tool
from governance_sdk.models import (
    Action,
    ActionRequest,
    ActionStatus,
    BatchItemError,
    DecisionOutcome,
    ExecutionResult,
    GateDecision,
    ReplayResult,
)
from governance_sdk.snapshot import ActionSnapshotStore, get_default_store

__version__ = "0.3.0"

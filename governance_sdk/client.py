"""
Governance SDK — Client
Synchronous client for the action governance API.

Submits actions for policy evaluation, follows them through their status
lifecycle (allowed / pending_approval -> approved / denied -> executing ->
succeeded / failed), and exposes the side-effect-free gate decision used
by execution gates and replay verification.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Union

import httpx

from governance_sdk.config import ClientConfig
from governance_sdk.errors import (
    ActionDeniedError,
    BatchError,
    GovernanceError,
    GovernanceTimeoutError,
    InvalidStateError,
)
from governance_sdk.events import EventStreamListener, HttpxEventSource
from governance_sdk.models import (
    REPLAYABLE_STATUSES,
    TERMINAL_STATUSES,
    Action,
    ActionRequest,
    ActionStatus,
    BatchItemError,
    GateDecision,
)
from governance_sdk.transport import Executor

logger = logging.getLogger(__name__)

RequestLike = Union[ActionRequest, dict[str, Any]]


def as_request(request: RequestLike) -> ActionRequest:
    if isinstance(request, ActionRequest):
        return request
    if not isinstance(request, Mapping):
        raise ValueError(f"Invalid action request: {request!r}")
    return ActionRequest.model_validate(request)


def _normalize_action_list(body: Any) -> list[dict[str, Any]]:
    """GET /v1/actions answers either a bare list or {"actions": [...]}."""
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        return body.get("actions") or []
    return []


class GovernanceClient:
    """
    Client for the governance API.

    Every operation is a single sequential flow; polling helpers block the
    caller between polls. The server is the only arbiter of action state;
    the client never locks or mutates it locally.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: Connection/retry settings. None means the process-wide
                default from governance_sdk.configure().
            http_client: Optional pre-built httpx.Client (tests inject
                MockTransport clients or a FastAPI TestClient here).
            sleep: Sleep function used for backoff and polling.
            clock: Monotonic clock used for poll deadlines.
        """
        self._sleep = sleep
        self._clock = clock
        self._executor = Executor(config, http_client=http_client, sleep=sleep, clock=clock)

    @property
    def config(self) -> ClientConfig:
        return self._executor.config

    def close(self) -> None:
        self._executor.close()

    def __enter__(self) -> "GovernanceClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -----------------------------------------------------------------------
    # Core operations
    # -----------------------------------------------------------------------

    def submit(
        self,
        request: RequestLike | str,
        tool: str | None = None,
        operation: str | None = None,
        params: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> Action:
        """
        Submit an action for governance evaluation via POST /v1/actions.

        Accepts an ActionRequest (or dict), or the fields positionally:
        ``submit("agent", "http", "get", {"url": ...})``.

        Returns:
            The created Action, status allowed or pending_approval.

        Raises:
            PolicyDeniedError: the policy denied the action outright.
        """
        if isinstance(request, str):
            if tool is None or operation is None:
                raise ValueError("tool and operation are required with an agent_id")
            request = ActionRequest(
                agent_id=request,
                tool=tool,
                operation=operation,
                params=params or {},
                context=context or {},
            )
        request = as_request(request)
        body = self._executor.execute("POST", "/v1/actions", json=request.to_payload())
        action = Action.from_response(body)
        logger.info("Submitted action %s (status=%s)", action.id, action.status.value)
        return action

    def get(self, action_id: str) -> Action:
        """Fetch the current snapshot of an action."""
        body = self._executor.execute("GET", f"/v1/actions/{action_id}")
        return Action.from_response(body)

    def list_actions(
        self,
        limit: int = 20,
        offset: int = 0,
        agent_id: str | None = None,
        tool: str | None = None,
        status: ActionStatus | str | None = None,
    ) -> list[Action]:
        """List actions, newest first, with optional filters."""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if agent_id:
            params["agent_id"] = agent_id
        if tool:
            params["tool"] = tool
        if status:
            params["status"] = ActionStatus(status).value
        body = self._executor.execute("GET", "/v1/actions", params=params)
        return [Action.from_response(item) for item in _normalize_action_list(body)]

    def _resolve_approval_token(self, action_id: str) -> str:
        # Read-then-act: another approver may win the race; the server
        # rejects a stale token.
        action = self.get(action_id)
        if action.status != ActionStatus.PENDING_APPROVAL:
            raise InvalidStateError(
                f"Action {action_id} is not pending approval "
                f"(status: {action.status.value})"
            )
        if not action.approval_token:
            raise InvalidStateError(f"Approval token not found for action {action_id}")
        return action.approval_token

    def _decide(
        self, action_id: str, approve: bool, token: str | None, reason: str | None,
    ) -> Action:
        if not token:
            token = self._resolve_approval_token(action_id)
        payload: dict[str, Any] = {"token": token, "approve": approve}
        if reason:
            payload["reason"] = reason
        body = self._executor.execute(
            "POST", f"/v1/actions/{action_id}/approval", json=payload,
        )
        return Action.from_response(body)

    def approve(
        self, action_id: str, token: str | None = None, reason: str | None = None,
    ) -> Action:
        """
        Approve a pending action.

        When ``token`` is omitted the action is fetched first and its
        approval token used; it must be in pending_approval.
        """
        return self._decide(action_id, True, token, reason)

    def deny(
        self, action_id: str, token: str | None = None, reason: str | None = None,
    ) -> Action:
        """Deny a pending action. Token resolution as in approve()."""
        return self._decide(action_id, False, token, reason)

    def start(self, action_id: str) -> Action:
        """Move an allowed or approved action into execution."""
        body = self._executor.execute("POST", f"/v1/actions/{action_id}/start")
        return Action.from_response(body)

    def replay(self, action_id: str) -> Action:
        """
        Submit a new action with the same agent/tool/operation/params.

        The context gains ``replayed_from`` and ``replay: True``. Only
        allowed, approved or succeeded actions may be replayed.
        """
        original = self.get(action_id)
        if original.status not in REPLAYABLE_STATUSES:
            raise InvalidStateError(
                f"Cannot replay action {action_id} with status "
                f"'{original.status.value}'. Only allowed, approved, or "
                "succeeded actions can be replayed."
            )
        context = {**(original.context or {}), "replayed_from": action_id, "replay": True}
        return self.submit(ActionRequest(
            agent_id=original.agent_id,
            tool=original.tool,
            operation=original.operation,
            params=original.params or {},
            context=context,
        ))

    # -----------------------------------------------------------------------
    # Polling
    # -----------------------------------------------------------------------

    def _pause(self, poll_interval: float, deadline: float) -> None:
        remaining = deadline - self._clock()
        self._sleep(max(0.0, min(poll_interval, remaining)))

    def _poll(self, action_id: str, deadline: float, last_status: str | None) -> Action:
        """One status fetch whose retries stay inside the wait's deadline."""
        try:
            body = self._executor.execute("GET", f"/v1/actions/{action_id}", deadline=deadline)
        except GovernanceTimeoutError as exc:
            raise GovernanceTimeoutError(
                f"Timed out polling action {action_id}: {exc}", last_status=last_status,
            ) from exc
        return Action.from_response(body)

    def wait_for_completion(
        self,
        action_id: str,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
    ) -> Action:
        """
        Poll until the action reaches succeeded, failed or denied.

        Raises:
            GovernanceTimeoutError: deadline passed first; ``last_status``
                holds the last status seen.
        """
        deadline = self._clock() + timeout
        last_status: str | None = None
        while True:
            action = self._poll(action_id, deadline, last_status)
            last_status = action.status.value
            if action.status in TERMINAL_STATUSES:
                return action
            if self._clock() >= deadline:
                raise GovernanceTimeoutError(
                    f"Action {action_id} did not complete within {timeout}s. "
                    f"Current status: {action.status.value}",
                    last_status=action.status.value,
                )
            self._pause(poll_interval, deadline)

    def block_until_approved(
        self,
        action_id: str,
        poll_interval: float = 2.0,
        timeout: float = 300.0,
    ) -> Action:
        """
        Poll until the action leaves pending_approval.

        Returns the action once approved, or unchanged if it was already
        past the approval step (allowed, executing, succeeded, failed).

        Raises:
            ActionDeniedError: the action was denied; message includes the
                server's reason.
            GovernanceTimeoutError: still pending at the deadline.
        """
        deadline = self._clock() + timeout
        last_status: str | None = None
        while True:
            action = self._poll(action_id, deadline, last_status)
            last_status = action.status.value
            if action.status == ActionStatus.DENIED:
                reason = action.reason or "Action denied"
                raise ActionDeniedError(f"Action denied: {reason}", reason=action.reason)
            if action.status != ActionStatus.PENDING_APPROVAL:
                return action
            if self._clock() >= deadline:
                raise GovernanceTimeoutError(
                    f"Timeout waiting for approval of {action_id} after {timeout}s",
                    last_status=action.status.value,
                )
            self._pause(poll_interval, deadline)

    # -----------------------------------------------------------------------
    # Composite flows
    # -----------------------------------------------------------------------

    def submit_batch(
        self,
        requests: Iterable[RequestLike],
        raise_on_error: bool = False,
    ) -> list[Union[Action, BatchItemError]]:
        """
        Submit requests one after another, in order.

        Each result slot is the created Action or a BatchItemError. With
        ``raise_on_error`` the whole batch still runs, then a single
        BatchError is raised if any item failed.
        """
        results: list[Union[Action, BatchItemError]] = []
        successes: list[Action] = []
        errors: list[BatchItemError] = []

        for index, item in enumerate(requests):
            try:
                action = self.submit(as_request(item))
            except (GovernanceError, ValueError) as exc:
                failure = BatchItemError(index=index, error=str(exc), request=_item_request(item))
                logger.warning("Batch item %d failed: %s", index, exc)
                errors.append(failure)
                results.append(failure)
                continue
            successes.append(action)
            results.append(action)

        if raise_on_error and errors:
            raise BatchError(
                f"Batch submission failed: {len(errors)} of {len(results)} actions failed",
                successes=successes,
                errors=errors,
            )
        return results

    def submit_and_wait(
        self,
        request: RequestLike,
        require_approval: bool = False,
        auto_start: bool = False,
        timeout: float = 300.0,
        poll_interval: float = 1.0,
    ) -> Action:
        """
        Submit, then optionally wait for approval and run to completion.

        - pending_approval: returned as-is unless ``require_approval``, in
          which case the call blocks until approved (or raises on denial)
        - allowed / approved with ``auto_start``: started, then waited on
        """
        action = self.submit(request)

        if action.status == ActionStatus.DENIED:
            reason = action.reason or "Action denied by policy"
            raise ActionDeniedError(f"Action denied: {reason}", reason=action.reason)

        if action.status == ActionStatus.PENDING_APPROVAL:
            if not require_approval:
                return action
            action = self.block_until_approved(
                action.id, poll_interval=poll_interval, timeout=timeout,
            )

        if auto_start and action.status in (ActionStatus.ALLOWED, ActionStatus.APPROVED):
            action = self.start(action.id)
            return self.wait_for_completion(
                action.id, poll_interval=poll_interval, timeout=timeout,
            )
        return action

    # -----------------------------------------------------------------------
    # Execution gate
    # -----------------------------------------------------------------------

    def gate_decide(self, request: RequestLike) -> GateDecision:
        """
        Ask what would happen to ``request`` without creating an action.

        Returns a GateDecision (EXECUTE / ABSTAIN / HALT) carrying the
        request hash and the policy/profile/runtime provenance fields.
        """
        request = as_request(request)
        body = self._executor.execute("POST", "/v1/gate/decide", json=request.to_payload())
        return GateDecision.from_response(body)

    def on_events(self, handler, **options) -> EventStreamListener:
        """Subscribe to the server event stream and return the running listener.

        Keyword options are passed to EventStreamListener (action_id,
        event_types, on_error, cancel_event); ``source`` replaces the
        default HTTP event source.
        """
        source = options.pop("source", None) or HttpxEventSource(self.config)
        options.setdefault("on_error", self.config.on_error)
        listener = EventStreamListener(handler, source, **options)
        listener.start()
        return listener


def _item_request(item: RequestLike) -> ActionRequest:
    """Best-effort ActionRequest for reporting an item that may have failed validation."""
    if isinstance(item, ActionRequest):
        return item
    if not isinstance(item, Mapping):
        return ActionRequest.model_construct(
            agent_id="", tool="", operation="", params={}, context={},
        )
    return ActionRequest.model_construct(
        agent_id=str(item.get("agent_id", "")),
        tool=str(item.get("tool", "")),
        operation=str(item.get("operation", "")),
        params=item.get("params") or {},
        context=item.get("context") or {},
    )


# ---------------------------------------------------------------------------
# Default client and module-level conveniences
# ---------------------------------------------------------------------------

_default_client: GovernanceClient | None = None


def get_client() -> GovernanceClient:
    """Return the process-wide client, bound to the default config."""
    global _default_client
    if _default_client is None:
        _default_client = GovernanceClient()
    return _default_client


def reset_client() -> None:
    global _default_client
    if _default_client is not None:
        _default_client.close()
    _default_client = None


def submit_action(agent_id, tool, operation, params=None, context=None) -> Action:
    return get_client().submit(agent_id, tool, operation, params, context)


def get_action(action_id: str) -> Action:
    return get_client().get(action_id)


def list_actions(**filters) -> list[Action]:
    return get_client().list_actions(**filters)


def approve_action(action_id: str, token: str | None = None, reason: str | None = None) -> Action:
    return get_client().approve(action_id, token, reason)


def deny_action(action_id: str, token: str | None = None, reason: str | None = None) -> Action:
    return get_client().deny(action_id, token, reason)


def start_action(action_id: str) -> Action:
    return get_client().start(action_id)


def replay_action(action_id: str) -> Action:
    return get_client().replay(action_id)


def wait_for_completion(action_id: str, poll_interval: float = 1.0, timeout: float = 60.0) -> Action:
    return get_client().wait_for_completion(action_id, poll_interval, timeout)


def block_until_approved(action_id: str, poll_interval: float = 2.0, timeout: float = 300.0) -> Action:
    return get_client().block_until_approved(action_id, poll_interval, timeout)


def submit_actions(requests, raise_on_error: bool = False):
    return get_client().submit_batch(requests, raise_on_error=raise_on_error)


def submit_and_wait(request, **options) -> Action:
    return get_client().submit_and_wait(request, **options)


def gate_decide(request) -> GateDecision:
    return get_client().gate_decide(request)


def on_events(handler, **options):
    return get_client().on_events(handler, **options)


allow = approve_action
deny = deny_action

"""
Governance SDK — Governed Tool Wrapper

Decorator that turns a function call into a governed action: the call's
arguments are submitted as the action params, and with
``block_until_done`` the wrapper follows the action through approval,
start and completion. The wrapped body is not run locally; execution is
owned by the governed runtime that picks up started actions.
"""

from __future__ import annotations

import functools
from typing import Any, Callable

from governance_sdk.client import GovernanceClient, get_client
from governance_sdk.models import Action, ActionRequest, ActionStatus


def governed_tool(
    agent_id: str,
    tool: str,
    operation: str | None = None,
    block_until_done: bool = False,
    wait_timeout: float = 60.0,
    poll_interval: float = 1.0,
    client: GovernanceClient | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Action]]:
    """
    Args:
        agent_id: Agent submitting the action.
        tool: Tool name recorded on the action.
        operation: Operation name; defaults to the function's __name__.
        block_until_done: Wait for approval, start, and wait for completion.
        wait_timeout: Deadline in seconds for each wait phase.
        poll_interval: Seconds between status polls.
        client: Client to use; the default client when omitted.

    Usage:
        @governed_tool("agent:deployer", "shell", block_until_done=True)
        def restart_service(name): ...

        action = restart_service("api")   # -> Action
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Action]:
        op_name = operation or fn.__name__

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Action:
            gc = client or get_client()
            params = {
                "args": [str(a) for a in args],
                "kwargs": {k: str(v) for k, v in kwargs.items()},
            }
            action = gc.submit(ActionRequest(
                agent_id=agent_id, tool=tool, operation=op_name, params=params,
            ))
            if not block_until_done:
                return action

            if action.status == ActionStatus.PENDING_APPROVAL:
                action = gc.block_until_approved(
                    action.id, poll_interval=poll_interval, timeout=wait_timeout,
                )

            if action.status in (ActionStatus.ALLOWED, ActionStatus.APPROVED):
                action = gc.start(action.id)
                action = gc.wait_for_completion(
                    action.id, poll_interval=poll_interval, timeout=wait_timeout,
                )
            elif action.status == ActionStatus.EXECUTING:
                action = gc.wait_for_completion(
                    action.id, poll_interval=poll_interval, timeout=wait_timeout,
                )
            return action

        return wrapper

    return decorator

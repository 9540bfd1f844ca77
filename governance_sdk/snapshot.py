"""
Governance SDK — Action Snapshot Store

Bounded in-memory cache of the latest Action snapshots seen by a caller.
Adding an action with a known id replaces its snapshot and marks it most
recent; the oldest entry is evicted past ``max_size``.
"""

from __future__ import annotations

from collections import OrderedDict

from governance_sdk.models import Action


class ActionSnapshotStore:
    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._actions: OrderedDict[str, Action] = OrderedDict()

    def __len__(self) -> int:
        return len(self._actions)

    def add(self, action: Action) -> None:
        if not action.id:
            raise ValueError("Action must have an 'id' field")
        self._actions.pop(action.id, None)
        self._actions[action.id] = action
        while len(self._actions) > self.max_size:
            self._actions.popitem(last=False)

    def get(self, action_id: str) -> Action | None:
        return self._actions.get(action_id)

    def list_recent(self, limit: int = 50) -> list[Action]:
        """Most recently added first."""
        recent = list(self._actions.values())[-limit:] if limit > 0 else []
        recent.reverse()
        return recent

    def clear(self) -> None:
        self._actions.clear()


_default_store: ActionSnapshotStore | None = None


def get_default_store() -> ActionSnapshotStore:
    global _default_store
    if _default_store is None:
        _default_store = ActionSnapshotStore()
    return _default_store

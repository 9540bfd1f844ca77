"""
Governance SDK — Event Stream Listener

Long-lived subscription to the server's GET /v1/events feed. The listener
is agnostic to where events come from: it consumes any EventSource
(open / close with message and error callbacks). HttpxEventSource is the
default, reading Server-Sent Events over an httpx stream on a background
thread.

The subscription never completes on its own. It ends when the caller
closes it, when a cancel event is set, or when the transport fails, in
which case the failure goes to the error callback.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Iterable, Protocol

import httpx

from governance_sdk.config import ClientConfig
from governance_sdk.errors import GovernanceConnectionError

logger = logging.getLogger(__name__)

EVENTS_PATH = "/v1/events"

EventHandler = Callable[[dict[str, Any]], None]
MessageCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class EventSource(Protocol):
    def open(self, on_message: MessageCallback, on_error: ErrorCallback) -> None:
        """Begin delivering raw message payloads. Must not block."""
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# SSE over httpx
# ---------------------------------------------------------------------------

def iter_sse_data(lines: Iterable[str]) -> Iterable[str]:
    """Yield the data payload of each Server-Sent Event in ``lines``.

    Multi-line data fields are joined with newlines; comments and the
    event/id/retry fields are ignored.
    """
    data: list[str] = []
    for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data.append(value[1:] if value.startswith(" ") else value)
    if data:
        yield "\n".join(data)


class HttpxEventSource:
    """EventSource reading GET /v1/events as text/event-stream."""

    def __init__(self, config: ClientConfig, http_client: httpx.Client | None = None):
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client()
        self._closed = threading.Event()
        self._response: httpx.Response | None = None
        self._thread: threading.Thread | None = None

    def open(self, on_message: MessageCallback, on_error: ErrorCallback) -> None:
        self._thread = threading.Thread(
            target=self._run,
            args=(on_message, on_error),
            name="governance-events",
            daemon=True,
        )
        self._thread.start()

    def _run(self, on_message: MessageCallback, on_error: ErrorCallback) -> None:
        url = f"{self._config.base_url}{EVENTS_PATH}"
        headers = {"Accept": "text/event-stream", **self._config.auth_headers()}
        timeout = httpx.Timeout(self._config.timeout, read=None)
        try:
            with self._client.stream("GET", url, headers=headers, timeout=timeout) as response:
                self._response = response
                response.raise_for_status()
                for payload in iter_sse_data(response.iter_lines()):
                    if self._closed.is_set():
                        return
                    on_message(payload)
            if not self._closed.is_set():
                on_error(GovernanceConnectionError("Event stream closed by server"))
        except Exception as exc:
            if not self._closed.is_set():
                on_error(exc)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._response is not None:
            try:
                self._response.close()
            except Exception:
                logger.debug("Error closing event stream response", exc_info=True)
        if self._owns_client:
            self._client.close()


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------

class EventStreamListener:
    """
    Parses, filters and dispatches events from an EventSource.

    Args:
        handler: Called with each event dict that passes the filters.
        source: Where raw payloads come from.
        action_id: Only deliver events whose ``action_id`` matches.
        event_types: Only deliver events whose ``event_type`` (or ``type``)
            is in this collection (a single string names one type).
        on_error: Receives a GovernanceConnectionError when the transport
            fails and the listener auto-closes.
        cancel_event: A threading.Event; setting it closes the listener.

    Once close() returns, the handler is not invoked again.
    """

    def __init__(
        self,
        handler: EventHandler,
        source: EventSource,
        action_id: str | None = None,
        event_types: Iterable[str] | None = None,
        on_error: ErrorCallback | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self._handler = handler
        self._source = source
        self._action_id = action_id
        if isinstance(event_types, str):
            event_types = [event_types]
        self._event_types = frozenset(event_types) if event_types is not None else None
        self._on_error = on_error
        self._cancel_event = cancel_event
        # Reentrant: a handler may close the listener from inside dispatch.
        self._lock = threading.RLock()
        self._closed = False
        self._started = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "EventStreamListener":
        with self._lock:
            if self._started:
                return self
            self._started = True
        if self._cancel_event is not None:
            threading.Thread(
                target=self._watch_cancel, name="governance-events-cancel", daemon=True,
            ).start()
        self._source.open(self._on_message, self._on_transport_error)
        return self

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._source.close()

    def __enter__(self) -> "EventStreamListener":
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _watch_cancel(self) -> None:
        while not self._closed:
            if self._cancel_event.wait(timeout=0.1):
                self.close()
                return

    def matches(self, event: dict[str, Any]) -> bool:
        if self._action_id is not None and event.get("action_id") != self._action_id:
            return False
        if self._event_types is not None:
            event_type = event.get("event_type") or event.get("type")
            if not event_type or event_type not in self._event_types:
                return False
        return True

    def _on_message(self, payload: str) -> None:
        try:
            event = json.loads(payload)
        except ValueError:
            logger.warning("Dropping malformed event payload: %.200r", payload)
            return
        if not isinstance(event, dict):
            logger.warning("Dropping non-object event payload: %.200r", payload)
            return
        if not self.matches(event):
            return
        with self._lock:
            if self._closed:
                return
            try:
                self._handler(event)
            except Exception:
                logger.exception("Event handler raised; continuing stream")

    def _on_transport_error(self, exc: Exception) -> None:
        if self._closed:
            return
        self.close()
        error = exc if isinstance(exc, GovernanceConnectionError) else GovernanceConnectionError(
            f"Event stream error: {exc}"
        )
        logger.warning("Event stream closed: %s", error)
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.warning("on_error hook raised", exc_info=True)

"""
Governance SDK — Transport Executor

Issues one logical request as up to ``max_retries + 1`` physical attempts
and classifies the outcome:

  401 / 404 / 422        -> terminal, raised immediately
  other 4xx              -> terminal GovernanceError with status code
  5xx                    -> retried with backoff, then ServerError
  connection failure     -> retried with backoff, then GovernanceConnectionError
    (refused or connect timeout)
  other transport error  -> retried with backoff, then RequestFailedError
  read / write timeout   -> GovernanceTimeoutError immediately
  POST /v1/actions with a denied body -> PolicyDeniedError (business
                            rejection on a 2xx, never retried)

Backoff before retry n (0-based) is ``retry_backoff_factor * 2 ** n`` seconds,
capped by the caller's deadline when one is given.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import httpx

from governance_sdk.config import ClientConfig, get_config
from governance_sdk.errors import (
    AuthenticationError,
    GovernanceConnectionError,
    GovernanceError,
    GovernanceTimeoutError,
    GovernanceValidationError,
    NotFoundError,
    PolicyDeniedError,
    RequestFailedError,
    ServerError,
)

logger = logging.getLogger(__name__)

SUBMIT_PATH = "/v1/actions"
USER_AGENT = "governance-sdk-python"


def _response_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return str(body)


class Executor:
    """
    Retrying HTTP executor shared by every client operation.

    Args:
        config: Explicit ClientConfig. When None the process-wide default
            is read on every request, so configure() takes effect at once.
        http_client: httpx.Client to send through (e.g. one built on
            httpx.MockTransport, or a FastAPI TestClient). Created and
            owned by the executor when omitted.
        sleep: Called with the backoff delay in seconds.
        clock: Monotonic clock used for request durations.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            headers={"User-Agent": USER_AGENT},
        )
        self._sleep = sleep
        self._clock = clock

    @property
    def config(self) -> ClientConfig:
        return self._config if self._config is not None else get_config()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    # -----------------------------------------------------------------------
    # Observer hooks (failures never interrupt the request)
    # -----------------------------------------------------------------------

    def _notify_start(self, config: ClientConfig, method: str, url: str) -> None:
        if config.on_request_start is None:
            return
        try:
            config.on_request_start(method, url)
        except Exception:
            logger.warning("on_request_start hook raised", exc_info=True)

    def _notify_end(
        self, config: ClientConfig, method: str, url: str, status_code: int, started: float,
    ) -> None:
        if config.on_request_end is None:
            return
        duration_ms = (self._clock() - started) * 1000.0
        try:
            config.on_request_end(method, url, status_code, duration_ms)
        except Exception:
            logger.warning("on_request_end hook raised", exc_info=True)

    def _notify_error(self, config: ClientConfig, error: Exception) -> None:
        if config.on_error is None:
            return
        try:
            config.on_error(error)
        except Exception:
            logger.warning("on_error hook raised", exc_info=True)

    # -----------------------------------------------------------------------
    # Request execution
    # -----------------------------------------------------------------------

    def execute(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        deadline: float | None = None,
    ) -> Any:
        """Send ``method path`` and return the decoded JSON body.

        Returns None for an empty 2xx body.

        ``deadline`` is an absolute time on the executor's clock, set by
        callers running under an overall timeout (the polling waits).
        Backoff sleeps are capped at the time left, and once it is used up
        the retry loop stops with GovernanceTimeoutError.
        """
        config = self.config
        method = method.upper()
        if not path.startswith("/"):
            path = f"/{path}"
        url = f"{config.base_url}{path}"
        headers = {"Accept": "application/json", **config.auth_headers()}

        attempts = config.max_retries + 1
        attempt = 0

        while True:
            logger.debug("%s %s (attempt %d/%d)", method, url, attempt + 1, attempts)
            self._notify_start(config, method, url)
            started = self._clock()
            try:
                response = self._client.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers=headers,
                    timeout=config.timeout,
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                # Nothing reached the server, so the attempt is safe to repeat.
                self._notify_end(config, method, url, 0, started)
                last_error = GovernanceConnectionError(
                    f"Failed to connect to {config.base_url}: {exc}"
                )
            except httpx.TimeoutException as exc:
                # A timed-out attempt has used up the request's deadline.
                self._notify_end(config, method, url, 0, started)
                error = GovernanceTimeoutError(
                    f"Request timed out after {config.timeout}s: {method} {url}"
                )
                self._notify_error(config, error)
                raise error from exc
            except httpx.TransportError as exc:
                self._notify_end(config, method, url, 0, started)
                last_error = RequestFailedError(f"Request failed on {path}: {exc}")
            else:
                self._notify_end(config, method, url, response.status_code, started)
                if response.status_code < 500:
                    return self._handle_response(config, method, path, response)
                last_error = ServerError(
                    f"Server error ({response.status_code}) on {path}: "
                    f"{_response_detail(response)}",
                    status_code=response.status_code,
                )

            self._notify_error(config, last_error)
            if attempt >= config.max_retries:
                if isinstance(last_error, RequestFailedError):
                    raise RequestFailedError(
                        f"Request failed after {attempts} attempts: {last_error.message}"
                    ) from last_error
                raise last_error

            delay = config.retry_backoff_factor * (2 ** attempt)
            if deadline is not None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    error = GovernanceTimeoutError(
                        f"Deadline reached while retrying {method} {path}: {last_error}"
                    )
                    self._notify_error(config, error)
                    raise error from last_error
                delay = min(delay, remaining)
            logger.warning(
                "%s %s failed (%s); retrying in %.2fs", method, path, last_error, delay,
            )
            self._sleep(delay)
            attempt += 1

    def _handle_response(
        self,
        config: ClientConfig,
        method: str,
        path: str,
        response: httpx.Response,
    ) -> Any:
        status = response.status_code
        error: GovernanceError | None = None

        if status == 401:
            error = AuthenticationError(
                f"Authentication failed (401) on {path}: {_response_detail(response)}"
            )
        elif status == 404:
            error = NotFoundError(f"Resource not found (404) on {path}")
        elif status == 422:
            error = GovernanceValidationError(
                f"Validation error (422) on {path}: {_response_detail(response)}"
            )
        elif status >= 400:
            error = GovernanceError(
                f"Request failed ({status}) on {path}: {_response_detail(response)}",
                status_code=status,
            )
        if error is not None:
            self._notify_error(config, error)
            raise error

        if not response.content:
            return None
        try:
            body = response.json()
        except ValueError as exc:
            error = GovernanceError(f"Invalid JSON response on {path}: {exc}", status_code=status)
            self._notify_error(config, error)
            raise error from exc

        if method == "POST" and path == SUBMIT_PATH and isinstance(body, dict):
            denied = body.get("status") == "denied" or (
                body.get("decision") == "deny" and body.get("status") != "pending_approval"
            )
            if denied:
                error = PolicyDeniedError(
                    body.get("reason") or "Action denied by policy", status_code=status,
                )
                self._notify_error(config, error)
                raise error

        return body

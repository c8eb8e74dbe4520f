# qrsec/providers/http_client.py

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import requests

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
USER_AGENT = "qrsec-linkcheck/1.0"


class ProviderError(Exception):
    """Base for failures raised inside a provider adapter."""


class ProviderTimeout(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    pass


class MalformedResponse(ProviderError):
    pass


def _retry_after(resp: requests.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        return None


def ensure_ok(resp: requests.Response) -> None:
    if not 200 <= resp.status_code < 300:
        raise ProviderUnavailable(f"HTTP {resp.status_code}")


def json_body(resp: requests.Response) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise MalformedResponse("response body is not JSON") from exc
    if not isinstance(body, dict):
        raise MalformedResponse("response body is not a JSON object")
    return body


class ProviderHttp:
    """
    Request helper used by the provider adapters.

    Without an explicit ``session`` every attempt goes through
    ``requests.request``, which opens and closes its own Session, so
    concurrent provider calls share no cookie jar or connection state.

    Every call is bounded by an absolute ``deadline`` (monotonic clock).
    Connection errors, 429 and 5xx are retried at most ``retries`` times with
    exponential backoff; the backoff never sleeps past the deadline. Other
    responses are returned as-is for the adapter to interpret.
    """

    def __init__(
        self,
        retries: int = 2,
        backoff_base: float = 0.5,
        backoff_cap: float = 2.0,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.session = session
        self.retries = min(max(retries, 0), 2)
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.clock = clock
        self.sleep = sleep

    def _backoff(self, attempt: int, resp: Optional[requests.Response]) -> float:
        delay = min(self.backoff_cap, self.backoff_base * (2 ** attempt))
        if resp is not None:
            hinted = _retry_after(resp)
            if hinted is not None and hinted <= self.backoff_cap:
                delay = max(delay, hinted)
        return delay

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if self.session is not None:
            return self.session.request(method, url, **kwargs)
        return requests.request(method, url, **kwargs)

    def request(self, method: str, url: str, *, deadline: float, **kwargs: Any) -> requests.Response:
        kwargs["headers"] = {"User-Agent": USER_AGENT, **(kwargs.get("headers") or {})}
        last_error: ProviderError = ProviderUnavailable("no attempt made")
        for attempt in range(self.retries + 1):
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ProviderTimeout("provider deadline exceeded")

            resp: Optional[requests.Response] = None
            try:
                resp = self._send(method, url, timeout=remaining, **kwargs)
            except requests.Timeout as exc:
                raise ProviderTimeout(str(exc) or "request timed out") from exc
            except requests.RequestException as exc:
                last_error = ProviderUnavailable(f"connection failed: {exc.__class__.__name__}")
            else:
                if resp.status_code not in RETRYABLE_STATUS:
                    return resp
                last_error = ProviderUnavailable(f"HTTP {resp.status_code}")

            if attempt >= self.retries:
                break
            delay = self._backoff(attempt, resp)
            if self.clock() + delay >= deadline:
                break
            self.sleep(delay)

        raise last_error

"""Blocking HTTP transport shared by repository probes and artifact fetches.

Retries are driven by failure classification. A transient connection-level
failure (no response, reset, timeout) is retried up to
``Constants.HTTP_RETRY_MAX`` total attempts. A received response is final
whatever its status: repository fallback decides what a 4xx/5xx means, not
the transport.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import requests
from requests.auth import AuthBase

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
)


class _NoAuth(AuthBase):
    """Explicitly anonymous; keeps requests from filling in netrc credentials."""

    def __call__(self, r):
        r.headers.pop("Authorization", None)
        return r


_ANONYMOUS = _NoAuth()


class TransportError(Exception):
    """Raised when a request could not produce a usable HTTP response."""

    def __init__(self, message: str, url: str = "", attempts: int = 0, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.cause = cause


class HttpStatusError(TransportError):
    """Raised by ``send_request`` when the response status is not 2xx."""

    def __init__(self, url: str, status_code: int):
        super().__init__(f"HTTP {status_code} from {safe_url(url)}", url=url, attempts=1)
        self.status_code = status_code


@dataclass(frozen=True)
class HttpRequest:
    """A single outbound request."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    auth: Optional[Tuple[str, str]] = None


@dataclass(frozen=True)
class HttpResponse:
    """Status, headers and body of a received response."""

    status_code: int
    headers: Dict[str, str]
    body: bytes
    url: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class _Attempt(Enum):
    """Outcome of one attempt; selects the next state of the retry loop."""

    RESPONSE = "response"
    TRANSIENT = "transient"
    TERMINAL = "terminal"


class HttpClient:
    """Transport client with connect/read timeouts and a bounded retry policy."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        connect_timeout: Optional[float] = None,
        read_timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        if session is None:
            session = requests.Session()
            session.trust_env = Constants.HTTP_TRUST_ENV
            session.headers["User-Agent"] = Constants.USER_AGENT
        self._session = session
        self._timeout = (
            connect_timeout if connect_timeout is not None else Constants.CONNECT_TIMEOUT,
            read_timeout if read_timeout is not None else Constants.READ_TIMEOUT,
        )
        self._max_attempts = max(1, max_attempts if max_attempts is not None else Constants.HTTP_RETRY_MAX)
        self._retry_delay = retry_delay if retry_delay is not None else Constants.HTTP_RETRY_BASE_DELAY_SEC

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def close(self) -> None:
        self._session.close()

    def _attempt(self, request: HttpRequest, attempt: int):
        """Run one attempt and classify its outcome."""
        target = safe_url(request.url)
        with Timer() as t:
            try:
                res = self._session.request(
                    request.method,
                    request.url,
                    headers=request.headers or None,
                    data=request.body,
                    auth=request.auth or _ANONYMOUS,
                    timeout=self._timeout,
                )
                body = res.content
            except TRANSIENT_EXCEPTIONS as exc:
                if is_debug_enabled(logger):
                    logger.debug(
                        "HTTP transient failure",
                        extra=extra_context(
                            event="http_exception",
                            component="http_client",
                            action=request.method,
                            outcome="transient",
                            attempt=attempt,
                            error=type(exc).__name__,
                            target=target,
                        ),
                    )
                return _Attempt.TRANSIENT, exc
            except requests.RequestException as exc:  # invalid URL, unsupported scheme, ...
                return _Attempt.TERMINAL, exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action=request.method,
                    outcome="received",
                    status_code=res.status_code,
                    duration_ms=t.duration_ms(),
                    attempt=attempt,
                    target=target,
                ),
            )
        return _Attempt.RESPONSE, HttpResponse(
            status_code=res.status_code,
            headers=dict(res.headers),
            body=body,
            url=request.url,
        )

    def send(self, request: HttpRequest) -> HttpResponse:
        """Send ``request`` and return whatever response arrives.

        Raises:
            TransportError: no response after the retry budget, or a
                non-transient request error.
        """
        attempt = 0
        last_exc: Optional[BaseException] = None
        while attempt < self._max_attempts:
            attempt += 1
            outcome, value = self._attempt(request, attempt)
            if outcome is _Attempt.RESPONSE:
                return value
            last_exc = value
            if outcome is _Attempt.TERMINAL:
                raise TransportError(
                    f"{request.method} {safe_url(request.url)} failed: {value}",
                    url=request.url,
                    attempts=attempt,
                    cause=value,
                ) from value
            if attempt < self._max_attempts and self._retry_delay > 0:
                time.sleep(self._retry_delay * attempt)

        logger.warning(
            "HTTP request failed after retries",
            extra=extra_context(
                event="http_exception",
                component="http_client",
                action=request.method,
                outcome="retries_exhausted",
                attempts=attempt,
                target=safe_url(request.url),
            ),
        )
        raise TransportError(
            f"{request.method} {safe_url(request.url)} failed after {attempt} attempts: {last_exc}",
            url=request.url,
            attempts=attempt,
            cause=last_exc,
        ) from last_exc

    def send_request(self, request: HttpRequest) -> bytes:
        """Send ``request`` and return the body of a 2xx response.

        Raises:
            HttpStatusError: a response arrived with a non-2xx status.
            TransportError: no response could be obtained.
        """
        response = self.send(request)
        if not response.is_success:
            raise HttpStatusError(request.url, response.status_code)
        return response.body

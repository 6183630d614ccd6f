"""Basic-auth credential policy layered over the transport client."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from common.http_client import HttpClient, HttpRequest, HttpResponse
from common.logging_utils import extra_context, is_debug_enabled, safe_url

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([^}]*)\}")
AUTH_REJECTED = (401, 403)


@dataclass(frozen=True)
class Credentials:
    """Username/password pair; values may still hold ``${...}`` placeholders."""

    username: Optional[str] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password=***)"

    @property
    def present(self) -> bool:
        return bool(self.username or self.password)


def resolve_placeholders(value: Optional[str]) -> Optional[str]:
    """Expand ``${env.NAME}`` and ``${NAME}`` from the environment.

    Returns None when any placeholder cannot be resolved.
    """
    if value is None:
        return None
    unresolved = False

    def _sub(match: "re.Match[str]") -> str:
        nonlocal unresolved
        name = match.group(1).strip()
        if name.startswith("env."):
            name = name[4:]
        resolved = os.environ.get(name) if name else None
        if resolved is None:
            unresolved = True
            return match.group(0)
        return resolved

    expanded = _PLACEHOLDER.sub(_sub, value)
    return None if unresolved else expanded


def resolve_credentials(credentials: Optional[Credentials]) -> Optional[Credentials]:
    """Return usable credentials, or None when absent or unresolvable."""
    if credentials is None or not credentials.present:
        return None
    username = resolve_placeholders(credentials.username)
    password = resolve_placeholders(credentials.password)
    if (credentials.username is not None and username is None) or (
        credentials.password is not None and password is None
    ):
        return None
    return Credentials(username=username, password=password)


class CredentialNegotiator:
    """Attach basic auth when possible and fall back to anonymous on rejection."""

    def __init__(self, client: HttpClient):
        self._client = client

    @property
    def client(self) -> HttpClient:
        return self._client

    def send_with_credentials(self, request: HttpRequest, credentials: Optional[Credentials]) -> HttpResponse:
        """Send ``request`` with ``credentials`` when they resolve.

        A 401/403 to an authenticated request is retried exactly once
        without an Authorization header, and that second response is final.
        """
        usable = resolve_credentials(credentials)
        if usable is None:
            if credentials is not None and credentials.present:
                logger.debug(
                    "Dropping unresolved credentials",
                    extra=extra_context(
                        event="credentials", component="credentials", action="resolve",
                        outcome="unresolved", target=safe_url(request.url),
                    ),
                )
            return self._client.send(_anonymous(request))

        authed = HttpRequest(
            url=request.url,
            method=request.method,
            headers=request.headers,
            body=request.body,
            auth=(usable.username or "", usable.password or ""),
        )
        response = self._client.send(authed)
        if response.status_code not in AUTH_REJECTED:
            return response

        if is_debug_enabled(logger):
            logger.debug(
                "Credentials rejected, retrying anonymously",
                extra=extra_context(
                    event="credentials", component="credentials", action="fallback",
                    status_code=response.status_code, target=safe_url(request.url),
                ),
            )
        return self._client.send(_anonymous(request))


def _anonymous(request: HttpRequest) -> HttpRequest:
    headers = {k: v for k, v in request.headers.items() if k.lower() != "authorization"}
    return HttpRequest(url=request.url, method=request.method, headers=headers, body=request.body, auth=None)

"""Repository normalization: validate, canonicalize and health-check descriptors."""
from __future__ import annotations

import dataclasses
import ipaddress
import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from common.http_client import HttpRequest, TransportError
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from constants import Constants
from registry.maven.context import ResolutionContext
from registry.maven.models import RepositoryDescriptor

logger = logging.getLogger(__name__)

REMOTE_SCHEMES = ("http", "https")


def canonical_uri(uri: str) -> str:
    """Lowercase scheme and host, drop a trailing slash; path case is kept."""
    uri = uri.strip()
    parts = urllib.parse.urlsplit(uri)
    if not parts.scheme:
        return uri.rstrip("/")
    netloc = parts.netloc
    if "@" in netloc:
        userinfo, hostport = netloc.rsplit("@", 1)
        netloc = f"{userinfo}@{hostport.lower()}"
    else:
        netloc = netloc.lower()
    path = parts.path.rstrip("/")
    return urllib.parse.urlunsplit((parts.scheme.lower(), netloc, path, parts.query, parts.fragment))


def extract_host(uri: str) -> Optional[str]:
    """Host of ``uri``, also for scheme-less ``host[:port]`` forms."""
    try:
        parsed = urllib.parse.urlsplit(uri)
        host = parsed.hostname
        if not host and "://" not in uri:
            host = urllib.parse.urlsplit("//" + uri).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def _address_blocked(address: str, allow_local: bool) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped
    if ip.is_unspecified or str(ip) in Constants.BLOCKED_HOSTS:
        return True
    if allow_local:
        return False
    return ip.is_loopback or ip.is_link_local


class RepositoryNormalizer:
    """Turns caller-supplied descriptors into reachable, canonical ones.

    Outcomes (including rejection) are cached in the context per
    ``(uri, has_credentials)``, so one execution probes each repository once.
    """

    def __init__(self, context: ResolutionContext):
        self._context = context

    def normalize(self, repository: RepositoryDescriptor) -> Optional[RepositoryDescriptor]:
        """Return the normalized descriptor, or None if it is blocked or unreachable."""
        key: Tuple[str, bool] = (repository.uri, repository.has_credentials)
        uri = self._context.normalization_cache.get_or_compute(key, lambda: self._normalize_uri(repository))
        if uri is None:
            return None
        if uri == repository.uri:
            return repository
        return dataclasses.replace(repository, uri=uri)

    def _reject(self, repository: RepositoryDescriptor, reason: str) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "Repository rejected",
                extra=extra_context(
                    event="normalize", component="normalizer", action="reject",
                    outcome=reason, repository=repository.id, target=safe_url(repository.uri),
                ),
            )

    def _normalize_uri(self, repository: RepositoryDescriptor) -> Optional[str]:
        uri = repository.uri.strip()
        if not uri or "${" in uri:
            self._reject(repository, "unresolved_uri")
            return None

        if repository.is_local:
            if repository.known_to_exist or repository.local_path().is_dir():
                return canonical_uri(uri)
            self._reject(repository, "missing_directory")
            return None

        host = extract_host(uri)
        if host is None:
            self._reject(repository, "malformed_uri")
            return None
        if host in Constants.BLOCKED_HOSTS or _address_blocked(host, self._context.allow_local_addresses):
            self._reject(repository, "blocked_host")
            return None
        if host == "localhost" and not self._context.allow_local_addresses:
            self._reject(repository, "blocked_host")
            return None

        scheme = urllib.parse.urlsplit(uri).scheme.lower()
        if scheme not in REMOTE_SCHEMES:
            self._reject(repository, "malformed_uri")
            return None

        if not self._host_allowed(host):
            self._reject(repository, "blocked_or_unresolvable_host")
            return None

        normalized = canonical_uri(uri)
        if repository.known_to_exist:
            return normalized
        return normalized if self._probe(repository, normalized) else None

    def _host_allowed(self, host: str) -> bool:
        """Resolve ``host`` and check every address against the block rules."""
        try:
            ipaddress.ip_address(host)
            return True  # literal, already checked
        except ValueError:
            pass
        try:
            infos = socket.getaddrinfo(host, None)
        except (socket.gaierror, UnicodeError, OSError):
            return False
        return not any(_address_blocked(info[4][0], self._context.allow_local_addresses) for info in infos)

    def _probe(self, repository: RepositoryDescriptor, uri: str) -> bool:
        """Any HTTP response means reachable; status is judged later by the downloader."""
        try:
            response = self._context.negotiator.send_with_credentials(
                HttpRequest(url=uri + "/"), repository.credentials
            )
        except TransportError as exc:
            self._reject(repository, "unreachable")
            logger.info("Repository %s is unreachable: %s", repository.id, exc)
            return False
        if is_debug_enabled(logger):
            logger.debug(
                "Repository reachable",
                extra=extra_context(
                    event="normalize", component="normalizer", action="probe",
                    outcome="reachable", status_code=response.status_code,
                    repository=repository.id, target=safe_url(uri),
                ),
            )
        return True

"""Uniform read access to remote (HTTP) and local (filesystem) repositories."""
from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import List, Optional

from common.credentials import CredentialNegotiator
from common.http_client import HttpRequest
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from registry.maven.models import RepositoryDescriptor

logger = logging.getLogger(__name__)

NOT_FOUND_STATUSES = (404, 410)


class RepositoryFetchError(Exception):
    """A repository answered, but not with the requested content."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


class ArtifactStore(abc.ABC):
    """Read-only view of one repository."""

    def __init__(self, repository: RepositoryDescriptor):
        self.repository = repository

    @abc.abstractmethod
    def fetch(self, path: str) -> Optional[bytes]:
        """Return the bytes at repository-relative ``path``, or None if absent.

        Raises:
            RepositoryFetchError: the repository responded with an error.
            TransportError: no response could be obtained.
        """

    @abc.abstractmethod
    def location(self, path: str) -> str:
        """Human-readable location of ``path`` for logs and errors."""


class RemoteStore(ArtifactStore):
    """HTTP(S) repository accessed through the credential negotiator."""

    def __init__(self, repository: RepositoryDescriptor, negotiator: CredentialNegotiator):
        super().__init__(repository)
        self._negotiator = negotiator

    def location(self, path: str) -> str:
        return f"{self.repository.uri.rstrip('/')}/{path.lstrip('/')}"

    def fetch(self, path: str) -> Optional[bytes]:
        url = self.location(path)
        response = self._negotiator.send_with_credentials(HttpRequest(url=url), self.repository.credentials)
        if response.is_success:
            return response.body
        if is_debug_enabled(logger):
            logger.debug(
                "Repository returned non-2xx",
                extra=extra_context(
                    event="fetch", component="store", action="GET", outcome="non_2xx",
                    status_code=response.status_code, repository=self.repository.id, target=safe_url(url),
                ),
            )
        if response.status_code in NOT_FOUND_STATUSES:
            return None
        raise RepositoryFetchError(f"HTTP {response.status_code}", status_code=response.status_code)

    def fetch_text(self, path: str) -> Optional[str]:
        content = self.fetch(path)
        return None if content is None else content.decode("utf-8", errors="replace")


class LocalStore(ArtifactStore):
    """``file:`` repository read straight from disk."""

    def __init__(self, repository: RepositoryDescriptor):
        super().__init__(repository)
        self.root = repository.local_path()

    def resolve(self, path: str) -> Path:
        parts = [p for p in path.split("/") if p]
        if ".." in parts:
            raise RepositoryFetchError(f"path escapes repository root: {path}")
        return self.root.joinpath(*parts)

    def location(self, path: str) -> str:
        return str(self.resolve(path))

    def fetch(self, path: str) -> Optional[bytes]:
        target = self.resolve(path)
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            raise RepositoryFetchError(f"unreadable file {target}: {exc}") from exc

    def size(self, path: str) -> Optional[int]:
        """Size in bytes of ``path``, or None when the file does not exist."""
        target = self.resolve(path)
        return target.stat().st_size if target.is_file() else None

    def list_directories(self, path: str) -> List[str]:
        target = self.resolve(path)
        if not target.is_dir():
            return []
        return [child.name for child in target.iterdir() if child.is_dir()]


def store_for(repository: RepositoryDescriptor, negotiator: CredentialNegotiator) -> ArtifactStore:
    """Pick the backing store for ``repository``."""
    if repository.is_local:
        return LocalStore(repository)
    return RemoteStore(repository, negotiator)

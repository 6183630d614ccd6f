"""Shared state for one execution: settings, caches, transport, mirrors and servers.

A ``ResolutionContext`` is passed explicitly to the normalizer, the metadata
resolver and the downloader. Independent resolutions may share one context
concurrently; everything mutable in it lives behind ``ComputeOnceCache``.
"""
from __future__ import annotations

import dataclasses
import logging
import os
import urllib.parse
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from common.credentials import CredentialNegotiator
from common.http_client import HttpClient
from constants import Constants
from registry.maven.cache import ComputeOnceCache
from registry.maven.models import RepositoryDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MirrorDescriptor:
    """A repository that stands in for others, selected by ``mirror_of``."""

    id: str
    url: str
    mirror_of: str = "*"
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    def matches(self, repository: RepositoryDescriptor) -> bool:
        """Apply Maven ``mirrorOf`` rules: ``*``, ``external:*``, ids and ``!id``."""
        if repository.is_local:
            return False
        matched = False
        for token in (t.strip() for t in self.mirror_of.split(",")):
            if not token:
                continue
            if token.startswith("!"):
                if token[1:] == repository.id:
                    return False
            elif token == "*":
                matched = True
            elif token == "external:*":
                matched = matched or _is_external(repository)
            elif token == repository.id:
                matched = True
        return matched

    def apply(self, repository: RepositoryDescriptor) -> RepositoryDescriptor:
        return dataclasses.replace(
            repository,
            id=self.id,
            uri=self.url,
            username=self.username,
            password=self.password,
        )


@dataclass(frozen=True)
class ServerCredentials:
    """Credentials configured per repository id."""

    id: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)


def _is_external(repository: RepositoryDescriptor) -> bool:
    if repository.is_local:
        return False
    host = (urllib.parse.urlparse(repository.uri).hostname or "").lower()
    return host not in ("localhost", "127.0.0.1", "::1")


class ResolutionContext:
    """Settings and caches for repository resolution within one execution."""

    def __init__(
        self,
        http_client: Optional[HttpClient] = None,
        local_repository: Optional[RepositoryDescriptor] = None,
        mirrors: Sequence[MirrorDescriptor] = (),
        servers: Sequence[ServerCredentials] = (),
        repositories: Sequence[RepositoryDescriptor] = (),
        allow_local_addresses: Optional[bool] = None,
        add_central_repository: Optional[bool] = None,
    ):
        self.http_client = http_client or HttpClient()
        self.negotiator = CredentialNegotiator(self.http_client)
        self.local_repository = local_repository
        self.mirrors: List[MirrorDescriptor] = list(mirrors)
        self.servers: Dict[str, ServerCredentials] = {s.id: s for s in servers}
        self.repositories: List[RepositoryDescriptor] = list(repositories)
        self.allow_local_addresses = (
            Constants.ALLOW_LOCAL_ADDRESSES if allow_local_addresses is None else allow_local_addresses
        )
        self.add_central_repository = (
            Constants.ADD_CENTRAL_REPOSITORY if add_central_repository is None else add_central_repository
        )
        self.normalization_cache: ComputeOnceCache[Optional[str]] = ComputeOnceCache("normalization")
        self.metadata_cache: ComputeOnceCache[Any] = ComputeOnceCache("metadata")
        self.artifact_cache: ComputeOnceCache[bytes] = ComputeOnceCache("artifact")

    def apply_mirrors(self, repository: RepositoryDescriptor) -> RepositoryDescriptor:
        """Return the first matching mirror in place of ``repository``."""
        for mirror in self.mirrors:
            if mirror.matches(repository):
                logger.debug("Repository %s mirrored by %s", repository.id, mirror.id)
                return mirror.apply(repository)
        return repository

    def apply_server_credentials(self, repository: RepositoryDescriptor) -> RepositoryDescriptor:
        """Fill in credentials configured for the repository id, if it has none."""
        if repository.has_credentials:
            return repository
        server = self.servers.get(repository.id)
        if server is None:
            return repository
        return dataclasses.replace(repository, username=server.username, password=server.password)

    def cache_stats(self) -> List[Dict[str, Any]]:
        return [c.stats() for c in (self.normalization_cache, self.metadata_cache, self.artifact_cache)]

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], http_client: Optional[HttpClient] = None) -> "ResolutionContext":
        """Build a context from the parsed YAML config (after ``apply_config``)."""
        local_repository = None
        if Constants.LOCAL_REPOSITORY:
            local_repository = RepositoryDescriptor.for_directory(
                "local", Constants.LOCAL_REPOSITORY, known_to_exist=True
            )
        return cls(
            http_client=http_client,
            local_repository=local_repository,
            mirrors=[MirrorDescriptor(**_known_fields(MirrorDescriptor, m)) for m in cfg.get("mirrors") or []],
            servers=[ServerCredentials(**_known_fields(ServerCredentials, s)) for s in cfg.get("servers") or []],
            repositories=[repository_from_config(r) for r in cfg.get("repositories") or []],
        )


def repository_from_config(entry: Dict[str, Any]) -> RepositoryDescriptor:
    """Build a descriptor from a config mapping using either snake or camel case keys."""
    aliases = {
        "url": "uri",
        "snapshotsEnabled": "snapshots_enabled",
        "releasesEnabled": "releases_enabled",
        "knownToExist": "known_to_exist",
        "deriveMetadataIfMissing": "derive_metadata_if_missing",
    }
    normalized = {aliases.get(k, k): v for k, v in entry.items()}
    normalized.setdefault("id", normalized.get("uri", "repository"))
    uri = str(normalized.get("uri", ""))
    if uri and "://" not in uri and not uri.lower().startswith("file:") and os.path.isdir(os.path.expanduser(uri)):
        normalized["uri"] = Path(uri).expanduser().resolve().as_uri()
    return RepositoryDescriptor(**_known_fields(RepositoryDescriptor, normalized))


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in dataclasses.fields(cls)}
    unknown = set(data) - names
    if unknown:
        logger.warning("Ignoring unknown %s config keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    return {k: v for k, v in data.items() if k in names}

"""Artifact download orchestration across prioritized repositories.

Repositories are consulted strictly in order and the first valid artifact
wins. Failures are recorded per repository and reported together only when
every candidate has been exhausted.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from common.http_client import TransportError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from constants import Constants
from registry.maven.context import ResolutionContext
from registry.maven.metadata import MetadataDocument, MetadataResolver
from registry.maven.models import Coordinate, RepositoryDescriptor, ResolvedArtifact
from registry.maven.normalize import RepositoryNormalizer
from registry.maven.pom import InvalidArtifactError, PomDescriptor, parse_pom
from registry.maven.stores import ArtifactStore, LocalStore, RepositoryFetchError, store_for

logger = logging.getLogger(__name__)


class DownloadError(Exception):
    """No candidate repository produced a valid artifact."""

    def __init__(
        self,
        coordinate: Coordinate,
        failures: Optional[Dict[str, str]] = None,
        message: Optional[str] = None,
        relocated_from: Optional[Coordinate] = None,
    ):
        self.coordinate = coordinate
        self.failures = dict(failures or {})
        self.relocated_from = relocated_from
        super().__init__(message or self._format())

    def _format(self) -> str:
        what = str(self.coordinate)
        if self.relocated_from is not None:
            what += f" (relocated from {self.relocated_from})"
        if not self.failures:
            return f"Unable to download {what}: no reachable repositories"
        lines = [f"Unable to download {what}. Tried repositories:"]
        lines.extend(f"  {uri}: {reason}" for uri, reason in self.failures.items())
        return "\n".join(lines)


class MetadataNotFoundError(DownloadError):
    """No candidate repository had metadata for the coordinate."""


ProjectPoms = Mapping[Union[str, Path], bytes]


class ArtifactDownloader:
    """Resolve coordinates to artifact descriptors from candidate repositories."""

    def __init__(self, context: Optional[ResolutionContext] = None, project_poms: Optional[ProjectPoms] = None):
        self.context = context or ResolutionContext()
        self.normalizer = RepositoryNormalizer(self.context)
        self.metadata = MetadataResolver(self.context)
        self._project: Dict[Coordinate, Tuple[Path, bytes, PomDescriptor]] = {}
        for path, content in (project_poms or {}).items():
            try:
                descriptor = parse_pom(content)
            except InvalidArtifactError as exc:
                logger.warning("Ignoring project POM %s: %s", path, exc)
                continue
            if descriptor.coordinate is not None:
                self._project[descriptor.coordinate] = (Path(path), content, descriptor)

    def candidate_repositories(
        self,
        repository_override: Optional[RepositoryDescriptor] = None,
        repositories: Sequence[RepositoryDescriptor] = (),
    ) -> List[RepositoryDescriptor]:
        """Normalized, de-duplicated candidates in priority order.

        Local repository first, then the override, the supplied list and
        (when enabled) Maven Central. Entries that fail normalization are
        dropped; the first occurrence of a URI wins.
        """
        ordered: List[RepositoryDescriptor] = []
        if self.context.local_repository is not None:
            ordered.append(self.context.local_repository)
        if repository_override is not None:
            ordered.append(repository_override)
        ordered.extend(repositories)
        if self.context.add_central_repository:
            ordered.append(RepositoryDescriptor(
                id=Constants.MAVEN_CENTRAL_ID, uri=Constants.MAVEN_CENTRAL_URL,
                snapshots_enabled=False, known_to_exist=True,
            ))

        seen = set()
        candidates: List[RepositoryDescriptor] = []
        for repository in ordered:
            repository = self.context.apply_server_credentials(self.context.apply_mirrors(repository))
            normalized = self.normalizer.normalize(repository)
            if normalized is None or normalized.uri in seen:
                continue
            seen.add(normalized.uri)
            candidates.append(normalized)
        return candidates

    def download_metadata(
        self, coordinate: Coordinate, repositories: Sequence[RepositoryDescriptor] = ()
    ) -> MetadataDocument:
        """Merged metadata for ``coordinate`` across all candidates.

        Raises:
            MetadataNotFoundError: no candidate returned metadata.
        """
        candidates = self.candidate_repositories(None, repositories)
        merged = self.metadata.resolve(candidates, coordinate)
        if merged is None:
            raise MetadataNotFoundError(
                coordinate,
                {r.uri: "metadata not found" for r in candidates},
                message=None if candidates else f"Unable to download metadata for {coordinate}: no reachable repositories",
            )
        return merged

    def download(
        self,
        coordinate: Coordinate,
        relocated_from: Optional[Coordinate] = None,
        repository_override: Optional[RepositoryDescriptor] = None,
        repositories: Sequence[RepositoryDescriptor] = (),
    ) -> ResolvedArtifact:
        """Return the first valid artifact for ``coordinate``.

        Raises:
            DownloadError: every candidate failed; ``failures`` maps each
                attempted repository URI to its reason.
        """
        return self._download(coordinate, relocated_from, repository_override, repositories, depth=0)

    def _download(
        self,
        coordinate: Coordinate,
        relocated_from: Optional[Coordinate],
        repository_override: Optional[RepositoryDescriptor],
        repositories: Sequence[RepositoryDescriptor],
        depth: int,
    ) -> ResolvedArtifact:
        if not coordinate.version:
            raise ValueError(f"Coordinate {coordinate} has no version")

        project = self._project.get(coordinate)
        if project is not None:
            path, content, descriptor = project
            return ResolvedArtifact(
                coordinate=coordinate,
                repository=RepositoryDescriptor.for_directory("project", path.parent, known_to_exist=True),
                content=content,
                filename=path.name,
                packaging=descriptor.packaging,
                relocated_from=relocated_from,
            )

        candidates = self.candidate_repositories(repository_override, repositories)
        if not candidates:
            raise DownloadError(coordinate, relocated_from=relocated_from)

        file_version = self._file_version(coordinate, candidates)
        failures: Dict[str, str] = {}
        for repository in candidates:
            if not coordinate.is_snapshot and not repository.releases_enabled:
                failures[repository.uri] = "releases disabled"
                continue
            store = store_for(repository, self.context.negotiator)
            with Timer() as t:
                try:
                    found = self._fetch_from(store, coordinate, file_version)
                except (RepositoryFetchError, TransportError, InvalidArtifactError) as exc:
                    failures[repository.uri] = str(exc)
                    self._log_attempt(repository, coordinate, "failed", t, str(exc))
                    continue
            if found is None:
                failures[repository.uri] = "not found"
                self._log_attempt(repository, coordinate, "not_found", t)
                continue

            filename, content, descriptor = found
            self._log_attempt(repository, coordinate, "found", t)
            relocation = descriptor.relocation
            if relocation is not None and relocation != coordinate:
                if depth >= Constants.MAX_RELOCATION_DEPTH:
                    raise DownloadError(
                        coordinate,
                        message=f"Unable to download {coordinate}: too many relocations",
                        relocated_from=relocated_from,
                    )
                logger.info("%s is relocated to %s", coordinate, relocation)
                return self._download(
                    relocation, relocated_from or coordinate, repository_override, repositories, depth + 1
                )
            return ResolvedArtifact(
                coordinate=coordinate,
                repository=repository,
                content=content,
                filename=filename,
                packaging=descriptor.packaging,
                relocated_from=relocated_from,
            )

        error = DownloadError(coordinate, failures, relocated_from=relocated_from)
        logger.warning("%s", error)
        raise error

    def _file_version(self, coordinate: Coordinate, candidates: Sequence[RepositoryDescriptor]) -> str:
        """Concrete file version, expanding floating snapshots through metadata."""
        if not coordinate.is_snapshot or coordinate.timestamped_build is not None:
            return coordinate.version
        snapshot_repositories = [r for r in candidates if r.snapshots_enabled]
        merged = self.metadata.resolve(snapshot_repositories, coordinate)
        if merged is not None:
            value = merged.snapshot_value(Constants.POM_EXTENSION, base_version=coordinate.version)
            if value:
                return value
        # Let the server resolve the literal -SNAPSHOT file
        return coordinate.version

    def _fetch_from(
        self, store: ArtifactStore, coordinate: Coordinate, file_version: str
    ) -> Optional[Tuple[str, bytes, PomDescriptor]]:
        """Fetch and validate the descriptor from one repository.

        Raises:
            InvalidArtifactError: content is empty or malformed, or a local
                companion binary is missing or empty.
        """
        versions = [file_version]
        if isinstance(store, LocalStore) and coordinate.base_version not in versions:
            versions.append(coordinate.base_version)

        for version in versions:
            path = coordinate.file_path(version, Constants.POM_EXTENSION)
            content = self._fetch_cached(store, path)
            if content is None:
                continue
            descriptor = parse_pom(content)
            if isinstance(store, LocalStore) and descriptor.requires_binary:
                companion = coordinate.file_path(version, descriptor.binary_extension)
                size = store.size(companion)
                if size is None:
                    raise InvalidArtifactError(f"missing {descriptor.binary_extension} at {store.location(companion)}")
                if size == 0:
                    raise InvalidArtifactError(f"empty {descriptor.binary_extension} at {store.location(companion)}")
            return path.rsplit("/", 1)[-1], content, descriptor
        return None

    def _fetch_cached(self, store: ArtifactStore, path: str) -> Optional[bytes]:
        if isinstance(store, LocalStore):
            return store.fetch(path)
        key = (store.repository.uri, path)
        entry = self.context.artifact_cache.get(key)
        if entry is not None:
            return entry.value
        content = store.fetch(path)
        if content:
            self.context.artifact_cache.put(key, content)
        return content

    def _log_attempt(
        self, repository: RepositoryDescriptor, coordinate: Coordinate, outcome: str, timer: Timer, reason: Optional[str] = None
    ) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "Repository attempt",
                extra=extra_context(
                    event="download", component="downloader", action="fetch", outcome=outcome,
                    coordinate=str(coordinate), repository=repository.id, reason=reason,
                    duration_ms=timer.duration_ms(), target=safe_url(repository.uri),
                ),
            )

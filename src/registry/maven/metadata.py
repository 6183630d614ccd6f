"""maven-metadata.xml model, codec, merge and per-repository resolution."""
from __future__ import annotations

import logging
import re
import urllib.parse
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from packaging import version as pkg_version

from common.http_client import TransportError
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from constants import Constants
from registry.maven.context import ResolutionContext
from registry.maven.models import Coordinate, RepositoryDescriptor
from registry.maven.pom import child, child_text, local_name
from registry.maven.stores import LocalStore, RemoteStore, RepositoryFetchError

logger = logging.getLogger(__name__)

_HREF = re.compile(r'href="([^"]+)"', re.IGNORECASE)


class MetadataParseError(ValueError):
    """maven-metadata.xml content could not be parsed."""


@dataclass(frozen=True)
class Snapshot:
    timestamp: Optional[str] = None
    build_number: Optional[str] = None


@dataclass(frozen=True)
class SnapshotVersion:
    extension: Optional[str]
    value: Optional[str]
    updated: Optional[str] = None
    classifier: Optional[str] = None


@dataclass(frozen=True)
class Versioning:
    versions: Tuple[str, ...] = ()
    snapshot: Optional[Snapshot] = None
    snapshot_versions: Tuple[SnapshotVersion, ...] = ()
    last_updated: Optional[str] = None


@dataclass(frozen=True)
class MetadataDocument:
    """Metadata for one group/artifact, or for one snapshot version directory."""

    group_id: str
    artifact_id: str
    version: Optional[str] = None
    versioning: Versioning = field(default_factory=Versioning)

    def snapshot_value(
        self, extension: str, base_version: Optional[str] = None, classifier: Optional[str] = None
    ) -> Optional[str]:
        """Timestamped file version for ``extension``, e.g. ``1.0-20220201.001946-85``.

        The most recently updated matching ``snapshotVersion`` wins; without
        one, the value is built from the ``snapshot`` block.
        """
        best: Optional[SnapshotVersion] = None
        for entry in self.versioning.snapshot_versions:
            if entry.extension != extension or (entry.classifier or None) != classifier or not entry.value:
                continue
            if best is None or (entry.updated or "") > (best.updated or ""):
                best = entry
        if best is not None:
            return best.value
        snap = self.versioning.snapshot
        base = base_version or self.version
        if snap and snap.timestamp and snap.build_number and base and base.endswith(Constants.SNAPSHOT_SUFFIX):
            return f"{base[:-len(Constants.SNAPSHOT_SUFFIX)]}-{snap.timestamp}-{snap.build_number}"
        return None

    def to_xml(self) -> str:
        root = ET.Element("metadata")
        ET.SubElement(root, "groupId").text = self.group_id
        ET.SubElement(root, "artifactId").text = self.artifact_id
        if self.version:
            ET.SubElement(root, "version").text = self.version
        v = self.versioning
        versioning = ET.SubElement(root, "versioning")
        if v.snapshot is not None:
            snap = ET.SubElement(versioning, "snapshot")
            if v.snapshot.timestamp:
                ET.SubElement(snap, "timestamp").text = v.snapshot.timestamp
            if v.snapshot.build_number:
                ET.SubElement(snap, "buildNumber").text = v.snapshot.build_number
        if v.versions:
            versions = ET.SubElement(versioning, "versions")
            for item in v.versions:
                ET.SubElement(versions, "version").text = item
        if v.last_updated:
            ET.SubElement(versioning, "lastUpdated").text = v.last_updated
        if v.snapshot_versions:
            svs = ET.SubElement(versioning, "snapshotVersions")
            for entry in v.snapshot_versions:
                sv = ET.SubElement(svs, "snapshotVersion")
                for tag, value in (("classifier", entry.classifier), ("extension", entry.extension),
                                   ("value", entry.value), ("updated", entry.updated)):
                    if value:
                        ET.SubElement(sv, tag).text = value
        return ET.tostring(root, encoding="unicode")


def parse_metadata(content: bytes) -> MetadataDocument:
    """Parse maven-metadata.xml bytes; namespaces are ignored.

    Raises:
        MetadataParseError: malformed XML or missing groupId/artifactId.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise MetadataParseError(f"malformed metadata: {exc}") from exc
    if local_name(root.tag) != "metadata":
        raise MetadataParseError(f"unexpected root element <{local_name(root.tag)}>")
    group_id = child_text(root, "groupId")
    artifact_id = child_text(root, "artifactId")
    if not group_id or not artifact_id:
        raise MetadataParseError("metadata without groupId/artifactId")

    node = child(root, "versioning")
    versions: List[str] = []
    versions_node = child(node, "versions")
    if versions_node is not None:
        for item in versions_node:
            if local_name(item.tag) == "version" and item.text and item.text.strip():
                versions.append(item.text.strip())

    snapshot = None
    snap_node = child(node, "snapshot")
    if snap_node is not None:
        snapshot = Snapshot(child_text(snap_node, "timestamp"), child_text(snap_node, "buildNumber"))

    snapshot_versions = []
    svs_node = child(node, "snapshotVersions")
    if svs_node is not None:
        for sv in svs_node:
            if local_name(sv.tag) != "snapshotVersion":
                continue
            snapshot_versions.append(SnapshotVersion(
                extension=child_text(sv, "extension"),
                value=child_text(sv, "value"),
                updated=child_text(sv, "updated"),
                classifier=child_text(sv, "classifier"),
            ))

    return MetadataDocument(
        group_id=group_id,
        artifact_id=artifact_id,
        version=child_text(root, "version"),
        versioning=Versioning(
            versions=_unique(versions),
            snapshot=snapshot,
            snapshot_versions=tuple(snapshot_versions),
            last_updated=child_text(node, "lastUpdated"),
        ),
    )


def _unique(items: Iterable[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(items))


def _later_snapshot(a: Optional[Snapshot], b: Optional[Snapshot]) -> Optional[Snapshot]:
    if a is None or not a.timestamp:
        return b if b is not None else a
    if b is None or not b.timestamp:
        return a
    # yyyyMMdd.HHmmss is fixed width, so string order is chronological
    return b if b.timestamp > a.timestamp else a


def _max_optional(a: Optional[str], b: Optional[str]) -> Optional[str]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def merge(a: MetadataDocument, b: MetadataDocument) -> MetadataDocument:
    """Merge two documents for the same group/artifact.

    Versions keep ``a``'s order then append ``b``'s new entries. The later
    snapshot block wins (ties keep ``a``). Snapshot versions are concatenated
    without exact repeats. ``lastUpdated`` is the maximum.
    """
    va, vb = a.versioning, b.versioning
    return replace(
        a,
        version=a.version or b.version,
        versioning=Versioning(
            versions=_unique(va.versions + vb.versions),
            snapshot=_later_snapshot(va.snapshot, vb.snapshot),
            snapshot_versions=_unique_entries(va.snapshot_versions + vb.snapshot_versions),
            last_updated=_max_optional(va.last_updated, vb.last_updated),
        ),
    )


def _unique_entries(entries: Sequence[SnapshotVersion]) -> Tuple[SnapshotVersion, ...]:
    seen = []
    for entry in entries:
        if entry not in seen:
            seen.append(entry)
    return tuple(seen)


def _version_sort_key(item: Tuple[int, str]):
    position, value = item
    try:
        return (0, pkg_version.Version(value), position)
    except pkg_version.InvalidVersion:
        return (1, position, position)


def sort_versions(versions: Iterable[str]) -> Tuple[str, ...]:
    """Order version strings.

    Names that parse under PEP 440 come first, by version. Maven-only forms
    such as ``2.0-M1``, ``1.0.Final`` or ``1.0-SNAPSHOT`` do not parse; they
    follow in the order they were listed, without any version comparison.
    """
    unique = enumerate(_unique(versions))
    return tuple(value for _, value in sorted(unique, key=_version_sort_key))


class MetadataResolver:
    """Fetch, derive and merge metadata across candidate repositories."""

    def __init__(self, context: ResolutionContext):
        self._context = context

    def fetch_remote(self, repository: RepositoryDescriptor, coordinate: Coordinate) -> Optional[MetadataDocument]:
        """Download and parse metadata; any failure yields None."""
        store = RemoteStore(repository, self._context.negotiator)
        path = coordinate.metadata_path()
        try:
            content = store.fetch(path)
        except (RepositoryFetchError, TransportError) as exc:
            self._log_miss(repository, path, str(exc))
            return None
        if content is None:
            if repository.derive_metadata_if_missing and coordinate.version is None:
                return self.derive_from_listing(repository, coordinate)
            self._log_miss(repository, path, "not_found")
            return None
        return self._parse(repository, path, content)

    def derive_from_listing(self, repository: RepositoryDescriptor, coordinate: Coordinate) -> Optional[MetadataDocument]:
        """Derive versions from an HTML directory index of the artifact path."""
        store = RemoteStore(repository, self._context.negotiator)
        try:
            listing = store.fetch_text(coordinate.artifact_dir() + "/")
        except (RepositoryFetchError, TransportError) as exc:
            self._log_miss(repository, coordinate.artifact_dir(), str(exc))
            return None
        if not listing:
            return None
        versions = []
        for href in _HREF.findall(listing):
            name = urllib.parse.unquote(href.rstrip("/").rsplit("/", 1)[-1])
            if href.endswith("/") and name and name not in (".", "..") and not href.startswith(("?", "#")):
                versions.append(name)
        if not versions:
            return None
        return MetadataDocument(coordinate.group_id, coordinate.artifact_id,
                                versioning=Versioning(versions=sort_versions(versions)))

    def derive_from_local(self, repository: RepositoryDescriptor, coordinate: Coordinate) -> MetadataDocument:
        """Treat each version subdirectory under the artifact path as a version."""
        store = LocalStore(repository)
        names = store.list_directories(coordinate.with_version(None).artifact_dir())
        return MetadataDocument(
            coordinate.group_id,
            coordinate.artifact_id,
            versioning=Versioning(versions=sort_versions(sorted(names))),
        )

    def read_local(self, repository: RepositoryDescriptor, coordinate: Coordinate) -> Optional[MetadataDocument]:
        """Read on-disk metadata, deriving it when allowed and absent."""
        store = LocalStore(repository)
        for file_name in (Constants.LOCAL_METADATA_FILE, Constants.METADATA_FILE):
            path = coordinate.metadata_path(file_name)
            try:
                content = store.fetch(path)
            except RepositoryFetchError as exc:
                self._log_miss(repository, path, str(exc))
                return None
            if content is not None:
                return self._parse(repository, path, content)
        if repository.derive_metadata_if_missing and coordinate.version is None:
            derived = self.derive_from_local(repository, coordinate)
            return derived if derived.versioning.versions else None
        return None

    def fetch(self, repository: RepositoryDescriptor, coordinate: Coordinate) -> Optional[MetadataDocument]:
        """Metadata from one repository, cached per (repository uri, coordinate)."""
        key = (repository.uri, coordinate.with_version(coordinate.base_version))
        if repository.is_local:
            return self._context.metadata_cache.get_or_compute(key, lambda: self.read_local(repository, coordinate))
        return self._context.metadata_cache.get_or_compute(key, lambda: self.fetch_remote(repository, coordinate))

    def resolve(self, repositories: Sequence[RepositoryDescriptor], coordinate: Coordinate) -> Optional[MetadataDocument]:
        """Fold metadata from ``repositories`` left to right in priority order."""
        merged: Optional[MetadataDocument] = None
        for repository in repositories:
            document = self.fetch(repository, coordinate)
            if document is None:
                continue
            merged = document if merged is None else merge(merged, document)
        return merged

    def _parse(self, repository: RepositoryDescriptor, path: str, content: bytes) -> Optional[MetadataDocument]:
        try:
            return parse_metadata(content)
        except MetadataParseError as exc:
            logger.warning("Ignoring invalid metadata at %s in %s: %s", path, repository.id, exc)
            return None

    def _log_miss(self, repository: RepositoryDescriptor, path: str, reason: str) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "Metadata unavailable",
                extra=extra_context(
                    event="metadata", component="metadata", action="fetch", outcome=reason,
                    repository=repository.id, target=safe_url(repository.uri), path=path,
                ),
            )

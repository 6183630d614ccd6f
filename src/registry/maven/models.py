"""Data models for Maven coordinates, repositories and resolved artifacts."""

import re
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from common.credentials import Credentials
from constants import Constants

# 1.0-20210127.131051-2: base version, timestamp, build number
TIMESTAMPED_SNAPSHOT = re.compile(r"^(?P<base>.+)-(?P<timestamp>\d{8}\.\d{6})-(?P<build>\d+)$")


@dataclass(frozen=True)
class Coordinate:
    """groupId/artifactId/version triple; version is None for artifact-level lookups."""

    group_id: str
    artifact_id: str
    version: Optional[str] = None

    def __str__(self) -> str:
        if self.version is None:
            return f"{self.group_id}:{self.artifact_id}"
        return f"{self.group_id}:{self.artifact_id}:{self.version}"

    @classmethod
    def parse(cls, token: str) -> "Coordinate":
        """Parse ``group:artifact[:version]``.

        Raises:
            ValueError: if the token does not have two or three non-empty parts.
        """
        parts = [p.strip() for p in token.strip().split(":")]
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid coordinate '{token}'. Expected 'groupId:artifactId[:version]'.")
        return cls(*parts)

    @property
    def group_path(self) -> str:
        return self.group_id.replace(".", "/")

    @property
    def is_snapshot(self) -> bool:
        if self.version is None:
            return False
        return self.version.endswith(Constants.SNAPSHOT_SUFFIX) or self.timestamped_build is not None

    @property
    def timestamped_build(self) -> Optional["re.Match[str]"]:
        if self.version is None:
            return None
        return TIMESTAMPED_SNAPSHOT.match(self.version)

    @property
    def base_version(self) -> Optional[str]:
        """Directory version: a timestamped build maps back to ``X-SNAPSHOT``."""
        match = self.timestamped_build
        if match is not None:
            return match.group("base") + Constants.SNAPSHOT_SUFFIX
        return self.version

    def with_version(self, version: Optional[str]) -> "Coordinate":
        return Coordinate(self.group_id, self.artifact_id, version)

    def artifact_dir(self) -> str:
        """Repository-relative directory holding this coordinate's files."""
        if self.version is None:
            return f"{self.group_path}/{self.artifact_id}"
        return f"{self.group_path}/{self.artifact_id}/{self.base_version}"

    def metadata_path(self, file_name: str = Constants.METADATA_FILE) -> str:
        return f"{self.artifact_dir()}/{file_name}"

    def file_path(self, file_version: str, extension: str, classifier: Optional[str] = None) -> str:
        suffix = f"-{classifier}" if classifier else ""
        return f"{self.artifact_dir()}/{self.artifact_id}-{file_version}{suffix}.{extension}"


@dataclass(frozen=True)
class RepositoryDescriptor:
    """A candidate repository as configured by the caller."""

    id: str
    uri: str
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    snapshots_enabled: bool = True
    releases_enabled: bool = True
    known_to_exist: bool = False
    derive_metadata_if_missing: bool = False

    @property
    def is_local(self) -> bool:
        return self.uri.lower().startswith("file:")

    @property
    def has_credentials(self) -> bool:
        return bool(self.username or self.password)

    @property
    def credentials(self) -> Optional[Credentials]:
        if not self.has_credentials:
            return None
        return Credentials(username=self.username, password=self.password)

    def local_path(self) -> Path:
        """Filesystem root of a ``file:`` repository."""
        parsed = urllib.parse.urlparse(self.uri)
        return Path(urllib.request.url2pathname(parsed.path))

    @classmethod
    def for_directory(cls, repo_id: str, directory, **flags) -> "RepositoryDescriptor":
        """Descriptor for a local directory, with a canonical ``file:`` URI."""
        uri = Path(directory).expanduser().resolve().as_uri()
        return cls(id=repo_id, uri=uri, **flags)


@dataclass(frozen=True)
class ResolvedArtifact:
    """Outcome of a successful download."""

    coordinate: Coordinate
    repository: RepositoryDescriptor
    content: bytes = field(repr=False)
    filename: str
    packaging: str = "jar"
    relocated_from: Optional[Coordinate] = None


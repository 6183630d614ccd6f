"""Maven repository resolution package.

This package resolves Maven coordinates against prioritized repositories:
- models.py: coordinates, repository descriptors and resolved artifacts
- context.py: per-execution settings, caches, mirrors and server credentials
- normalize.py: repository URI validation and reachability probing
- stores.py: uniform access to remote (HTTP) and local (file:) repositories
- metadata.py: maven-metadata.xml parsing, merging and derivation
- pom.py: POM parsing used to validate downloaded descriptors
- downloader.py: first-valid-wins artifact download across candidates
"""

from .context import MirrorDescriptor, ResolutionContext, ServerCredentials  # noqa: F401
from .downloader import ArtifactDownloader, DownloadError, MetadataNotFoundError  # noqa: F401
from .metadata import MetadataDocument, MetadataResolver, merge  # noqa: F401
from .models import Coordinate, RepositoryDescriptor, ResolvedArtifact  # noqa: F401
from .normalize import RepositoryNormalizer  # noqa: F401

__all__ = [
    # Models
    "Coordinate",
    "RepositoryDescriptor",
    "ResolvedArtifact",
    # Resolution
    "ResolutionContext",
    "MirrorDescriptor",
    "ServerCredentials",
    "RepositoryNormalizer",
    "MetadataDocument",
    "MetadataResolver",
    "merge",
    # Download
    "ArtifactDownloader",
    "DownloadError",
    "MetadataNotFoundError",
]

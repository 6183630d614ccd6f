"""Minimal POM reader used to validate downloaded descriptors."""
from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Optional

from constants import Constants
from registry.maven.models import Coordinate


class InvalidArtifactError(Exception):
    """Downloaded content is not a usable artifact descriptor."""


def local_name(tag: str) -> str:
    """Strip an ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def child(element: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if element is None:
        return None
    for node in element:
        if local_name(node.tag) == name:
            return node
    return None


def child_text(element: Optional[ET.Element], name: str) -> Optional[str]:
    node = child(element, name)
    if node is None or node.text is None:
        return None
    text = node.text.strip()
    return text or None


@dataclass(frozen=True)
class PomDescriptor:
    """The handful of POM fields resolution needs."""

    group_id: Optional[str]
    artifact_id: Optional[str]
    version: Optional[str]
    packaging: str = "jar"
    relocation: Optional[Coordinate] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if not (self.group_id and self.artifact_id and self.version):
            return None
        return Coordinate(self.group_id, self.artifact_id, self.version)

    @property
    def requires_binary(self) -> bool:
        return self.packaging not in Constants.POM_ONLY_PACKAGING

    @property
    def binary_extension(self) -> str:
        return Constants.PACKAGING_EXTENSIONS.get(self.packaging, "jar")


def parse_pom(content: bytes) -> PomDescriptor:
    """Parse POM bytes.

    groupId and version fall back to the ``<parent>`` block, as Maven does.

    Raises:
        InvalidArtifactError: empty content, malformed XML, or a root that
            is not ``<project>``.
    """
    if not content or not content.strip():
        raise InvalidArtifactError("empty descriptor")
    try:
        root = ET.fromstring(content)
    except ET.ParseError as exc:
        raise InvalidArtifactError(f"malformed descriptor: {exc}") from exc
    if local_name(root.tag) != "project":
        raise InvalidArtifactError(f"unexpected root element <{local_name(root.tag)}>")

    parent = child(root, "parent")
    relocation = None
    reloc_node = child(child(root, "distributionManagement"), "relocation")
    group_id = child_text(root, "groupId") or child_text(parent, "groupId")
    artifact_id = child_text(root, "artifactId")
    version = child_text(root, "version") or child_text(parent, "version")
    if reloc_node is not None and group_id and artifact_id and version:
        relocation = Coordinate(
            child_text(reloc_node, "groupId") or group_id,
            child_text(reloc_node, "artifactId") or artifact_id,
            child_text(reloc_node, "version") or version,
        )

    return PomDescriptor(
        group_id=group_id,
        artifact_id=artifact_id,
        version=version,
        packaging=child_text(root, "packaging") or "jar",
        relocation=relocation,
    )

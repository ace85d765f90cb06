"""Cache key computation for builds.

This module handles:
- Hashing the raw manifest bytes
- Deriving the canonical, content-addressed artifact filename

The artifact filename is the cache key: an artifact already present under
that name means the build command is skipped. Only the manifest bytes feed
the key, so edits elsewhere in the source tree do not invalidate it.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path

from lpkbuild.types import Manifest

ARTIFACT_EXTENSION = ".lpk"


@dataclass(frozen=True)
class ArtifactKey:
    """Cache key for a build.

    Attributes:
        name: Manifest name.
        version: Manifest version.
        manifest_hash: SHA-256 of the raw manifest bytes.
    """

    name: str
    version: str
    manifest_hash: str

    @property
    def base_name(self) -> str:
        """Artifact filename without extension."""
        return f"{self.name}-{self.version}-{self.manifest_hash}"

    @property
    def filename(self) -> str:
        """Canonical artifact filename."""
        return self.base_name + ARTIFACT_EXTENSION

    def artifact_path(self, workdir: Path) -> Path:
        """Return the canonical artifact path inside a working directory."""
        return workdir / self.filename


def compute_manifest_hash(raw: bytes) -> str:
    """Compute the hex SHA-256 of raw manifest bytes."""
    return hashlib.sha256(raw).hexdigest()


def compute_artifact_key(manifest: Manifest, raw: bytes) -> ArtifactKey:
    """Compute the cache key for a manifest.

    Args:
        manifest: Parsed manifest.
        raw: Raw manifest file bytes the manifest was parsed from.

    Returns:
        ArtifactKey for the build.
    """
    return ArtifactKey(
        name=manifest.name,
        version=manifest.version,
        manifest_hash=compute_manifest_hash(raw),
    )


__all__ = [
    "ARTIFACT_EXTENSION",
    "ArtifactKey",
    "compute_artifact_key",
    "compute_manifest_hash",
]

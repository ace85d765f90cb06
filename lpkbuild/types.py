"""Shared type definitions for lpkbuild.

This module contains dataclasses and enums shared across subpackages to
avoid circular imports.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class SourceKind(str, Enum):
    """Kind of source tree a pipeline builds from."""

    LOCAL = "local"
    GIT = "git"


class PublishAction(str, Enum):
    """What the publish step did for a pipeline run."""

    DISABLED = "disabled"
    REUSED = "reused"
    UPLOADED = "uploaded"


@dataclass(frozen=True)
class Manifest:
    """Identity read from the build manifest."""

    name: str
    version: str
    app_id: str = ""


@dataclass(frozen=True)
class ArtifactMetadata:
    """Metadata describing a realized artifact.

    Attributes:
        app_id: Application identifier from the manifest.
        version: Manifest version, or the publish override.
        sha256: Content hash of the artifact bytes.
        name: Artifact base name, or the publish override.
    """

    app_id: str
    version: str
    sha256: str
    name: str


@dataclass(frozen=True)
class UploadRecord:
    """Record of an artifact published to the registry."""

    upload_id: str
    download_url: str
    sha256: str = ""
    version: str = ""


@dataclass
class PipelineResult:
    """Facts reported back to the caller after a pipeline run.

    Attributes:
        artifact_path: Absolute path of the artifact on disk.
        app_id: Application identifier.
        version: Reported version.
        sha256: Reported content hash.
        resource_id: Derived identity ``{app_id}-{version}-{sha256}``.
        download_url: Registry download URL, if published or reused.
        upload_id: Registry upload identifier, if published or reused.
        cache_hit: Whether the build command was skipped.
        publish_action: What the publish step did.
    """

    artifact_path: Path
    app_id: str
    version: str
    sha256: str
    resource_id: str
    download_url: str | None = None
    upload_id: str | None = None
    cache_hit: bool = False
    publish_action: PublishAction = PublishAction.DISABLED

    def upload_record(self) -> UploadRecord | None:
        """Return the upload record carried by this result, if any."""
        if not self.upload_id or not self.download_url:
            return None
        return UploadRecord(
            upload_id=self.upload_id,
            download_url=self.download_url,
            sha256=self.sha256,
            version=self.version,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["artifact_path"] = str(self.artifact_path)
        data["publish_action"] = self.publish_action.value
        return data


@dataclass
class TeardownResult:
    """Outcome of a best-effort teardown."""

    remote_deleted: bool = False
    local_removed: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """True when no step reported an error."""
        return not self.errors


__all__ = [
    "ArtifactMetadata",
    "Manifest",
    "PipelineResult",
    "PublishAction",
    "SourceKind",
    "TeardownResult",
    "UploadRecord",
]

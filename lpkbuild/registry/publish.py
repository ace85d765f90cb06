"""Publish decisions for built artifacts.

This module decides whether an artifact is uploaded, and whether an
earlier upload can be reused unchanged. Reuse is keyed on the content hash
of the artifact bytes: rebuilding identical bytes never re-uploads or mints
a new remote identifier.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from lpkbuild.types import ArtifactMetadata, UploadRecord

if TYPE_CHECKING:
    from lpkbuild.pipeline.schema import PublishSchema
    from lpkbuild.registry.client import RegistryClient

logger = logging.getLogger(__name__)


def should_publish(publish: PublishSchema | None) -> bool:
    """Return True unless publishing is explicitly disabled."""
    if publish is None or publish.enabled is None:
        return True
    return publish.enabled


def can_reuse(prior: UploadRecord | None, metadata: ArtifactMetadata) -> bool:
    """Check whether a prior upload still matches the current artifact.

    Args:
        prior: Upload record from an earlier run, if any.
        metadata: Metadata of the artifact just built.

    Returns:
        True only if the prior record has an upload ID, a download URL and
        a content hash equal to the current artifact's.
    """
    if prior is None:
        return False
    if not prior.upload_id or not prior.download_url:
        return False
    return bool(prior.sha256) and prior.sha256 == metadata.sha256


def publish_artifact(
    client: RegistryClient,
    user: str,
    metadata: ArtifactMetadata,
    artifact_path: Path,
) -> UploadRecord:
    """Upload an artifact to the registry.

    The metadata name/version already carry any publish-block overrides.

    Raises:
        UploadError: If the registry rejects the upload.
    """
    logger.info(
        "Publishing %s (name=%s, version=%s)",
        artifact_path.name,
        metadata.name,
        metadata.version,
    )
    return client.upload_lpk(user, metadata.name, metadata.version, artifact_path)


__all__ = ["can_reuse", "publish_artifact", "should_publish"]

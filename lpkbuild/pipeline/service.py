"""Pipeline orchestration.

This module provides the high-level pipeline API:
- apply_pipeline(): resolve, render, build and publish in one pass
- teardown(): best-effort removal of a previous run's upload and artifact
- compute_resource_id(): caller-visible identity of a result

Any component failure aborts the chain and propagates unchanged. Temporary
clones are always removed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from lpkbuild.builds.artifacts import retain_artifact
from lpkbuild.builds.service import build_artifact
from lpkbuild.builds.templates import render_templates
from lpkbuild.config import get_settings
from lpkbuild.errors import ConfigError, RegistryNotFoundError
from lpkbuild.registry.publish import can_reuse, publish_artifact, should_publish
from lpkbuild.sources.resolver import checkout_source
from lpkbuild.types import (
    ArtifactMetadata,
    PipelineResult,
    PublishAction,
    TeardownResult,
    UploadRecord,
)

if TYPE_CHECKING:
    from lpkbuild.builds.runner import CommandRunner
    from lpkbuild.config import Settings
    from lpkbuild.pipeline.schema import PipelineSpec
    from lpkbuild.registry.client import RegistryClient

logger = logging.getLogger(__name__)


def compute_resource_id(metadata: ArtifactMetadata) -> str:
    """Return the identity ``{app_id}-{version}-{sha256}`` of an artifact."""
    return f"{metadata.app_id}-{metadata.version}-{metadata.sha256}"


def apply_pipeline(
    spec: PipelineSpec,
    client: RegistryClient | None = None,
    prior: UploadRecord | None = None,
    runner: CommandRunner | None = None,
    settings: Settings | None = None,
    user: str | None = None,
) -> PipelineResult:
    """Run the full pipeline for a spec.

    Steps: validate the source descriptor, resolve the source, render
    templates, build (or reuse) the artifact, then publish or reuse the
    prior upload.

    Args:
        spec: Pipeline spec.
        client: Registry client (required when publishing).
        prior: Upload record from the previous run, for reuse.
        runner: Command runner for git and the build command.
        settings: Application settings.
        user: Registry owner UID (defaults to the client's, then settings).

    Returns:
        PipelineResult for the caller to persist.

    Raises:
        ConfigError: If the spec is invalid or publishing lacks a client.
        LPKBuildError: Any failure from the individual stages.
    """
    spec.source.validate_choice()
    if settings is None:
        settings = get_settings()

    publisher: RegistryClient | None = None
    if should_publish(spec.publish):
        if client is None:
            raise ConfigError("publishing is enabled but no registry client is configured")
        publisher = client

    variables = spec.collect_variables()
    extension = spec.template_extension(settings.template_extension)

    with checkout_source(spec.source, runner=runner, settings=settings) as source:
        render_templates(source.workdir, extension, variables)
        outcome = build_artifact(
            source.workdir,
            build=spec.build,
            publish=spec.publish,
            variables=variables,
            runner=runner,
            settings=settings,
        )

        artifact_path = outcome.artifact_path
        if source.is_ephemeral:
            artifact_path = retain_artifact(artifact_path, settings.artifacts_dir)

        metadata = outcome.metadata
        result = PipelineResult(
            artifact_path=artifact_path,
            app_id=metadata.app_id,
            version=metadata.version,
            sha256=metadata.sha256,
            resource_id=compute_resource_id(metadata),
            cache_hit=outcome.cache_hit,
        )

        if publisher is None:
            logger.info("Publishing disabled for %s", artifact_path.name)
            return result

        if prior is not None and can_reuse(prior, metadata):
            logger.info(
                "Artifact unchanged (sha256=%s), reusing upload %s",
                metadata.sha256[:16],
                prior.upload_id,
            )
            result.download_url = prior.download_url
            result.upload_id = prior.upload_id
            if prior.version:
                result.version = prior.version
            result.publish_action = PublishAction.REUSED
            return result

        owner = user or publisher.user or settings.registry_user or ""
        upload = publish_artifact(publisher, owner, metadata, artifact_path)
        result.download_url = upload.download_url
        result.upload_id = upload.upload_id
        if upload.sha256:
            result.sha256 = upload.sha256
        if upload.version:
            result.version = upload.version
        result.publish_action = PublishAction.UPLOADED
        return result


def teardown(
    prior: PipelineResult,
    client: RegistryClient | None = None,
) -> TeardownResult:
    """Remove a previous run's upload and local artifact.

    Both steps are attempted. An upload that is already gone and a local
    file that is already missing both count as removed. Failures are
    collected in the result rather than raised, and nothing is retried.

    Args:
        prior: Result of the run being torn down.
        client: Registry client (needed only if the run was published).

    Returns:
        TeardownResult describing what happened.
    """
    outcome = TeardownResult()

    if prior.upload_id:
        if client is None:
            outcome.errors.append(
                f"registry client not configured; upload {prior.upload_id} not deleted"
            )
        else:
            try:
                client.delete_lpk(prior.upload_id)
                outcome.remote_deleted = True
            except RegistryNotFoundError:
                logger.info("Upload %s already deleted", prior.upload_id)
                outcome.remote_deleted = True
            except Exception as e:
                logger.error("Delete upload failed: %s", e)
                outcome.errors.append(f"Delete upload failed: {e}")
    else:
        outcome.remote_deleted = True

    if prior.artifact_path:
        path = Path(prior.artifact_path)
        try:
            path.unlink()
            logger.info("Removed artifact %s", path)
        except FileNotFoundError:
            logger.info("Artifact %s already removed", path)
        except OSError as e:
            logger.error("Remove artifact failed: %s", e)
            outcome.errors.append(f"Remove artifact failed: {e}")
        else:
            outcome.local_removed = True
        if not path.exists():
            outcome.local_removed = True
    else:
        outcome.local_removed = True

    return outcome


__all__ = ["apply_pipeline", "compute_resource_id", "teardown"]

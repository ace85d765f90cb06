"""Build service module.

This module provides the artifact builder:
- build_artifact(): read manifest, derive cache key, build or reuse
- Build command execution with environment overlay and logging
- Artifact placement under its content-addressed name

The cache key lives on the filesystem: when an artifact named after the
manifest hash already exists in the working directory, the build command is
not run again, even across process restarts. Concurrent builds in the same
directory are not guarded.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from lpkbuild.builds.artifacts import (
    compute_file_hash,
    find_latest_artifact,
    place_artifact,
)
from lpkbuild.builds.cache_key import ArtifactKey, compute_artifact_key
from lpkbuild.builds.manifest import parse_manifest, read_manifest_bytes
from lpkbuild.builds.runner import (
    CommandRunner,
    SubprocessRunner,
    compose_build_command,
    compose_build_env,
    write_build_log,
)
from lpkbuild.config import get_settings
from lpkbuild.errors import BuildCommandError
from lpkbuild.types import ArtifactMetadata, Manifest

if TYPE_CHECKING:
    from lpkbuild.config import Settings
    from lpkbuild.pipeline.schema import BuildSchema, PublishSchema

logger = logging.getLogger(__name__)

# Number of trailing stderr characters carried in error messages
STDERR_TAIL_CHARS = 4000


@dataclass
class BuildOutcome:
    """Result of building (or reusing) an artifact.

    Attributes:
        artifact_path: Canonical artifact path.
        metadata: Artifact metadata used for publishing and identity.
        manifest: Parsed manifest.
        key: Cache key the artifact was stored under.
        cache_hit: True if the build command was skipped.
        log_path: Build log file (None on cache hit).
    """

    artifact_path: Path
    metadata: ArtifactMetadata
    manifest: Manifest
    key: ArtifactKey
    cache_hit: bool
    log_path: Path | None = None


def _log_path_for(settings: Settings, key: ArtifactKey) -> Path:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return settings.log_dir / f"{key.name}-{key.version}-{stamp}.log"


def run_build_command(
    workdir: Path,
    command: str,
    variables: Mapping[str, str] | None,
    runner: CommandRunner,
    log_path: Path,
    timeout: float | None = None,
) -> None:
    """Run the build command in the working directory.

    Args:
        workdir: Directory the command runs in.
        command: Shell command line.
        variables: Variables overlaid onto the inherited environment.
        runner: Command runner.
        log_path: File receiving the command output.
        timeout: Timeout in seconds (None = no timeout).

    Raises:
        BuildCommandError: If the command exits non-zero.
        CommandExecutionError: If the command cannot be started.
    """
    cmd = compose_build_command(command)
    env = compose_build_env(variables)

    logger.info("Executing build: %s", command)
    logger.info("Working directory: %s", workdir)

    result = runner.run(cmd, cwd=workdir, env=env, timeout=timeout)
    write_build_log(log_path, result, workdir, variables=variables)

    if not result.success:
        stderr = result.stderr.strip()
        message = f"build command failed with exit code {result.returncode}"
        if stderr:
            message = f"{message}: {stderr[-STDERR_TAIL_CHARS:]}"
        logger.error("%s. See log: %s", message, log_path)
        raise BuildCommandError(
            message,
            exit_code=result.returncode,
            stderr=result.stderr,
            log_path=log_path,
        )


def derive_metadata(
    manifest: Manifest,
    key: ArtifactKey,
    sha256: str,
    publish: PublishSchema | None = None,
) -> ArtifactMetadata:
    """Derive artifact metadata, applying publish overrides.

    Args:
        manifest: Parsed manifest.
        key: Cache key of the artifact.
        sha256: Content hash of the artifact bytes.
        publish: Optional publish block with name/version overrides.

    Returns:
        ArtifactMetadata.
    """
    version = manifest.version
    name = key.base_name
    if publish is not None:
        if publish.version:
            version = publish.version
        if publish.name:
            name = publish.name
    return ArtifactMetadata(
        app_id=manifest.app_id,
        version=version,
        sha256=sha256,
        name=name,
    )


def build_artifact(
    workdir: Path,
    build: BuildSchema | None = None,
    publish: PublishSchema | None = None,
    variables: Mapping[str, str] | None = None,
    runner: CommandRunner | None = None,
    settings: Settings | None = None,
) -> BuildOutcome:
    """Build an artifact, or reuse the one already stored under its cache key.

    This is the main entry point of the artifact builder. It:
    1. Reads the manifest and hashes its raw bytes
    2. Derives the canonical artifact path from name, version and hash
    3. Skips the build command if that path already exists
    4. Otherwise runs the build and moves the newest ``.lpk`` into place
    5. Hashes the final artifact

    Args:
        workdir: Resolved, rendered source tree.
        build: Optional build block (command override).
        publish: Optional publish block (name/version overrides).
        variables: Variables overlaid onto the build environment.
        runner: Command runner (defaults to SubprocessRunner).
        settings: Application settings.

    Returns:
        BuildOutcome for the artifact.

    Raises:
        ManifestError: If the manifest is missing or incomplete.
        BuildCommandError: If the build command fails.
        NoArtifactProducedError: If the build produced no artifact.
        ArtifactError: If the artifact cannot be moved into place.
    """
    if settings is None:
        settings = get_settings()
    if runner is None:
        runner = SubprocessRunner()

    manifest_path = workdir / settings.manifest_filename
    raw = read_manifest_bytes(manifest_path)
    manifest = parse_manifest(raw, source=manifest_path)

    key = compute_artifact_key(manifest, raw)
    artifact_path = key.artifact_path(workdir)
    logger.info("Computed cache key: %s", key.base_name)

    log_path: Path | None = None
    cache_hit = artifact_path.is_file()

    if cache_hit:
        logger.info("Cache hit for %s, skipping build command", artifact_path.name)
    else:
        command = settings.build_command
        if build is not None:
            command = build.resolve_command(command)
        log_path = _log_path_for(settings, key)
        run_build_command(
            workdir,
            command,
            variables,
            runner,
            log_path,
            timeout=settings.build_timeout,
        )
        produced = find_latest_artifact(workdir)
        place_artifact(produced, artifact_path)

    sha256 = compute_file_hash(artifact_path)
    metadata = derive_metadata(manifest, key, sha256, publish)
    logger.info(
        "Artifact %s ready (sha256=%s, cache_hit=%s)",
        artifact_path.name,
        sha256[:16],
        cache_hit,
    )

    return BuildOutcome(
        artifact_path=artifact_path,
        metadata=metadata,
        manifest=manifest,
        key=key,
        cache_hit=cache_hit,
        log_path=log_path,
    )


__all__ = [
    "BuildOutcome",
    "build_artifact",
    "derive_metadata",
    "run_build_command",
]

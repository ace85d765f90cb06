"""Artifact discovery and placement.

This module handles:
- Computing artifact checksums
- Finding the artifact produced by the build command
- Moving it to its canonical, content-addressed path
- Retaining copies of artifacts built in ephemeral directories
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from pathlib import Path

from lpkbuild.builds.cache_key import ARTIFACT_EXTENSION
from lpkbuild.errors import ArtifactError, NoArtifactProducedError

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def find_latest_artifact(
    directory: Path,
    extension: str = ARTIFACT_EXTENSION,
) -> Path:
    """Find the most recently modified artifact in a directory.

    Only the top level of the directory is searched. Ties on modification
    time are broken by filename so the choice is deterministic.

    Args:
        directory: Directory the build command ran in.
        extension: Artifact extension to match.

    Returns:
        Path to the newest artifact.

    Raises:
        NoArtifactProducedError: If no artifact is present.
    """
    candidates = [p for p in directory.glob(f"*{extension}") if p.is_file()]
    if not candidates:
        raise NoArtifactProducedError(
            f"no {extension} artifact produced in {directory}"
        )

    candidates.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
    if len(candidates) > 1:
        logger.debug(
            "Found %d artifacts, using newest: %s", len(candidates), candidates[0].name
        )
    return candidates[0]


def place_artifact(produced: Path, canonical: Path) -> Path:
    """Move a produced artifact to its canonical path.

    Args:
        produced: Artifact as written by the build command.
        canonical: Content-addressed destination path.

    Returns:
        The canonical path.

    Raises:
        ArtifactError: If the rename fails.
    """
    if produced == canonical:
        return canonical
    try:
        produced.replace(canonical)
    except OSError as e:
        raise ArtifactError(f"rename artifact {produced} -> {canonical}: {e}") from e
    logger.info("Renamed %s -> %s", produced.name, canonical.name)
    return canonical


def retain_artifact(artifact: Path, dest_dir: Path) -> Path:
    """Copy an artifact out of an ephemeral directory.

    Args:
        artifact: Artifact inside a directory that is about to be removed.
        dest_dir: Directory that outlives the pipeline run.

    Returns:
        Path to the retained copy.

    Raises:
        ArtifactError: If the copy fails.
    """
    dest = dest_dir / artifact.name
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(artifact, dest)
    except OSError as e:
        raise ArtifactError(f"retain artifact {artifact} -> {dest}: {e}") from e
    logger.info("Retained artifact at %s", dest)
    return dest


__all__ = [
    "HASH_CHUNK_SIZE",
    "compute_file_hash",
    "find_latest_artifact",
    "place_artifact",
    "retain_artifact",
]

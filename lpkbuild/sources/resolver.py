"""Source resolution for builds.

This module handles:
- Validating source descriptors before any I/O
- Using local directories in place
- Cloning git repositories into an ephemeral staging directory
- Cleaning up staging directories on every exit path
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from lpkbuild.builds.runner import CommandRunner, SubprocessRunner
from lpkbuild.config import get_settings
from lpkbuild.errors import CommandExecutionError, ConfigError, SourceAcquisitionError
from lpkbuild.types import SourceKind

if TYPE_CHECKING:
    from lpkbuild.config import Settings
    from lpkbuild.pipeline.schema import GitSourceSchema, SourceSchema

logger = logging.getLogger(__name__)

STAGING_PREFIX = "lpk-build-"
CLONE_DIRNAME = "repo"


def _noop() -> None:
    pass


@dataclass
class ResolvedSource:
    """A working directory ready for rendering and building.

    Attributes:
        workdir: Directory to build in.
        kind: Which source variant produced it.
        staging_dir: Ephemeral directory to remove, if any.
    """

    workdir: Path
    kind: SourceKind
    staging_dir: Path | None = None
    _cleanup: Callable[[], None] = field(default=_noop, repr=False)

    @property
    def is_ephemeral(self) -> bool:
        """True when the working directory is removed by cleanup."""
        return self.staging_dir is not None

    def cleanup(self) -> None:
        """Remove the staging directory (no-op for local sources)."""
        self._cleanup()


def _remove_tree(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)
    logger.debug("Removed staging directory %s", path)


def _run_git(
    runner: CommandRunner,
    args: list[str],
    cwd: Path,
    action: str,
    timeout: float | None,
) -> None:
    try:
        result = runner.run(args, cwd=cwd, timeout=timeout)
    except CommandExecutionError as e:
        raise SourceAcquisitionError(
            f"git {action} failed: {e}", code=f"git_{action}_failed"
        ) from e
    if not result.success:
        stderr = result.stderr.strip()
        detail = stderr or f"exit code {result.returncode}"
        logger.error("git %s failed: %s", action, detail)
        raise SourceAcquisitionError(
            f"git {action} failed: {detail}", code=f"git_{action}_failed"
        )


def _resolve_subpath(repo_path: Path, subpath: str) -> Path:
    candidate = (repo_path / subpath).resolve()
    try:
        candidate.relative_to(repo_path.resolve())
    except ValueError:
        raise SourceAcquisitionError(
            f"subpath {subpath!r} resolves outside the checkout",
            code="invalid_subpath",
        ) from None
    if not candidate.is_dir():
        raise SourceAcquisitionError(
            f"subpath {subpath!r} is not a directory in the checkout",
            code="invalid_subpath",
        )
    return candidate


def clone_git_source(
    git: GitSourceSchema,
    runner: CommandRunner,
    settings: Settings,
) -> ResolvedSource:
    """Clone a git source into a fresh staging directory.

    Args:
        git: Git source block.
        runner: Command runner used for git.
        settings: Application settings.

    Returns:
        ResolvedSource whose cleanup removes the staging directory.

    Raises:
        ConfigError: If the ref would be parsed as a git option.
        SourceAcquisitionError: If clone, checkout or subpath resolution
            fails. The staging directory is removed before raising.
    """
    if git.ref and git.ref.startswith("-"):
        raise ConfigError(f"invalid git ref {git.ref!r}: must not start with '-'")

    if settings.tmp_dir is not None:
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)
    staging_dir = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=settings.tmp_dir))
    git_bin = settings.git_executable
    timeout = settings.git_timeout

    try:
        logger.info("Cloning %s into %s", git.url, staging_dir)
        _run_git(
            runner,
            [git_bin, "clone", "--", git.url, CLONE_DIRNAME],
            staging_dir,
            "clone",
            timeout,
        )
        repo_path = staging_dir / CLONE_DIRNAME

        if git.ref:
            logger.info("Checking out %s", git.ref)
            _run_git(
                runner,
                [git_bin, "checkout", git.ref],
                repo_path,
                "checkout",
                timeout,
            )

        workdir = repo_path
        if git.subpath:
            workdir = _resolve_subpath(repo_path, git.subpath)
    except BaseException:
        _remove_tree(staging_dir)
        raise

    return ResolvedSource(
        workdir=workdir,
        kind=SourceKind.GIT,
        staging_dir=staging_dir,
        _cleanup=lambda: _remove_tree(staging_dir),
    )


def resolve_source(
    source: SourceSchema,
    runner: CommandRunner | None = None,
    settings: Settings | None = None,
) -> ResolvedSource:
    """Turn a source descriptor into a working directory.

    Args:
        source: Source descriptor.
        runner: Command runner (defaults to SubprocessRunner).
        settings: Application settings.

    Returns:
        ResolvedSource. Callers must invoke cleanup() when done.

    Raises:
        ConfigError: If the descriptor is invalid (raised before any I/O).
        SourceAcquisitionError: If the source cannot be acquired.
    """
    source.validate_choice()
    if settings is None:
        settings = get_settings()
    if runner is None:
        runner = SubprocessRunner()

    if source.local is not None:
        path = Path(source.local.path).expanduser()
        if not path.is_dir():
            raise SourceAcquisitionError(
                f"local source is not a directory: {path}",
                code="source_not_found",
            )
        return ResolvedSource(workdir=path.resolve(), kind=SourceKind.LOCAL)

    if source.git is None:
        raise ConfigError("either local or git source must be provided")
    return clone_git_source(source.git, runner, settings)


@contextmanager
def checkout_source(
    source: SourceSchema,
    runner: CommandRunner | None = None,
    settings: Settings | None = None,
) -> Iterator[ResolvedSource]:
    """Resolve a source and always clean it up afterwards.

    Yields:
        ResolvedSource valid for the duration of the block.
    """
    resolved = resolve_source(source, runner=runner, settings=settings)
    try:
        yield resolved
    finally:
        resolved.cleanup()


__all__ = [
    "CLONE_DIRNAME",
    "STAGING_PREFIX",
    "ResolvedSource",
    "checkout_source",
    "clone_git_source",
    "resolve_source",
]

"""Thin lifecycle adapters over the pipeline.

This module provides two surfaces over one pipeline implementation:
- read_build(): a one-shot, read-only build with no prior state
- apply_resource() / destroy_resource(): a named resource whose state is
  persisted between runs, so unchanged artifacts reuse their prior upload
"""

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from lpkbuild.errors import ResourceNotFoundError
from lpkbuild.pipeline.io import spec_to_dict
from lpkbuild.pipeline.models import BuildState
from lpkbuild.pipeline.schema import PipelineSpec
from lpkbuild.pipeline.service import apply_pipeline, teardown
from lpkbuild.types import PipelineResult, TeardownResult

if TYPE_CHECKING:
    from sqlalchemy.engine.result import ScalarResult

    from lpkbuild.builds.runner import CommandRunner
    from lpkbuild.config import Settings
    from lpkbuild.registry.client import RegistryClient

logger = logging.getLogger(__name__)


def read_build(
    spec: PipelineSpec,
    client: "RegistryClient | None" = None,
    runner: "CommandRunner | None" = None,
    settings: "Settings | None" = None,
) -> PipelineResult:
    """Run the pipeline once without prior state.

    Nothing is persisted. Every publishing run uploads, since there is no
    prior record to reuse.
    """
    return apply_pipeline(
        spec, client=client, prior=None, runner=runner, settings=settings
    )


def get_resource(session: Session, name: str) -> BuildState:
    """Get a resource state by name.

    Args:
        session: SQLAlchemy session.
        name: Resource name.

    Returns:
        BuildState ORM instance.

    Raises:
        ResourceNotFoundError: If no state is stored under the name.
    """
    state = get_resource_or_none(session, name)
    if state is None:
        raise ResourceNotFoundError(name)
    return state


def get_resource_or_none(session: Session, name: str) -> BuildState | None:
    """Get a resource state by name, or None if not found."""
    stmt = select(BuildState).where(BuildState.name == name)
    return session.execute(stmt).scalar_one_or_none()


def list_resources(session: Session) -> Sequence[BuildState]:
    """List all resource states ordered by name."""
    stmt = select(BuildState).order_by(BuildState.name)
    result: ScalarResult[BuildState] = session.execute(stmt).scalars()
    return result.all()


def apply_resource(
    session: Session,
    name: str,
    spec: PipelineSpec,
    client: "RegistryClient | None" = None,
    runner: "CommandRunner | None" = None,
    settings: "Settings | None" = None,
) -> tuple[BuildState, PipelineResult, bool]:
    """Create or update a named resource.

    The stored upload record (if any) is handed to the pipeline as prior
    state. State is written only after the pipeline succeeds.

    Args:
        session: SQLAlchemy session.
        name: Resource name.
        spec: Pipeline spec.
        client: Registry client (required when publishing).
        runner: Command runner.
        settings: Application settings.

    Returns:
        Tuple of (state, result, created).
    """
    existing = get_resource_or_none(session, name)
    prior = existing.to_upload_record() if existing is not None else None

    result = apply_pipeline(
        spec, client=client, prior=prior, runner=runner, settings=settings
    )

    created = existing is None
    state = existing if existing is not None else BuildState(name=name)
    state.apply_result(result)
    state.spec_snapshot = spec_to_dict(spec)
    if created:
        session.add(state)
    session.flush()

    logger.info(
        "%s resource %s (%s)",
        "Created" if created else "Updated",
        name,
        result.resource_id,
    )
    return state, result, created


def destroy_resource(
    session: Session,
    name: str,
    client: "RegistryClient | None" = None,
) -> TeardownResult:
    """Tear down a named resource and forget its state.

    The state row is removed only when every teardown step succeeded, so a
    failed teardown can be retried.

    Raises:
        ResourceNotFoundError: If no state is stored under the name.
    """
    state = get_resource(session, name)
    outcome = teardown(state.to_result(), client)
    if outcome.success:
        session.delete(state)
        session.flush()
        logger.info("Destroyed resource %s", name)
    else:
        logger.warning("Teardown of %s incomplete; state kept", name)
    return outcome


__all__ = [
    "apply_resource",
    "destroy_resource",
    "get_resource",
    "get_resource_or_none",
    "list_resources",
    "read_build",
]

"""Tests for pipeline/adapters.py and pipeline/models.py.

Uses an in-memory SQLite database for resource state.
"""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import RecordingRunner, lpk_writer
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from lpkbuild.db import Base
from lpkbuild.errors import BuildCommandError, ResourceNotFoundError
from lpkbuild.pipeline.adapters import (
    apply_resource,
    destroy_resource,
    get_resource,
    get_resource_or_none,
    list_resources,
    read_build,
)
from lpkbuild.pipeline.models import BuildState
from lpkbuild.pipeline.schema import PipelineSpec
from lpkbuild.types import PublishAction, UploadRecord


@pytest.fixture
def engine():
    """Create an in-memory SQLite engine for testing."""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session(engine):
    """Create a session for testing."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.user = "uid-1"
    client.upload_lpk.return_value = UploadRecord(
        upload_id="up-1", download_url="https://dl/up-1"
    )
    return client


def spec_for(path: Path, **blocks) -> PipelineSpec:
    data = {"source": {"local": {"path": str(path)}}}
    data.update(blocks)
    return PipelineSpec.model_validate(data)


class TestReadBuild:
    """Tests for the one-shot data accessor."""

    def test_no_state_always_uploads(self, source_dir, settings, client) -> None:
        runner = RecordingRunner(lpk_writer())

        read_build(spec_for(source_dir), client=client, runner=runner, settings=settings)
        read_build(spec_for(source_dir), client=client, runner=runner, settings=settings)

        assert client.upload_lpk.call_count == 2
        assert len(runner.build_calls) == 1


class TestApplyResource:
    """Tests for apply_resource."""

    def test_create_persists_state(self, session, source_dir, settings, client) -> None:
        runner = RecordingRunner(lpk_writer(b"v1"))
        spec = spec_for(source_dir)

        state, result, created = apply_resource(
            session, "web", spec, client=client, runner=runner, settings=settings
        )
        session.commit()

        assert created is True
        stored = get_resource(session, "web")
        assert stored.id == state.id
        assert stored.resource_id == result.resource_id
        assert stored.sha256 == hashlib.sha256(b"v1").hexdigest()
        assert stored.upload_id == "up-1"
        assert stored.publish_action == PublishAction.UPLOADED.value
        assert stored.spec_snapshot == {"source": {"local": {"path": str(source_dir)}}}
        assert stored.to_upload_record() == UploadRecord(
            upload_id="up-1",
            download_url="https://dl/up-1",
            sha256=hashlib.sha256(b"v1").hexdigest(),
            version="1.0.0",
        )

    def test_update_reuses_prior_upload(
        self, session, source_dir, settings, client
    ) -> None:
        runner = RecordingRunner(lpk_writer(b"v1"))
        spec = spec_for(source_dir)

        apply_resource(session, "web", spec, client=client, runner=runner, settings=settings)
        session.commit()
        state, result, created = apply_resource(
            session, "web", spec, client=client, runner=runner, settings=settings
        )
        session.commit()

        assert created is False
        assert client.upload_lpk.call_count == 1
        assert result.publish_action is PublishAction.REUSED
        assert result.upload_id == "up-1"
        assert state.publish_action == PublishAction.REUSED.value
        assert len(list_resources(session)) == 1

    def test_update_with_new_content_uploads(
        self, session, source_dir, settings, client
    ) -> None:
        apply_resource(
            session,
            "web",
            spec_for(source_dir),
            client=client,
            runner=RecordingRunner(lpk_writer(b"v1")),
            settings=settings,
        )
        session.commit()
        # Drop the cached artifact so the next build produces new bytes
        for lpk in source_dir.glob("*.lpk"):
            lpk.unlink()
        client.upload_lpk.return_value = UploadRecord(
            upload_id="up-2", download_url="https://dl/up-2"
        )

        state, _, _ = apply_resource(
            session,
            "web",
            spec_for(source_dir),
            client=client,
            runner=RecordingRunner(lpk_writer(b"v2")),
            settings=settings,
        )

        assert client.upload_lpk.call_count == 2
        assert state.upload_id == "up-2"
        assert state.sha256 == hashlib.sha256(b"v2").hexdigest()

    def test_failure_leaves_no_state(self, session, source_dir, settings) -> None:
        runner = RecordingRunner(lambda args, cwd, env: (1, "", "boom"))

        with pytest.raises(BuildCommandError):
            apply_resource(
                session,
                "web",
                spec_for(source_dir, publish={"enabled": False}),
                runner=runner,
                settings=settings,
            )

        assert get_resource_or_none(session, "web") is None


class TestDestroyResource:
    """Tests for destroy_resource."""

    def test_destroy_removes_everything(
        self, session, source_dir, settings, client
    ) -> None:
        _, result, _ = apply_resource(
            session,
            "web",
            spec_for(source_dir),
            client=client,
            runner=RecordingRunner(lpk_writer()),
            settings=settings,
        )
        session.commit()

        outcome = destroy_resource(session, "web", client=client)
        session.commit()

        assert outcome.success
        client.delete_lpk.assert_called_once_with("up-1")
        assert not result.artifact_path.exists()
        assert get_resource_or_none(session, "web") is None

    def test_failed_teardown_keeps_state(
        self, session, source_dir, settings, client
    ) -> None:
        apply_resource(
            session,
            "web",
            spec_for(source_dir),
            client=client,
            runner=RecordingRunner(lpk_writer()),
            settings=settings,
        )
        session.commit()
        client.delete_lpk.side_effect = RuntimeError("registry down")

        outcome = destroy_resource(session, "web", client=client)

        assert not outcome.success
        assert get_resource_or_none(session, "web") is not None

    def test_unknown_resource(self, session) -> None:
        with pytest.raises(ResourceNotFoundError):
            destroy_resource(session, "missing")


class TestBuildStateModel:
    """Tests for BuildState conversions."""

    def test_round_trip_result(self, session, source_dir, settings) -> None:
        _, result, _ = apply_resource(
            session,
            "web",
            spec_for(source_dir, publish={"enabled": False}),
            runner=RecordingRunner(lpk_writer()),
            settings=settings,
        )
        session.commit()

        state = get_resource(session, "web")
        restored = state.to_result()

        assert restored.artifact_path == result.artifact_path
        assert restored.resource_id == result.resource_id
        assert restored.publish_action is PublishAction.DISABLED
        assert state.to_upload_record() is None
        assert state.to_dict()["name"] == "web"

    def test_repr(self) -> None:
        state = BuildState(name="web", resource_id="a1-1.0.0-h")
        assert "web" in repr(state)

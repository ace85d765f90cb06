"""Tests for pipeline/service.py module.

End-to-end pipeline runs over local and (faked) git sources, publish
reuse decisions and best-effort teardown.
"""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import RecordingRunner, lpk_writer, write_manifest

from lpkbuild.errors import (
    BuildCommandError,
    ConfigError,
    DeleteError,
    MissingVariableError,
    RegistryNotFoundError,
    UploadError,
)
from lpkbuild.pipeline.schema import PipelineSpec
from lpkbuild.pipeline.service import apply_pipeline, compute_resource_id, teardown
from lpkbuild.types import ArtifactMetadata, PipelineResult, PublishAction, UploadRecord


def local_spec(path: Path, **blocks) -> PipelineSpec:
    data = {"source": {"local": {"path": str(path)}}}
    data.update(blocks)
    return PipelineSpec.model_validate(data)


def git_spec(url: str = "https://example.com/app.git", **blocks) -> PipelineSpec:
    data = {"source": {"git": {"url": url}}}
    data.update(blocks)
    return PipelineSpec.model_validate(data)


def mock_client(upload: UploadRecord | None = None) -> MagicMock:
    client = MagicMock()
    client.user = "uid-1"
    client.upload_lpk.return_value = upload or UploadRecord(
        upload_id="up-1", download_url="https://dl.example.com/up-1"
    )
    return client


class TestComputeResourceId:
    """Tests for compute_resource_id."""

    def test_layout(self) -> None:
        meta = ArtifactMetadata(app_id="a1", version="1.0.0", sha256="abc", name="n")
        assert compute_resource_id(meta) == "a1-1.0.0-abc"


class TestApplyPipelineLocal:
    """Pipeline runs against a local source tree."""

    def test_end_to_end_publish_disabled(self, source_dir: Path, settings) -> None:
        """Manifest app/1.0.0/a1 builds to its content-addressed name."""
        raw = (source_dir / "lzc-manifest.yml").read_bytes()
        runner = RecordingRunner(lpk_writer(b"artifact-bytes"))
        spec = local_spec(source_dir, publish={"enabled": False})

        result = apply_pipeline(spec, runner=runner, settings=settings)

        manifest_hash = hashlib.sha256(raw).hexdigest()
        content_hash = hashlib.sha256(b"artifact-bytes").hexdigest()
        assert result.artifact_path == source_dir.resolve() / (
            f"app-1.0.0-{manifest_hash}.lpk"
        )
        assert result.artifact_path.exists()
        assert result.app_id == "a1"
        assert result.version == "1.0.0"
        assert result.sha256 == content_hash
        assert result.resource_id == f"a1-1.0.0-{content_hash}"
        assert result.download_url is None
        assert result.upload_id is None
        assert result.publish_action is PublishAction.DISABLED

    def test_second_run_is_cache_hit(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())
        spec = local_spec(source_dir, publish={"enabled": False})

        first = apply_pipeline(spec, runner=runner, settings=settings)
        second = apply_pipeline(spec, runner=runner, settings=settings)

        assert len(runner.build_calls) == 1
        assert second.cache_hit is True
        assert second.artifact_path == first.artifact_path
        assert second.sha256 == first.sha256

    def test_renders_templates_before_build(self, source_dir: Path, settings) -> None:
        (source_dir / "config.yml.j2").write_text("domain: {{.DOMAIN}}\n")
        seen: dict[str, str] = {}

        def handler(args, cwd, env):
            seen["config"] = (cwd / "config.yml").read_text()
            (cwd / "out.lpk").write_bytes(b"x")

        spec = local_spec(
            source_dir,
            publish={"enabled": False},
            env={"template_extension": "j2", "variables": {"DOMAIN": "example.com"}},
        )

        apply_pipeline(spec, runner=RecordingRunner(handler), settings=settings)

        assert seen["config"] == "domain: example.com\n"

    def test_missing_variable_aborts_before_build(
        self, source_dir: Path, settings
    ) -> None:
        (source_dir / "config.yml.tmpl").write_text("{{.MISSING}}")
        runner = RecordingRunner(lpk_writer())
        spec = local_spec(source_dir, publish={"enabled": False})

        with pytest.raises(MissingVariableError) as exc_info:
            apply_pipeline(spec, runner=runner, settings=settings)

        assert exc_info.value.key == "MISSING"
        assert runner.calls == []

    def test_build_failure_propagates(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lambda args, cwd, env: (1, "", "boom"))
        spec = local_spec(source_dir, publish={"enabled": False})

        with pytest.raises(BuildCommandError):
            apply_pipeline(spec, runner=runner, settings=settings)

    def test_publish_override_in_resource_id(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())
        spec = local_spec(source_dir, publish={"enabled": False, "version": "2.0.0"})

        result = apply_pipeline(spec, runner=runner, settings=settings)

        assert result.version == "2.0.0"
        assert result.resource_id.startswith("a1-2.0.0-")


class TestValidationBeforeIO:
    """Invalid descriptors fail before anything touches the filesystem."""

    def test_both_sources(self, source_dir: Path, settings) -> None:
        spec = PipelineSpec.model_validate(
            {
                "source": {
                    "local": {"path": str(source_dir)},
                    "git": {"url": "https://example.com/app.git"},
                }
            }
        )
        runner = RecordingRunner(lpk_writer())

        with pytest.raises(ConfigError):
            apply_pipeline(spec, runner=runner, settings=settings)

        assert runner.calls == []
        assert list(source_dir.glob("*.lpk")) == []

    def test_neither_source(self, settings) -> None:
        spec = PipelineSpec.model_validate({"source": {}})
        runner = RecordingRunner()

        with pytest.raises(ConfigError):
            apply_pipeline(spec, runner=runner, settings=settings)

        assert runner.calls == []

    def test_publish_without_client(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())

        with pytest.raises(ConfigError):
            apply_pipeline(local_spec(source_dir), runner=runner, settings=settings)

        assert runner.calls == []


class TestPublishReuse:
    """Publish decisions driven by the prior upload record."""

    def test_first_publish_uploads(self, source_dir: Path, settings) -> None:
        client = mock_client()
        runner = RecordingRunner(lpk_writer(b"v1"))

        result = apply_pipeline(
            local_spec(source_dir), client=client, runner=runner, settings=settings
        )

        client.upload_lpk.assert_called_once()
        args = client.upload_lpk.call_args.args
        assert args[0] == "uid-1"
        assert args[2] == "1.0.0"
        assert args[3] == result.artifact_path
        assert result.upload_id == "up-1"
        assert result.download_url == "https://dl.example.com/up-1"
        assert result.publish_action is PublishAction.UPLOADED

    def test_unchanged_hash_reuses_prior(self, source_dir: Path, settings) -> None:
        """Same content hash H: no upload, prior URL and ID returned."""
        runner = RecordingRunner(lpk_writer(b"v1"))
        h = hashlib.sha256(b"v1").hexdigest()
        prior = UploadRecord(
            upload_id="up-old", download_url="https://dl/old", sha256=h, version="1.0.0"
        )
        client = mock_client()

        result = apply_pipeline(
            local_spec(source_dir),
            client=client,
            prior=prior,
            runner=runner,
            settings=settings,
        )

        client.upload_lpk.assert_not_called()
        assert result.upload_id == "up-old"
        assert result.download_url == "https://dl/old"
        assert result.publish_action is PublishAction.REUSED

    def test_changed_hash_uploads(self, source_dir: Path, settings) -> None:
        """Different content hash H': exactly one upload."""
        runner = RecordingRunner(lpk_writer(b"v2"))
        prior = UploadRecord(
            upload_id="up-old", download_url="https://dl/old", sha256="H-old"
        )
        client = mock_client(
            UploadRecord(upload_id="up-new", download_url="https://dl/new")
        )

        result = apply_pipeline(
            local_spec(source_dir),
            client=client,
            prior=prior,
            runner=runner,
            settings=settings,
        )

        assert client.upload_lpk.call_count == 1
        assert result.upload_id == "up-new"
        assert result.sha256 == hashlib.sha256(b"v2").hexdigest()

    def test_registry_values_override(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())
        client = mock_client(
            UploadRecord(
                upload_id="up-1",
                download_url="https://dl/1",
                sha256="registry-sha",
                version="1.0.0+r1",
            )
        )

        result = apply_pipeline(
            local_spec(source_dir), client=client, runner=runner, settings=settings
        )

        assert result.sha256 == "registry-sha"
        assert result.version == "1.0.0+r1"

    def test_upload_error_propagates(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())
        client = mock_client()
        client.upload_lpk.side_effect = UploadError("upload error: boom")

        with pytest.raises(UploadError):
            apply_pipeline(
                local_spec(source_dir), client=client, runner=runner, settings=settings
            )

    def test_publish_uses_override_name(self, source_dir: Path, settings) -> None:
        runner = RecordingRunner(lpk_writer())
        client = mock_client()

        apply_pipeline(
            local_spec(source_dir, publish={"name": "my-app"}),
            client=client,
            runner=runner,
            settings=settings,
        )

        assert client.upload_lpk.call_args.args[1] == "my-app"


class TestApplyPipelineGit:
    """Pipeline runs against a faked git source."""

    def _runner(self) -> RecordingRunner:
        def handler(args, cwd, env):
            if args[:2] == ["git", "clone"]:
                repo = cwd / args[-1]
                repo.mkdir()
                write_manifest(repo)
            elif args[:2] == ["sh", "-c"]:
                (cwd / "out.lpk").write_bytes(b"from-git")

        return RecordingRunner(handler)

    def test_artifact_retained_and_staging_removed(self, settings) -> None:
        runner = self._runner()

        result = apply_pipeline(
            git_spec(publish={"enabled": False}), runner=runner, settings=settings
        )

        assert result.artifact_path.parent == settings.artifacts_dir
        assert result.artifact_path.read_bytes() == b"from-git"
        assert list(settings.tmp_dir.iterdir()) == []

    def test_staging_removed_on_build_failure(self, settings) -> None:
        def handler(args, cwd, env):
            if args[:2] == ["git", "clone"]:
                repo = cwd / args[-1]
                repo.mkdir()
                write_manifest(repo)
            elif args[:2] == ["sh", "-c"]:
                return 1, "", "fail"

        with pytest.raises(BuildCommandError):
            apply_pipeline(
                git_spec(publish={"enabled": False}),
                runner=RecordingRunner(handler),
                settings=settings,
            )

        assert list(settings.tmp_dir.iterdir()) == []


class TestTeardown:
    """Tests for teardown."""

    def _prior(self, artifact: Path, upload_id: str | None = "up-1") -> PipelineResult:
        return PipelineResult(
            artifact_path=artifact,
            app_id="a1",
            version="1.0.0",
            sha256="h",
            resource_id="a1-1.0.0-h",
            download_url="https://dl/1" if upload_id else None,
            upload_id=upload_id,
        )

    def test_deletes_both(self, tmp_path: Path) -> None:
        artifact = tmp_path / "app.lpk"
        artifact.write_bytes(b"x")
        client = mock_client()

        outcome = teardown(self._prior(artifact), client)

        client.delete_lpk.assert_called_once_with("up-1")
        assert outcome.success
        assert outcome.remote_deleted and outcome.local_removed
        assert not artifact.exists()

    def test_tolerates_already_gone(self, tmp_path: Path) -> None:
        client = mock_client()
        client.delete_lpk.side_effect = RegistryNotFoundError("gone", status_code=404)

        outcome = teardown(self._prior(tmp_path / "missing.lpk"), client)

        assert outcome.success
        assert outcome.remote_deleted
        assert outcome.local_removed

    def test_remote_failure_still_removes_local(self, tmp_path: Path) -> None:
        artifact = tmp_path / "app.lpk"
        artifact.write_bytes(b"x")
        client = mock_client()
        client.delete_lpk.side_effect = DeleteError("delete upload up-1: 500")

        outcome = teardown(self._prior(artifact), client)

        assert not outcome.success
        assert not outcome.remote_deleted
        assert outcome.local_removed
        assert not artifact.exists()
        assert "Delete upload failed" in outcome.errors[0]

    def test_unpublished_needs_no_client(self, tmp_path: Path) -> None:
        artifact = tmp_path / "app.lpk"
        artifact.write_bytes(b"x")

        outcome = teardown(self._prior(artifact, upload_id=None), None)

        assert outcome.success
        assert not artifact.exists()

    def test_published_without_client_reports(self, tmp_path: Path) -> None:
        artifact = tmp_path / "app.lpk"
        artifact.write_bytes(b"x")

        outcome = teardown(self._prior(artifact), None)

        assert not outcome.success
        assert outcome.local_removed

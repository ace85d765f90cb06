"""Tests for sources/resolver.py module.

Git operations are simulated with a recording runner, so no network or
git binary is needed.
"""

from pathlib import Path

import pytest
from conftest import RecordingRunner, write_manifest

from lpkbuild.errors import ConfigError, SourceAcquisitionError
from lpkbuild.pipeline.schema import GitSourceSchema, LocalSourceSchema, SourceSchema
from lpkbuild.sources.resolver import (
    CLONE_DIRNAME,
    STAGING_PREFIX,
    checkout_source,
    resolve_source,
)
from lpkbuild.types import SourceKind


def fake_git(fail_on: str | None = None, with_subdir: str | None = None):
    """Handler that fakes git clone/checkout inside the staging directory."""

    def handler(args, cwd, env):
        action = args[1]
        if action == fail_on:
            return 128, "", f"fatal: {action} failed"
        if action == "clone":
            repo = cwd / args[-1]
            repo.mkdir()
            write_manifest(repo)
            if with_subdir:
                (repo / with_subdir).mkdir()
        return None

    return handler


class TestResolveLocal:
    """Tests for local sources."""

    def test_uses_directory_in_place(self, tmp_path: Path, settings) -> None:
        source = SourceSchema(local=LocalSourceSchema(path=str(tmp_path)))
        runner = RecordingRunner()

        resolved = resolve_source(source, runner=runner, settings=settings)

        assert resolved.workdir == tmp_path.resolve()
        assert resolved.kind is SourceKind.LOCAL
        assert not resolved.is_ephemeral
        resolved.cleanup()
        assert tmp_path.exists()
        assert runner.calls == []

    def test_missing_directory(self, tmp_path: Path, settings) -> None:
        source = SourceSchema(local=LocalSourceSchema(path=str(tmp_path / "nope")))

        with pytest.raises(SourceAcquisitionError) as exc_info:
            resolve_source(source, runner=RecordingRunner(), settings=settings)

        assert exc_info.value.code == "source_not_found"

    def test_file_is_not_directory(self, tmp_path: Path, settings) -> None:
        path = tmp_path / "file.txt"
        path.write_text("x")
        source = SourceSchema(local=LocalSourceSchema(path=str(path)))

        with pytest.raises(SourceAcquisitionError):
            resolve_source(source, runner=RecordingRunner(), settings=settings)


class TestValidateBeforeIO:
    """Descriptor validation must happen before any command runs."""

    def test_both_set(self, tmp_path: Path, settings) -> None:
        source = SourceSchema(
            local=LocalSourceSchema(path=str(tmp_path)),
            git=GitSourceSchema(url="https://example.com/app.git"),
        )
        runner = RecordingRunner()

        with pytest.raises(ConfigError):
            resolve_source(source, runner=runner, settings=settings)

        assert runner.calls == []
        assert not settings.tmp_dir.exists()

    def test_neither_set(self, settings) -> None:
        runner = RecordingRunner()

        with pytest.raises(ConfigError):
            resolve_source(SourceSchema(), runner=runner, settings=settings)

        assert runner.calls == []


class TestResolveGit:
    """Tests for git sources."""

    def test_clone_default_branch(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(git=GitSourceSchema(url="https://example.com/app.git"))

        resolved = resolve_source(source, runner=runner, settings=settings)

        try:
            assert resolved.kind is SourceKind.GIT
            assert resolved.is_ephemeral
            assert resolved.workdir.name == CLONE_DIRNAME
            assert resolved.staging_dir is not None
            assert resolved.staging_dir.name.startswith(STAGING_PREFIX)
            assert resolved.staging_dir.parent == settings.tmp_dir
            assert runner.git_calls[0]["args"] == [
                "git",
                "clone",
                "--",
                "https://example.com/app.git",
                CLONE_DIRNAME,
            ]
            assert len(runner.git_calls) == 1
        finally:
            resolved.cleanup()

        assert not resolved.staging_dir.exists()

    def test_checkout_ref(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", ref="v1.2.0")
        )

        with checkout_source(source, runner=runner, settings=settings) as resolved:
            checkout = runner.git_calls[1]
            assert checkout["args"] == ["git", "checkout", "v1.2.0"]
            assert checkout["cwd"] == resolved.workdir

    def test_subpath(self, settings) -> None:
        runner = RecordingRunner(fake_git(with_subdir="packaging"))
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", subpath="packaging")
        )

        with checkout_source(source, runner=runner, settings=settings) as resolved:
            assert resolved.workdir.name == "packaging"
            assert resolved.workdir.is_dir()

    def test_subpath_outside_checkout(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", subpath="../..")
        )

        with pytest.raises(SourceAcquisitionError) as exc_info:
            resolve_source(source, runner=runner, settings=settings)

        assert exc_info.value.code == "invalid_subpath"
        assert list(settings.tmp_dir.iterdir()) == []

    def test_missing_subpath(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", subpath="missing")
        )

        with pytest.raises(SourceAcquisitionError):
            resolve_source(source, runner=runner, settings=settings)

        assert list(settings.tmp_dir.iterdir()) == []

    def test_clone_failure_cleans_staging(self, settings) -> None:
        runner = RecordingRunner(fake_git(fail_on="clone"))
        source = SourceSchema(git=GitSourceSchema(url="https://example.com/app.git"))

        with pytest.raises(SourceAcquisitionError) as exc_info:
            resolve_source(source, runner=runner, settings=settings)

        assert exc_info.value.code == "git_clone_failed"
        assert "fatal: clone failed" in str(exc_info.value)
        assert list(settings.tmp_dir.iterdir()) == []

    def test_checkout_failure_cleans_staging(self, settings) -> None:
        runner = RecordingRunner(fake_git(fail_on="checkout"))
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", ref="nope")
        )

        with pytest.raises(SourceAcquisitionError) as exc_info:
            resolve_source(source, runner=runner, settings=settings)

        assert exc_info.value.code == "git_checkout_failed"
        assert list(settings.tmp_dir.iterdir()) == []

    def test_checkout_source_cleans_on_error(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(git=GitSourceSchema(url="https://example.com/app.git"))

        with pytest.raises(RuntimeError):
            with checkout_source(source, runner=runner, settings=settings):
                raise RuntimeError("boom")

        assert list(settings.tmp_dir.iterdir()) == []

    def test_url_cannot_become_an_option(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(git=GitSourceSchema(url="--upload-pack=touch /tmp/x"))

        with checkout_source(source, runner=runner, settings=settings):
            clone_args = runner.git_calls[0]["args"]

        assert clone_args.index("--") < clone_args.index("--upload-pack=touch /tmp/x")

    def test_option_like_ref_rejected(self, settings) -> None:
        runner = RecordingRunner(fake_git())
        source = SourceSchema(
            git=GitSourceSchema(url="https://example.com/app.git", ref="--orphan=x")
        )

        with pytest.raises(ConfigError, match="must not start with '-'"):
            resolve_source(source, runner=runner, settings=settings)

        assert runner.calls == []

"""Shared test fixtures.

RecordingRunner stands in for SubprocessRunner: it records every command
and lets tests script side effects (writing an artifact, failing a clone)
without spawning processes.
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from lpkbuild.builds.runner import CommandResult
from lpkbuild.config import Settings

# (args, cwd, env) -> (returncode, stdout, stderr) or None for success
Handler = Callable[[list[str], Path | None, Mapping[str, str] | None], Any]


class RecordingRunner:
    """CommandRunner fake that records calls and runs scripted handlers."""

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler = handler
        self.calls: list[dict[str, Any]] = []

    def run(
        self,
        args: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        cmd = list(args)
        self.calls.append({"args": cmd, "cwd": cwd, "env": env, "timeout": timeout})
        returncode, stdout, stderr = 0, "", ""
        if self.handler is not None:
            outcome = self.handler(cmd, cwd, env)
            if outcome is not None:
                returncode, stdout, stderr = outcome
        now = datetime.now(timezone.utc)
        return CommandResult(
            args=cmd,
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            started_at=now,
            finished_at=now,
        )

    @property
    def build_calls(self) -> list[dict[str, Any]]:
        """Calls that ran the build command through the shell."""
        return [c for c in self.calls if c["args"][:2] == ["sh", "-c"]]

    @property
    def git_calls(self) -> list[dict[str, Any]]:
        """Calls that ran git."""
        return [c for c in self.calls if c["args"][0] == "git"]


def lpk_writer(content: bytes = b"LPK-CONTENT", filename: str = "out.lpk") -> Handler:
    """Handler that simulates a build command writing one artifact."""

    def handler(
        args: list[str], cwd: Path | None, env: Mapping[str, str] | None
    ) -> None:
        if args[:2] == ["sh", "-c"] and cwd is not None:
            (cwd / filename).write_bytes(content)

    return handler


def write_manifest(
    directory: Path,
    name: str = "app",
    version: str = "1.0.0",
    appid: str | None = "a1",
) -> bytes:
    """Write an lzc-manifest.yml and return its raw bytes."""
    lines = [f"name: {name}", f"version: {version}"]
    if appid is not None:
        lines.append(f"appid: {appid}")
    raw = ("\n".join(lines) + "\n").encode()
    (directory / "lzc-manifest.yml").write_bytes(raw)
    return raw


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under tmp_path."""
    return Settings(
        _env_file=None,
        db_url="sqlite:///:memory:",
        artifacts_dir=tmp_path / "retained",
        log_dir=tmp_path / "logs",
        tmp_dir=tmp_path / "staging",
        registry_endpoint=None,
        registry_user=None,
    )


@pytest.fixture
def source_dir(tmp_path: Path) -> Path:
    """A local source tree with a manifest."""
    src = tmp_path / "src"
    src.mkdir()
    write_manifest(src)
    return src

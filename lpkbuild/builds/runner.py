"""Command runner for external tools.

This module handles:
- The CommandRunner interface used for every spawned process (git, build)
- Executing commands with subprocess and capturing their output
- Composing the build command and its environment
- Writing build output to log files

Pipeline logic only talks to a CommandRunner, so tests can substitute a
recording fake instead of spawning processes.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from lpkbuild.errors import CommandExecutionError

logger = logging.getLogger(__name__)

REDACTED_VALUE = "***"

_SENSITIVE_NAME = re.compile(r"PASS|SECRET|TOKEN|KEY|CREDENTIAL", re.IGNORECASE)


@dataclass
class CommandResult:
    """Result of a command execution.

    Attributes:
        args: The command that was executed.
        returncode: Process exit code.
        stdout: Captured standard output.
        stderr: Captured standard error.
        started_at: Start time.
        finished_at: Finish time.
    """

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True when the command exited with status zero."""
        return self.returncode == 0

    @property
    def command(self) -> str:
        """Shell-quoted form of the command."""
        return shlex.join(self.args)


class CommandRunner(Protocol):
    """Narrow interface for running external commands."""

    def run(
        self,
        args: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command to completion and return its result."""
        ...


class SubprocessRunner:
    """CommandRunner backed by subprocess.run."""

    def run(
        self,
        args: Sequence[str],
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command, capturing stdout and stderr.

        Args:
            args: Command and arguments.
            cwd: Working directory.
            env: Full process environment (None = inherit).
            timeout: Timeout in seconds (None = no timeout).

        Returns:
            CommandResult with exit code and captured output.

        Raises:
            CommandExecutionError: If the command cannot start or times out.
        """
        cmd = list(args)
        cmd_str = shlex.join(cmd)
        logger.debug("Running: %s (cwd=%s)", cmd_str, cwd)

        started_at = datetime.now(timezone.utc)
        try:
            completed = subprocess.run(
                cmd,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            message = f"Command timed out after {timeout} seconds: {cmd_str}"
            logger.error(message)
            raise CommandExecutionError(message, code="timeout") from e
        except OSError as e:
            message = f"Failed to execute {cmd_str}: {e}"
            logger.error(message)
            raise CommandExecutionError(message) from e

        return CommandResult(
            args=cmd,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )


def compose_build_command(command: str) -> list[str]:
    """Wrap a build command string for execution through the shell.

    Args:
        command: Shell command line.

    Returns:
        Command as list of strings suitable for a CommandRunner.
    """
    return ["sh", "-c", command]


def compose_build_env(
    variables: Mapping[str, str] | None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str] | None:
    """Compose the build command environment.

    The inherited environment is overlaid with the supplied variables
    (supplied values win) and returned in sorted-key order.

    Args:
        variables: Template variables to expose to the build.
        base_env: Inherited environment; defaults to os.environ.

    Returns:
        Environment dict, or None when no variables were supplied
        (the command then simply inherits the process environment).
    """
    if not variables:
        return None
    if base_env is None:
        base_env = os.environ

    merged = dict(base_env)
    merged.update(variables)
    return {key: merged[key] for key in sorted(merged)}


def format_env_pairs(env: Mapping[str, str], redact: bool = True) -> list[str]:
    """Serialize an environment as sorted KEY=VALUE pairs.

    With ``redact``, values of credential-like names (password, secret,
    token, key) are replaced by a placeholder.
    """
    pairs = []
    for key in sorted(env):
        value = env[key]
        if redact and _SENSITIVE_NAME.search(key):
            value = REDACTED_VALUE
        pairs.append(f"{key}={value}")
    return pairs


def write_build_log(
    log_path: Path,
    result: CommandResult,
    cwd: Path,
    variables: Mapping[str, str] | None = None,
) -> Path:
    """Write a build command's output to a log file.

    Args:
        log_path: Destination log file.
        result: Completed command result.
        cwd: Working directory the command ran in.
        variables: Variables overlaid onto the environment; logged as
            KEY=VALUE pairs with credential-like values masked.

    Returns:
        Path to the written log file.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    started_at = result.started_at or datetime.now(timezone.utc)
    finished_at = result.finished_at or started_at

    with log_path.open("w", encoding="utf-8") as log_file:
        log_file.write(f"# Command: {result.command}\n")
        log_file.write(f"# Started: {started_at.isoformat()}\n")
        log_file.write(f"# CWD: {cwd}\n")
        for pair in format_env_pairs(variables or {}):
            log_file.write(f"# Env: {pair}\n")
        log_file.write("# " + "=" * 70 + "\n\n")
        log_file.write(result.stdout)
        if result.stderr:
            log_file.write("\n# --- stderr ---\n")
            log_file.write(result.stderr)
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {result.returncode}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return log_path


__all__ = [
    "CommandResult",
    "CommandRunner",
    "REDACTED_VALUE",
    "SubprocessRunner",
    "compose_build_command",
    "compose_build_env",
    "format_env_pairs",
    "write_build_log",
]

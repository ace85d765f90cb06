"""Error definitions for lpkbuild.

Every pipeline failure is raised as an LPKBuildError subclass carrying a
stable string code that callers (CLI, adapters) can use for programmatic
handling. None of these are retried internally.
"""

from __future__ import annotations

from pathlib import Path

# Stable error codes
CONFIG_ERROR = "config_error"
SOURCE_ERROR = "source_error"
MANIFEST_ERROR = "manifest_error"
TEMPLATE_ERROR = "template_error"
MISSING_VARIABLE = "missing_variable"
BUILD_FAILED = "build_failed"
NO_ARTIFACT = "no_artifact"
ARTIFACT_ERROR = "artifact_error"
EXECUTION_ERROR = "execution_error"
REGISTRY_ERROR = "registry_error"
REGISTRY_NOT_FOUND = "not_found"
UPLOAD_ERROR = "upload_error"
DELETE_ERROR = "delete_error"
RESOURCE_NOT_FOUND = "resource_not_found"


class LPKBuildError(Exception):
    """Base error for all lpkbuild operations."""

    default_code = "lpkbuild_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class ConfigError(LPKBuildError):
    """Raised for malformed or contradictory configuration."""

    default_code = CONFIG_ERROR


class SourceAcquisitionError(LPKBuildError):
    """Raised when a source tree cannot be acquired (clone, checkout, path)."""

    default_code = SOURCE_ERROR


class ManifestError(LPKBuildError):
    """Raised when the build manifest is missing, malformed or incomplete."""

    default_code = MANIFEST_ERROR


class TemplateError(LPKBuildError):
    """Raised when a template cannot be parsed, rendered or written."""

    default_code = TEMPLATE_ERROR

    def __init__(
        self,
        message: str,
        code: str | None = None,
        path: Path | None = None,
    ) -> None:
        super().__init__(message, code)
        self.path = path


class MissingVariableError(TemplateError):
    """Raised when a template references a variable that was not supplied."""

    default_code = MISSING_VARIABLE

    def __init__(self, key: str, path: Path | None = None) -> None:
        location = f"render template {path}: " if path is not None else ""
        super().__init__(
            f"{location}environment variable {key} not provided",
            path=path,
        )
        self.key = key


class CommandExecutionError(LPKBuildError):
    """Raised when an external command cannot be started or times out."""

    default_code = EXECUTION_ERROR


class BuildCommandError(LPKBuildError):
    """Raised when the external build command exits non-zero."""

    default_code = BUILD_FAILED

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stderr: str = "",
        log_path: Path | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)
        self.exit_code = exit_code
        self.stderr = stderr
        self.log_path = log_path


class NoArtifactProducedError(LPKBuildError):
    """Raised when the build command produced no matching artifact."""

    default_code = NO_ARTIFACT


class ArtifactError(LPKBuildError):
    """Raised when a produced artifact cannot be moved or copied into place."""

    default_code = ARTIFACT_ERROR


class RegistryError(LPKBuildError):
    """Raised for registry API failures."""

    default_code = REGISTRY_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code)
        self.status_code = status_code


class RegistryNotFoundError(RegistryError):
    """Raised when the registry reports that a resource does not exist."""

    default_code = REGISTRY_NOT_FOUND


class UploadError(RegistryError):
    """Raised when uploading an artifact to the registry fails."""

    default_code = UPLOAD_ERROR


class DeleteError(RegistryError):
    """Raised when deleting an uploaded artifact fails."""

    default_code = DELETE_ERROR


class ResourceNotFoundError(LPKBuildError):
    """Raised when a named build resource has no persisted state."""

    default_code = RESOURCE_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Build resource not found: {name}")
        self.name = name


__all__ = [
    "ARTIFACT_ERROR",
    "BUILD_FAILED",
    "CONFIG_ERROR",
    "DELETE_ERROR",
    "EXECUTION_ERROR",
    "MANIFEST_ERROR",
    "MISSING_VARIABLE",
    "NO_ARTIFACT",
    "REGISTRY_ERROR",
    "REGISTRY_NOT_FOUND",
    "RESOURCE_NOT_FOUND",
    "SOURCE_ERROR",
    "TEMPLATE_ERROR",
    "UPLOAD_ERROR",
    "ArtifactError",
    "BuildCommandError",
    "CommandExecutionError",
    "ConfigError",
    "DeleteError",
    "LPKBuildError",
    "ManifestError",
    "MissingVariableError",
    "NoArtifactProducedError",
    "RegistryError",
    "RegistryNotFoundError",
    "ResourceNotFoundError",
    "SourceAcquisitionError",
    "TemplateError",
    "UploadError",
]

"""Pydantic models for pipeline spec validation.

A pipeline spec describes what to build and where it comes from:

    source:
      git:
        url: https://example.com/app.git
        ref: v1.2.0
        subpath: packaging
    build:
      command: npx lzc-cli project build .
    publish:
      enabled: true
      name: my-app
    env:
      template_extension: .j2
      variables:
        DOMAIN: example.com

Only ``source`` is required. Every other block is optional and documents
its defaults below.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lpkbuild.builds.templates import normalize_extension
from lpkbuild.errors import ConfigError
from lpkbuild.types import SourceKind


class LocalSourceSchema(BaseModel):
    """Schema for a local directory source.

    Attributes:
        path: Existing directory on disk.
    """

    model_config = ConfigDict(extra="forbid")

    path: str = Field(description="Path to the source directory")


class GitSourceSchema(BaseModel):
    """Schema for a git repository source.

    Attributes:
        url: Repository URL passed to ``git clone``.
        ref: Branch, tag or commit to check out (default branch if unset).
        subpath: Directory inside the checkout to build from.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="Git repository URL")
    ref: str | None = Field(default=None, description="Ref to check out")
    subpath: str | None = Field(
        default=None, description="Directory inside the checkout"
    )


class SourceSchema(BaseModel):
    """Source descriptor: exactly one of ``local`` or ``git``."""

    model_config = ConfigDict(extra="forbid")

    local: LocalSourceSchema | None = Field(default=None)
    git: GitSourceSchema | None = Field(default=None)

    def validate_choice(self) -> SourceKind:
        """Check that exactly one variant is populated.

        Returns:
            The populated source kind.

        Raises:
            ConfigError: If both or neither variant is set, or the populated
                variant is missing its required value.
        """
        if self.local is not None and self.git is not None:
            raise ConfigError("source.local and source.git are mutually exclusive")
        if self.local is not None:
            if not self.local.path.strip():
                raise ConfigError("local.path must be set")
            return SourceKind.LOCAL
        if self.git is not None:
            if not self.git.url.strip():
                raise ConfigError("git.url must be set")
            return SourceKind.GIT
        raise ConfigError("either source.local or source.git must be provided")


class BuildSchema(BaseModel):
    """Schema for build options.

    Attributes:
        command: Shell command producing a single ``.lpk`` file
            (defaults to the configured build command).
    """

    model_config = ConfigDict(extra="forbid")

    command: str | None = Field(default=None, description="Build command")

    def resolve_command(self, default: str) -> str:
        """Return the configured command, or the default when blank."""
        if self.command and self.command.strip():
            return self.command
        return default


class PublishSchema(BaseModel):
    """Schema for publish options.

    Attributes:
        enabled: Upload the artifact (default: true when unset).
        name: Upload name override (default: artifact base name).
        version: Upload version override (default: manifest version).
    """

    model_config = ConfigDict(extra="forbid")

    enabled: bool | None = Field(default=None)
    name: str | None = Field(default=None)
    version: str | None = Field(default=None)

    @field_validator("enabled", mode="before")
    @classmethod
    def normalize_flag(cls, v: Any) -> Any:
        """Accept YAML flag spellings such as ``False`` or ``no``."""
        if isinstance(v, str):
            return v.strip().lower()
        return v


class EnvSchema(BaseModel):
    """Schema for template and build environment options.

    Attributes:
        variables: Values exposed to templates and the build command.
            Null entries are dropped.
        template_extension: Extension marking template files (default .tmpl).
    """

    model_config = ConfigDict(extra="forbid")

    variables: dict[str, str | None] | None = Field(default=None)
    template_extension: str | None = Field(default=None)

    @field_validator("variables", mode="before")
    @classmethod
    def coerce_values(cls, v: Any) -> Any:
        """Accept JSON numbers and booleans as strings.

        YAML specs are loaded with their scalars as text already, so
        ``VERSION: 1.10`` keeps its trailing zero.
        """
        if not isinstance(v, dict):
            return v
        coerced: dict[Any, Any] = {}
        for key, value in v.items():
            if isinstance(value, bool):
                coerced[key] = str(value).lower()
            elif isinstance(value, int | float):
                coerced[key] = str(value)
            else:
                coerced[key] = value
        return coerced

    def collect_variables(self) -> dict[str, str]:
        """Return the variables with unset entries omitted."""
        if not self.variables:
            return {}
        return {k: v for k, v in self.variables.items() if v is not None}


class PipelineSpec(BaseModel):
    """Schema for a full pipeline spec."""

    model_config = ConfigDict(extra="forbid")

    source: SourceSchema = Field(description="Where the source tree comes from")
    build: BuildSchema | None = Field(default=None)
    publish: PublishSchema | None = Field(default=None)
    env: EnvSchema | None = Field(default=None)

    def collect_variables(self) -> dict[str, str]:
        """Return template/build variables (empty when no env block)."""
        if self.env is None:
            return {}
        return self.env.collect_variables()

    def template_extension(self, default: str | None = None) -> str:
        """Return the normalized template extension."""
        configured = self.env.template_extension if self.env is not None else None
        if configured is None or not configured.strip():
            configured = default
        return normalize_extension(configured)


__all__ = [
    "BuildSchema",
    "EnvSchema",
    "GitSourceSchema",
    "LocalSourceSchema",
    "PipelineSpec",
    "PublishSchema",
    "SourceSchema",
]

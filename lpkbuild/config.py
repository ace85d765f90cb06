"""Configuration settings for lpkbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BUILD_COMMAND = "npx lzc-cli project build ."
DEFAULT_MANIFEST_FILENAME = "lzc-manifest.yml"
DEFAULT_TEMPLATE_EXTENSION = ".tmpl"


def _default_data_dir() -> Path:
    """Return the default data directory."""
    return Path.home() / ".local" / "share" / "lpkbuild"


def _default_artifacts_dir() -> Path:
    """Return the default directory for retained artifacts."""
    return _default_data_dir() / "artifacts"


def _default_log_dir() -> Path:
    """Return the default directory for build logs."""
    return _default_data_dir() / "logs"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = _default_data_dir() / "state.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LPK_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LPK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for resource state",
    )
    artifacts_dir: Path = Field(
        default_factory=_default_artifacts_dir,
        description="Directory where artifacts built from git sources are retained",
    )
    log_dir: Path = Field(
        default_factory=_default_log_dir,
        description="Directory for build command logs",
    )
    tmp_dir: Path | None = Field(
        default=None,
        description="Parent directory for git staging (uses system default if not set)",
    )

    # Registry
    registry_endpoint: str | None = Field(
        default=None,
        description="Base URL of the LPK registry API",
    )
    registry_user: str | None = Field(
        default=None,
        description="Registry UID that owns uploaded artifacts",
    )
    registry_username: str | None = Field(
        default=None,
        description="HTTP basic auth username for the registry",
    )
    registry_password: SecretStr | None = Field(
        default=None,
        description="HTTP basic auth password for the registry",
    )
    verify_user: bool = Field(
        default=True,
        description="Check that registry_user exists before publishing",
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for registry requests in seconds",
    )

    # Build
    build_command: str = Field(
        default=DEFAULT_BUILD_COMMAND,
        description="Default build command when a spec does not set one",
    )
    manifest_filename: str = Field(
        default=DEFAULT_MANIFEST_FILENAME,
        description="Manifest filename inside the source tree",
    )
    template_extension: str = Field(
        default=DEFAULT_TEMPLATE_EXTENSION,
        description="Default template extension when a spec does not set one",
    )
    git_executable: str = Field(
        default="git",
        description="Git executable used to clone sources",
    )

    # Timeouts (in seconds, None = no timeout)
    build_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for the build command",
    )
    git_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for git clone/checkout",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_BUILD_COMMAND",
    "DEFAULT_MANIFEST_FILENAME",
    "DEFAULT_TEMPLATE_EXTENSION",
    "Settings",
    "get_settings",
    "print_settings_json",
]

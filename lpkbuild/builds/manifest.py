"""Build manifest reader.

The manifest is a YAML mapping with ``name``, ``version`` and an optional
``appid`` key. Name and version give the artifact its identity, so they
are read as the literal text written in the file: ``version: 1.10`` stays
``"1.10"`` and ``appid: 0123`` stays ``"0123"``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lpkbuild.errors import ManifestError
from lpkbuild.types import Manifest

# Implicit tags resolved to text instead of Python numbers, booleans or dates
_TEXT_TAGS = frozenset(
    {
        "tag:yaml.org,2002:bool",
        "tag:yaml.org,2002:float",
        "tag:yaml.org,2002:int",
        "tag:yaml.org,2002:timestamp",
    }
)


class TextScalarLoader(yaml.SafeLoader):
    """SafeLoader that keeps plain scalars as their source text.

    Only ``null`` is still resolved implicitly. Explicitly tagged values
    (``!!int 3``) are constructed as usual.
    """


TextScalarLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in _TEXT_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def load_text_yaml(stream: Any) -> Any:
    """Load a YAML document with TextScalarLoader."""
    return yaml.load(stream, Loader=TextScalarLoader)


class ManifestSchema(BaseModel):
    """Schema for the fields of the manifest the pipeline cares about."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(default="", description="Artifact base name")
    version: str = Field(default="", description="Artifact version")
    app_id: str = Field(default="", alias="appid", description="Application ID")

    @field_validator("name", "version", "app_id", mode="before")
    @classmethod
    def null_as_empty(cls, v: Any) -> Any:
        """Treat ``key:`` and ``key: null`` as unset."""
        if v is None:
            return ""
        return v


def parse_manifest(raw: bytes, source: Path | str = "<manifest>") -> Manifest:
    """Parse raw manifest bytes.

    Args:
        raw: Manifest file content.
        source: Path used in error messages.

    Returns:
        Parsed Manifest.

    Raises:
        ManifestError: If the content is malformed or name/version are missing.
    """
    try:
        data = load_text_yaml(raw)
    except yaml.YAMLError as e:
        raise ManifestError(f"read manifest {source}: {e}", code="malformed") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ManifestError(
            f"read manifest {source}: expected a YAML mapping, got {type(data).__name__}",
            code="malformed",
        )

    try:
        schema = ManifestSchema.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"read manifest {source}: {e}", code="malformed") from e

    if not schema.name.strip():
        raise ManifestError("manifest name must be set", code="missing_name")
    if not schema.version.strip():
        raise ManifestError("manifest version must be set", code="missing_version")

    return Manifest(name=schema.name, version=schema.version, app_id=schema.app_id)


def read_manifest_bytes(path: Path) -> bytes:
    """Read the raw manifest file.

    Raises:
        ManifestError: If the file cannot be read.
    """
    try:
        return path.read_bytes()
    except FileNotFoundError as e:
        raise ManifestError(f"manifest not found: {path}", code="not_found") from e
    except OSError as e:
        raise ManifestError(f"read manifest {path}: {e}") from e


def read_manifest(path: Path) -> Manifest:
    """Read and parse a manifest file.

    Args:
        path: Path to the manifest file.

    Returns:
        Parsed Manifest.

    Raises:
        ManifestError: If the file is missing, malformed or incomplete.
    """
    return parse_manifest(read_manifest_bytes(path), source=path)


__all__ = [
    "ManifestSchema",
    "TextScalarLoader",
    "load_text_yaml",
    "parse_manifest",
    "read_manifest",
    "read_manifest_bytes",
]

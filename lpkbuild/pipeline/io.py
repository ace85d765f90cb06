"""Pipeline spec loading and export.

This module provides helpers for loading pipeline specs from YAML/JSON
files and rendering them back for display or state snapshots.

Every failure to read or validate a spec is raised as ConfigError.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from lpkbuild.builds.manifest import load_text_yaml
from lpkbuild.errors import ConfigError
from lpkbuild.pipeline.schema import PipelineSpec


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Plain scalars are kept as their source text (see TextScalarLoader).

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = load_text_yaml(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed JSON content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_spec_data(data: dict[str, Any]) -> PipelineSpec:
    """Parse and validate pipeline spec data.

    Args:
        data: Dictionary containing the spec.

    Returns:
        Validated PipelineSpec instance.

    Raises:
        ConfigError: If data does not match the schema or the source
            descriptor is invalid.
    """
    try:
        spec = PipelineSpec.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"invalid pipeline spec: {_format_validation_error(e)}"
        ) from e
    spec.source.validate_choice()
    return spec


def load_spec(path: Path) -> PipelineSpec:
    """Load and validate a pipeline spec from a file (YAML or JSON).

    File format is determined by extension (.yaml, .yml for YAML,
    .json for JSON).

    Args:
        path: Path to the spec file.

    Returns:
        Validated PipelineSpec instance.

    Raises:
        ConfigError: If the file is missing, unparseable, has an unsupported
            extension, or fails validation.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ConfigError(
                f"Unsupported file extension '{suffix}'. Use .yaml, .yml, or .json"
            )
    except FileNotFoundError as e:
        raise ConfigError(f"Spec file not found: {path}") from e
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Parse error in {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"{path}: {e}") from e
    return parse_spec_data(data)


def spec_to_dict(spec: PipelineSpec) -> dict[str, Any]:
    """Dump a spec for storage, omitting unset fields."""
    return spec.model_dump(mode="json", exclude_none=True)


def spec_to_yaml_string(spec: PipelineSpec) -> str:
    """Convert a spec to a YAML string.

    Args:
        spec: PipelineSpec instance to convert.

    Returns:
        YAML string representation.
    """
    result: str = yaml.dump(
        spec_to_dict(spec), default_flow_style=False, allow_unicode=True, sort_keys=False
    )
    return result


__all__ = [
    "load_json",
    "load_spec",
    "load_yaml",
    "parse_spec_data",
    "spec_to_dict",
    "spec_to_yaml_string",
]

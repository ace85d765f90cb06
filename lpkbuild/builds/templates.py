"""Template rendering for source trees.

This module handles:
- Normalizing the configured template extension
- Parsing and executing ``{{ .KEY }}`` style templates
  (see template_engine for the action language)
- Rendering every template under a directory into its extension-stripped
  sibling, preserving file modes

Rendering a tree happens in two phases: every template is read, parsed
and executed first, and only then are the outputs written. A template
that fails leaves the tree untouched.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from lpkbuild.builds import template_engine
from lpkbuild.builds.template_engine import Node
from lpkbuild.config import DEFAULT_TEMPLATE_EXTENSION
from lpkbuild.errors import TemplateError

logger = logging.getLogger(__name__)

# Mode for rendered files when the template's mode cannot be read
DEFAULT_FILE_MODE = 0o644


@dataclass(frozen=True)
class RenderedTemplate:
    """A template rendered in memory, not yet written."""

    source: Path
    dest: Path
    content: str
    mode: int


def normalize_extension(extension: str | None) -> str:
    """Normalize a template extension to a single leading dot.

    Args:
        extension: Configured extension such as ``j2`` or ``.j2``.

    Returns:
        Normalized extension; the default when blank.
    """
    if extension is None:
        return DEFAULT_TEMPLATE_EXTENSION
    ext = extension.strip()
    if not ext:
        return DEFAULT_TEMPLATE_EXTENSION
    return "." + ext.lstrip(".")


def parse_template(text: str, name: str = "<template>") -> list[Node]:
    """Parse template text into a node tree.

    Raises:
        TemplateError: With code ``parse_error`` on a syntax error.
    """
    return template_engine.parse(text, name)


def execute_template(
    nodes: list[Node],
    variables: Mapping[str, str],
    path: Path | None = None,
) -> str:
    """Execute a parsed template against the variables.

    Raises:
        MissingVariableError: If a referenced variable is absent.
        TemplateError: If execution fails for any other reason.
    """
    name = str(path) if path is not None else "<template>"
    return template_engine.execute(nodes, dict(variables), name=name, path=path)


def render_template_text(
    text: str,
    variables: Mapping[str, str] | None,
    name: str = "<template>",
) -> str:
    """Parse and render template text in one step."""
    nodes = parse_template(text, name)
    return template_engine.execute(nodes, dict(variables or {}), name=name)


def _file_mode(path: Path) -> int:
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except OSError:
        return DEFAULT_FILE_MODE


def _write_atomic(dest: Path, content: str, mode: int) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        tmp_path.chmod(mode)
        os.replace(tmp_path, dest)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def prepare_template_file(
    path: Path,
    extension: str,
    variables: Mapping[str, str] | None,
) -> RenderedTemplate:
    """Read and render a template without writing anything.

    Raises:
        TemplateError: If the template cannot be read, parsed or executed.
        MissingVariableError: If a referenced variable is absent.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise TemplateError(
            f"read template {path}: {e}", code="read_error", path=path
        ) from e

    nodes = parse_template(text, name=str(path))
    content = execute_template(nodes, variables or {}, path=path)
    return RenderedTemplate(
        source=path,
        dest=path.with_name(path.name[: -len(extension)]),
        content=content,
        mode=_file_mode(path),
    )


def write_rendered(rendered: RenderedTemplate) -> Path:
    """Write a rendered template next to its source.

    Raises:
        TemplateError: With code ``write_error`` if the write fails.
    """
    try:
        _write_atomic(rendered.dest, rendered.content, rendered.mode)
    except OSError as e:
        raise TemplateError(
            f"write rendered template {rendered.dest}: {e}",
            code="write_error",
            path=rendered.source,
        ) from e

    logger.debug(
        "Rendered %s -> %s (mode=%o)", rendered.source, rendered.dest.name, rendered.mode
    )
    return rendered.dest


def render_template_file(
    path: Path,
    extension: str,
    variables: Mapping[str, str] | None,
) -> Path:
    """Render a single template file into its extension-stripped sibling.

    Args:
        path: Template file path (name ends with extension).
        extension: Normalized template extension.
        variables: Variables available to the template.

    Returns:
        Path of the rendered file.

    Raises:
        TemplateError: If the template cannot be read, parsed or written.
        MissingVariableError: If a referenced variable is absent.
    """
    return write_rendered(prepare_template_file(path, extension, variables))


def find_templates(base_dir: Path, extension: str) -> list[Path]:
    """Find template files under a directory.

    Args:
        base_dir: Directory to walk recursively.
        extension: Normalized template extension.

    Returns:
        Sorted list of regular files whose names end with the extension.
    """
    templates: list[Path] = []
    for path in sorted(base_dir.rglob("*")):
        if not path.is_file() or not path.name.endswith(extension):
            continue
        if path.name == extension:
            logger.warning("Skipping template with empty target name: %s", path)
            continue
        templates.append(path)
    return templates


def render_templates(
    base_dir: Path,
    extension: str | None = None,
    variables: Mapping[str, str] | None = None,
) -> list[Path]:
    """Render every template file under a directory.

    All templates are rendered before any output is written, so a missing
    variable or syntax error in one template leaves every target untouched.

    Args:
        base_dir: Working directory to walk.
        extension: Template extension (normalized here; default ``.tmpl``).
        variables: Variables available to templates.

    Returns:
        Paths of the rendered files.

    Raises:
        TemplateError: If any template fails to render or write.
    """
    ext = normalize_extension(extension)
    prepared = [
        prepare_template_file(template, ext, variables)
        for template in find_templates(base_dir, ext)
    ]
    rendered = [write_rendered(item) for item in prepared]

    if rendered:
        logger.info("Rendered %d template(s) in %s", len(rendered), base_dir)
    return rendered


__all__ = [
    "DEFAULT_FILE_MODE",
    "RenderedTemplate",
    "execute_template",
    "find_templates",
    "normalize_extension",
    "parse_template",
    "prepare_template_file",
    "render_template_file",
    "render_template_text",
    "render_templates",
    "write_rendered",
]

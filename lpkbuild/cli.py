"""Thin CLI wrapper for lpkbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, NoReturn

import typer
from rich.console import Console
from rich.markup import escape

from lpkbuild import __version__
from lpkbuild.config import get_settings, print_settings_json
from lpkbuild.errors import LPKBuildError

if TYPE_CHECKING:
    from lpkbuild.config import Settings
    from lpkbuild.pipeline.schema import PipelineSpec
    from lpkbuild.registry.client import RegistryClient
    from lpkbuild.types import PipelineResult

app = typer.Typer(
    name="lpkbuild",
    help="LPK build pipeline - render, build and publish LPK artifacts",
    no_args_is_help=True,
)
console = Console()

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"lpkbuild version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Override LPK_LOG_LEVEL"),
    ] = None,
) -> None:
    """LPK build pipeline - render, build and publish LPK artifacts."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error: {escape(message)}[/red]", soft_wrap=True)
    raise typer.Exit(code=1)


def _print_json(data: Any) -> None:
    console.print(json.dumps(data, indent=2), soft_wrap=True, markup=False)


def _load_spec_or_exit(path: Path) -> "PipelineSpec":
    from lpkbuild.pipeline.io import load_spec

    try:
        return load_spec(path)
    except LPKBuildError as e:
        _fail(str(e))


def _client_for(spec: "PipelineSpec", settings: "Settings") -> "RegistryClient | None":
    """Create a registry client only when the spec publishes."""
    from lpkbuild.registry.client import client_from_settings
    from lpkbuild.registry.publish import should_publish

    if not should_publish(spec.publish):
        return None
    return client_from_settings(settings)


def _print_result(result: "PipelineResult", json_output: bool) -> None:
    if json_output:
        _print_json(result.to_dict())
        return
    status = "[cyan]cache hit[/cyan]" if result.cache_hit else "[green]built[/green]"
    console.print(f"[bold]Artifact:[/bold] {result.artifact_path} ({status})")
    console.print(f"  App ID:      {result.app_id or '(none)'}")
    console.print(f"  Version:     {result.version}")
    console.print(f"  SHA-256:     {result.sha256}")
    console.print(f"  Resource ID: {result.resource_id}")
    console.print(f"  Publish:     {result.publish_action.value}")
    if result.download_url:
        console.print(f"  Upload ID:   {result.upload_id}")
        console.print(f"  Download:    {result.download_url}")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True, markup=False)
    else:
        tmp_dir_display = (
            str(settings.tmp_dir) if settings.tmp_dir else "(system default)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Artifacts directory: {settings.artifacts_dir}")
        console.print(f"  Log directory:       {settings.log_dir}")
        console.print(f"  Temp directory:      {tmp_dir_display}")
        console.print()
        console.print("[bold]Registry:[/bold]")
        console.print(f"  Endpoint:            {settings.registry_endpoint or '(unset)'}")
        console.print(f"  User:                {settings.registry_user or '(unset)'}")
        console.print(f"  Verify user:         {settings.verify_user}")
        console.print(f"  HTTP timeout:        {settings.http_timeout}")
        console.print()
        console.print("[bold]Build:[/bold]")
        console.print(f"  Build command:       {settings.build_command}")
        console.print(f"  Manifest filename:   {settings.manifest_filename}")
        console.print(f"  Template extension:  {settings.template_extension}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Build timeout:       {settings.build_timeout}")
        console.print(f"  Git timeout:         {settings.git_timeout}")


@app.command()
def validate(
    spec_file: Annotated[Path, typer.Argument(help="Pipeline spec file (YAML/JSON)")],
) -> None:
    """Validate a pipeline spec file without running it."""
    spec = _load_spec_or_exit(spec_file)
    kind = spec.source.validate_choice()
    console.print(f"[green]Valid pipeline spec ({kind.value} source)[/green]")


@app.command()
def build(
    spec_file: Annotated[Path, typer.Argument(help="Pipeline spec file (YAML/JSON)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Run the pipeline once without stored state."""
    from lpkbuild.pipeline.adapters import read_build

    spec = _load_spec_or_exit(spec_file)
    settings = get_settings()
    try:
        client = _client_for(spec, settings)
        try:
            result = read_build(spec, client=client, settings=settings)
        finally:
            if client is not None:
                client.close()
    except LPKBuildError as e:
        _fail(str(e))
    _print_result(result, json_output)


@app.command()
def apply(
    name: Annotated[str, typer.Argument(help="Resource name")],
    spec_file: Annotated[Path, typer.Argument(help="Pipeline spec file (YAML/JSON)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Create or update a named resource, reusing its prior upload."""
    from lpkbuild.db import create_all_tables, get_engine, get_session_factory
    from lpkbuild.pipeline.adapters import apply_resource

    spec = _load_spec_or_exit(spec_file)
    settings = get_settings()

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        try:
            client = _client_for(spec, settings)
            try:
                _, result, created = apply_resource(
                    session, name, spec, client=client, settings=settings
                )
            finally:
                if client is not None:
                    client.close()
        except LPKBuildError as e:
            session.rollback()
            _fail(str(e))
        session.commit()

    if not json_output:
        verb = "Created" if created else "Updated"
        console.print(f"[green]{verb} resource {name}[/green]")
    _print_result(result, json_output)


@app.command()
def destroy(
    name: Annotated[str, typer.Argument(help="Resource name")],
) -> None:
    """Tear down a named resource and forget its state."""
    from lpkbuild.db import create_all_tables, get_engine, get_session_factory
    from lpkbuild.pipeline.adapters import destroy_resource, get_resource
    from lpkbuild.registry.client import client_from_settings

    settings = get_settings()
    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        try:
            state = get_resource(session, name)
            client = client_from_settings(settings) if state.upload_id else None
            try:
                outcome = destroy_resource(session, name, client=client)
            finally:
                if client is not None:
                    client.close()
        except LPKBuildError as e:
            _fail(str(e))
        session.commit()

    if outcome.success:
        console.print(f"[green]Destroyed resource {name}[/green]")
        return
    console.print(f"[red]Teardown of {name} incomplete (state kept):[/red]")
    for error in outcome.errors:
        console.print(f"  - {escape(error)}")
    raise typer.Exit(code=1)


state_app = typer.Typer(help="Inspect stored resource state")
app.add_typer(state_app, name="state")


@state_app.command("list")
def state_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List stored resources."""
    from lpkbuild.db import create_all_tables, get_engine, get_session_factory
    from lpkbuild.pipeline.adapters import list_resources

    engine = get_engine(get_settings().db_url)
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        states = list_resources(session)

        if not states:
            if json_output:
                console.print("[]")
            else:
                console.print("[yellow]No resources found[/yellow]")
            return

        if json_output:
            _print_json([s.to_dict() for s in states])
        else:
            console.print(f"[bold]Found {len(states)} resource(s):[/bold]")
            console.print()
            for s in states:
                console.print(f"  [green]{s.name}[/green]")
                console.print(f"    Resource ID: {s.resource_id}")
                console.print(f"    Artifact: {s.artifact_path}")
                console.print(f"    Publish: {s.publish_action}")
                console.print()


@state_app.command("show")
def state_show(
    name: Annotated[str, typer.Argument(help="Resource name")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show stored state for a resource."""
    from lpkbuild.db import create_all_tables, get_engine, get_session_factory
    from lpkbuild.errors import ResourceNotFoundError
    from lpkbuild.pipeline.adapters import get_resource

    engine = get_engine(get_settings().db_url)
    create_all_tables(engine)
    factory = get_session_factory(engine)

    with factory() as session:
        try:
            state = get_resource(session, name)
        except ResourceNotFoundError:
            console.print(f"[red]Resource not found: {name}[/red]")
            raise typer.Exit(code=1) from None

        data = state.to_dict()
        data["spec"] = state.spec_snapshot
        if json_output:
            _print_json(data)
        else:
            console.print(f"[bold]Resource: {state.name}[/bold]")
            for key, value in data.items():
                if key in ("name", "spec"):
                    continue
                console.print(f"  {key}: {value}")


def _parse_vars(pairs: list[str] | None) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            _fail(f"Invalid --var {pair!r}, expected KEY=VALUE")
        variables[key] = value
    return variables


@app.command()
def render(
    directory: Annotated[Path, typer.Argument(help="Directory to render in place")],
    extension: Annotated[
        str | None,
        typer.Option("--ext", help="Template extension (default: .tmpl)"),
    ] = None,
    variables: Annotated[
        list[str] | None,
        typer.Option("--var", help="Template variable KEY=VALUE (can be repeated)"),
    ] = None,
) -> None:
    """Render templates under a directory without building."""
    from lpkbuild.builds.templates import render_templates

    values = _parse_vars(variables)
    settings = get_settings()
    try:
        rendered = render_templates(
            directory, extension or settings.template_extension, values
        )
    except LPKBuildError as e:
        _fail(str(e))

    if not rendered:
        console.print("[yellow]No templates found[/yellow]")
        return
    console.print(f"[green]Rendered {len(rendered)} file(s):[/green]")
    for path in rendered:
        console.print(f"  {path}")


@app.command()
def users(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List registry users."""
    from lpkbuild.errors import ConfigError
    from lpkbuild.registry.client import RegistryClient

    settings = get_settings()
    password = (
        settings.registry_password.get_secret_value()
        if settings.registry_password is not None
        else None
    )
    try:
        if not settings.registry_endpoint:
            raise ConfigError("registry endpoint must be provided (LPK_REGISTRY_ENDPOINT)")
        with RegistryClient(
            settings.registry_endpoint,
            user=settings.registry_user,
            username=settings.registry_username,
            password=password,
            timeout=settings.http_timeout,
        ) as client:
            found = client.list_users()
    except LPKBuildError as e:
        _fail(str(e))

    if json_output:
        output = [{"uid": u.uid, "nickname": u.nickname} for u in found]
        _print_json(output)
        return
    if not found:
        console.print("[yellow]No users found[/yellow]")
        return
    console.print(f"[bold]Found {len(found)} user(s):[/bold]")
    for u in found:
        suffix = f" ({u.nickname})" if u.nickname else ""
        console.print(f"  [green]{u.uid}[/green]{suffix}")


__all__ = ["app"]

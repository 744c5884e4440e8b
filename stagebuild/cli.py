"""Thin CLI wrapper for stagebuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.

Running ``stagebuild`` with no command builds every component of the
manifest. ``--status`` and ``--clean`` are shortcuts for the ``status``
and ``clean`` commands.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from stagebuild import __version__
from stagebuild.config import Settings, print_settings_json

app = typer.Typer(
    name="stagebuild",
    help="Stage build orchestrator - fetch, patch, build, stage and package components",
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"stagebuild version {__version__}")
        raise typer.Exit()


def _load_settings(**overrides: Any) -> Settings:
    """Load settings, letting CLI flags that were given win over env vars."""
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
        force=True,
    )


def _print_json(data: object) -> None:
    console.print(
        json.dumps(data, indent=2), markup=False, highlight=False, soft_wrap=True
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    status: Annotated[
        bool,
        typer.Option("--status", help="List completed components and exit"),
    ] = False,
    clean: Annotated[
        bool,
        typer.Option("--clean", help="Delete the entire build root and exit"),
    ] = False,
    build_root: Annotated[
        Path | None,
        typer.Option("--build-root", "-b", help="Build root directory"),
    ] = None,
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Component manifest file"),
    ] = None,
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
) -> None:
    """Stage build orchestrator.

    With no command, builds every component of the manifest that is not
    already complete. Reruns are safe and incremental.
    """
    if ctx.invoked_subcommand is not None:
        return
    if status:
        status_cmd(build_root=build_root)
    elif clean:
        clean_cmd(build_root=build_root)
    else:
        run(build_root=build_root, manifest=manifest)


@app.command()
def run(
    build_root: Annotated[
        Path | None,
        typer.Option("--build-root", "-b", help="Build root directory"),
    ] = None,
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Component manifest file"),
    ] = None,
    prefix: Annotated[
        Path | None,
        typer.Option("--prefix", help="Live installation prefix"),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", help="Parallel jobs for build tools"),
    ] = None,
    enforce_dependencies: Annotated[
        bool | None,
        typer.Option(
            "--enforce-dependencies/--no-enforce-dependencies",
            help="Order by 'requires' and skip dependents of failed components",
        ),
    ] = None,
    package: Annotated[
        bool | None,
        typer.Option("--package/--no-package", help="Produce .deb archives"),
    ] = None,
    prerequisites: Annotated[
        bool | None,
        typer.Option(
            "--prerequisites/--no-prerequisites",
            help="Install manifest prerequisites with the package manager",
        ),
    ] = None,
) -> None:
    """Build every component that is not already complete."""
    from stagebuild.builds.context import BuildContext
    from stagebuild.builds.service import Orchestrator
    from stagebuild.components.graph import DependencyGraphError
    from stagebuild.components.io import ManifestError, resolve_manifest
    from stagebuild.db import open_history
    from stagebuild.host import (
        HostPreconditionError,
        check_host,
        detect_architecture,
        install_prerequisites,
    )
    from stagebuild.types import ComponentOutcome

    settings = _load_settings(
        build_root=build_root,
        manifest=manifest,
        prefix=prefix,
        jobs=jobs,
        enforce_dependencies=enforce_dependencies,
        package_artifacts=package,
        install_prerequisites=prerequisites,
    )
    _setup_logging(settings.log_level)

    try:
        check_host(settings.host_check_path)
    except HostPreconditionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    try:
        spec = resolve_manifest(settings.manifest)
    except ManifestError as e:
        console.print(f"[red]Manifest error: {e}[/red]")
        raise typer.Exit(code=1) from None

    architecture = settings.architecture or detect_architecture()
    build_ctx = BuildContext.from_settings(settings, spec, architecture=architecture)
    build_ctx.ensure_layout()

    console.print(f"[bold]Building {spec.name}[/bold] ({len(spec.components)} components)")
    console.print(f"  Build root:   {build_ctx.build_root}")
    console.print(f"  Prefix:       {build_ctx.prefix}")
    console.print(f"  Architecture: {build_ctx.architecture}")
    console.print(f"  Jobs:         {build_ctx.jobs}")

    if settings.install_prerequisites and spec.prerequisites:
        report = install_prerequisites(spec.prerequisites, build_ctx.logs_dir / "pkg_install")
        if report.failed:
            console.print(
                f"[yellow]Could not install: {', '.join(report.failed)}[/yellow]"
            )

    orchestrator = Orchestrator(
        build_ctx, session_factory=open_history(settings.effective_db_url)
    )

    try:
        summary = orchestrator.run(spec.components)
    except DependencyGraphError as e:
        console.print(f"[red]Dependency error: {e}[/red]")
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        console.print(
            f"[red]Interrupted while building {orchestrator.current or 'components'}[/red]"
        )
        raise typer.Exit(code=130) from None

    console.print()
    console.print("[bold]Build summary:[/bold]")
    console.print(f"  Built:   {summary.count(ComponentOutcome.BUILT)}")
    console.print(f"  Skipped: {summary.count(ComponentOutcome.SKIPPED)}")
    console.print(f"  Failed:  {summary.count(ComponentOutcome.FAILED)}")
    if build_ctx.enforce_dependencies:
        console.print(
            f"  Blocked: {summary.count(ComponentOutcome.DEPENDENCY_FAILED)}"
        )
    for result in summary.failed:
        console.print(f"  [red]✗ {result.name}: {result.message}[/red]")
        if result.log_path:
            console.print(f"    Log: {result.log_path}")
    console.print()
    console.print(
        f"[green]{len(summary.completed)} of {len(spec.components)} components complete[/green]"
    )
    console.print(f"  Packages: {build_ctx.debs_dir}")
    console.print(f"  Logs:     {build_ctx.logs_dir}")
    console.print("Re-run at any time: completed components are skipped.")


@app.command("status")
def status_cmd(
    build_root: Annotated[
        Path | None,
        typer.Option("--build-root", "-b", help="Build root directory"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List components completed in the build root."""
    from stagebuild.builds.service import completed_components

    settings = _load_settings(build_root=build_root)
    names = completed_components(settings.build_root)

    if json_output:
        _print_json(names)
        return
    if not names:
        console.print(f"[yellow]No components built in {settings.build_root}[/yellow]")
        return
    console.print(f"[bold]{len(names)} component(s) built:[/bold]")
    for name in names:
        console.print(f"  [green]✓[/green] {name}")


@app.command("clean")
def clean_cmd(
    build_root: Annotated[
        Path | None,
        typer.Option("--build-root", "-b", help="Build root directory"),
    ] = None,
) -> None:
    """Delete the entire build root (markers, downloads, stages, logs, history)."""
    from stagebuild.builds.service import clean_build_root

    settings = _load_settings(build_root=build_root)
    if clean_build_root(settings.build_root):
        console.print(f"[green]Removed {settings.build_root}[/green]")
    else:
        console.print(f"[yellow]Nothing to clean at {settings.build_root}[/yellow]")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _load_settings()
    if json_output:
        console.print(print_settings_json(settings), markup=False, soft_wrap=True)
        return

    manifest_display = str(settings.manifest) if settings.manifest else "(bundled plasma6)"
    host_check_display = (
        str(settings.host_check_path) if settings.host_check_path else "(disabled)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Build root:          {settings.build_root}")
    console.print(f"  Prefix:              {settings.prefix}")
    console.print(f"  Manifest:            {manifest_display}")
    console.print(f"  Database URL:        {settings.effective_db_url}")
    console.print()
    console.print("[bold]Toolchain:[/bold]")
    console.print(f"  Jobs:                {settings.jobs}")
    console.print(f"  CFLAGS:              {settings.cflags}", markup=False)
    console.print(f"  CXXFLAGS:            {settings.cxxflags}", markup=False)
    console.print(f"  LDFLAGS:             {settings.ldflags}", markup=False)
    console.print()
    console.print("[bold]Packaging:[/bold]")
    console.print(f"  Produce packages:    {settings.package_artifacts}")
    console.print(f"  Architecture:        {settings.architecture or '(detected)'}")
    console.print(f"  Maintainer:          {settings.maintainer}", markup=False)
    console.print()
    console.print("[bold]Fetching:[/bold]")
    console.print(f"  Attempts:            {settings.fetch_attempts}")
    console.print(f"  Retry delay:         {settings.fetch_retry_delay}")
    console.print(f"  Timeout:             {settings.fetch_timeout}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Enforce dependencies: {settings.enforce_dependencies}")
    console.print(f"  Install prerequisites: {settings.install_prerequisites}")
    console.print(f"  Host check:          {host_check_display}")
    console.print(f"  Log level:           {settings.log_level}")


@app.command()
def history(
    build_root: Annotated[
        Path | None,
        typer.Option("--build-root", "-b", help="Build root directory"),
    ] = None,
    component: Annotated[
        str | None,
        typer.Option("--component", "-c", help="Filter by component name"),
    ] = None,
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter by status (running/succeeded/failed)"),
    ] = None,
    limit: Annotated[
        int,
        typer.Option("--limit", "-l", help="Maximum number of records to return"),
    ] = 50,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List recorded build attempts, newest first."""
    from stagebuild.builds.service import list_build_records
    from stagebuild.db import open_history
    from stagebuild.types import BuildStatus

    settings = _load_settings(build_root=build_root)

    status_filter: BuildStatus | None = None
    if status:
        try:
            status_filter = BuildStatus(status)
        except ValueError:
            console.print(f"[red]Invalid status: {status}[/red]")
            console.print("Valid values: running, succeeded, failed")
            raise typer.Exit(code=1) from None

    records = []
    if settings.db_url or settings.build_root.is_dir():
        factory = open_history(settings.effective_db_url)
        with factory() as session:
            records = list_build_records(
                session, component=component, status=status_filter, limit=limit
            )

    if json_output:
        _print_json([r.to_dict() for r in records])
        return
    if not records:
        console.print("[yellow]No build records found[/yellow]")
        return

    console.print(f"[bold]Found {len(records)} build record(s):[/bold]")
    console.print()
    for r in records:
        status_color = {
            "succeeded": "green",
            "failed": "red",
            "running": "blue",
        }.get(r.status, "white")
        console.print(
            f"  [{status_color}]#{r.id} {r.component} {r.version}[/{status_color}]",
            highlight=False,
        )
        console.print(f"    Strategy: {r.strategy}")
        console.print(f"    Status: {r.status}")
        console.print(
            f"    Started: {r.started_at.isoformat() if r.started_at else 'N/A'}"
        )
        if r.package_path:
            console.print(f"    Package: {r.package_path}")
        if r.error_message:
            console.print(f"    Error: {r.error_message}", markup=False)
        console.print()


@app.command()
def components(
    manifest: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Component manifest file"),
    ] = None,
    enforce_dependencies: Annotated[
        bool | None,
        typer.Option(
            "--enforce-dependencies/--no-enforce-dependencies",
            help="Show the order produced by 'requires' declarations",
        ),
    ] = None,
    yaml_output: Annotated[
        bool,
        typer.Option("--yaml", help="Print the resolved manifest as YAML"),
    ] = False,
) -> None:
    """List the manifest's components in build order."""
    from stagebuild.components.graph import DependencyGraphError, order_components
    from stagebuild.components.io import (
        ManifestError,
        manifest_to_yaml_string,
        resolve_manifest,
    )

    settings = _load_settings(manifest=manifest, enforce_dependencies=enforce_dependencies)
    try:
        spec = resolve_manifest(settings.manifest)
        ordered = order_components(spec.components, enforce=settings.enforce_dependencies)
    except (ManifestError, DependencyGraphError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if yaml_output:
        console.print(manifest_to_yaml_string(spec), markup=False, highlight=False)
        return

    console.print(f"[bold]{spec.name}[/bold]: {len(ordered)} component(s)")
    for index, component in enumerate(ordered, start=1):
        origin = "git" if component.source and component.source.is_git else "tarball"
        if component.source is None:
            origin = "assets"
        console.print(
            f"  {index:3d}. {component.name} {component.version} "
            f"({component.strategy.value}, {origin})",
            highlight=False,
        )


@app.command()
def validate(
    path: Annotated[Path, typer.Argument(help="Path to manifest file to validate")],
) -> None:
    """Validate a manifest file and its dependency declarations."""
    from stagebuild.components.graph import (
        DependencyGraphError,
        check_acyclic,
        check_requirements,
    )
    from stagebuild.components.io import ManifestError, load_manifest

    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    try:
        spec = load_manifest(path)
        check_requirements(spec.components)
        check_acyclic(spec.components)
    except ManifestError as e:
        console.print("[red]Validation failed:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None
    except DependencyGraphError as e:
        console.print(f"[red]Dependency error: {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Valid manifest: {spec.name}[/green]")
    console.print(f"  Components: {len(spec.components)}")
    console.print(f"  Prerequisites: {len(spec.prerequisites)}")


__all__ = ["app"]

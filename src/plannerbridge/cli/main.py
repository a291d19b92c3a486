"""Main Typer application for the plannerbridge CLI."""

from pathlib import Path
from typing import Annotated

import typer

from plannerbridge import __version__

app = typer.Typer(
    help="plannerbridge - Restore Microsoft Planner plans across tenants",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"plannerbridge version {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """plannerbridge CLI main callback."""
    pass


@app.command("check-config")
def check_config(
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
) -> None:
    """Validate configuration and show effective settings."""
    from .commands import check as check_module

    check_module.run(config, output)


@app.command()
def restore(
    export_paths: Annotated[
        list[Path],
        typer.Argument(help="Export JSON files, or directories containing them"),
    ],
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Path to configuration file"),
    ] = None,
    group_id: Annotated[
        str | None,
        typer.Option("--group-id", "-g", help="Target Microsoft 365 group that will own the plans"),
    ] = None,
    user_map: Annotated[
        Path | None,
        typer.Option(
            "--user-map",
            help="CSV (SourceUserId,TargetUserId) or JSON file of explicit user mappings",
        ),
    ] = None,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", help="Directory for restoration records and reports"),
    ] = None,
    report: Annotated[
        Path | None,
        typer.Option("--report", help="Path of the JSON error report"),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show what would be restored without making changes"),
    ] = False,
    skip_details: Annotated[
        bool,
        typer.Option("--skip-details", help="Do not restore task descriptions and checklists"),
    ] = False,
    skip_categories: Annotated[
        bool,
        typer.Option("--skip-categories", help="Do not restore plan category labels"),
    ] = False,
    output: Annotated[
        str,
        typer.Option("--output", "-o", help='Output format: "table" or "json"'),
    ] = "table",
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", help="Enable debug logging"),
    ] = False,
) -> None:
    """Restore exported plans, buckets, tasks and task details into a target group."""
    from .commands import restore as restore_module

    restore_module.run(
        export_paths,
        config=config,
        group_id=group_id,
        user_map=user_map,
        output_dir=output_dir,
        report_path=report,
        dry_run=dry_run,
        skip_details=skip_details,
        skip_categories=skip_categories,
        output=output,
        quiet=quiet,
        debug=debug,
    )


if __name__ == "__main__":
    app()

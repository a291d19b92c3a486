"""Check-config command implementation."""

from pathlib import Path

import typer

from plannerbridge.cli.output import format_json
from plannerbridge.cli.rich_logging import print_error, print_success, print_warning
from plannerbridge.config.loader import get_config_path, load_config
from plannerbridge.constants import EXIT_INTERRUPTED, EXIT_PLAN_FAILURE, EXIT_SUCCESS
from plannerbridge.exceptions import ConfigError


def _mask(secret: str | None) -> str:
    if not secret:
        return ""
    return f"{secret[:4]}…({len(secret)} chars)"


def run(config: Path | None, output: str) -> None:
    """
    Load configuration and display the effective settings.

    Args:
        config: Optional path to config file
        output: Output format ("table" or "json")
    """
    try:
        path = get_config_path(config)
        cfg = load_config(config)

        effective = cfg.model_dump(mode="json")
        effective["graph"]["access_token"] = _mask(cfg.graph.access_token)
        effective["config_file"] = str(path) if path.exists() else None

        if output == "json":
            print(format_json(effective))
        else:
            print_success(f"Configuration valid ({effective['config_file'] or 'environment only'})")
            print(format_json(effective))
            if not cfg.graph.access_token:
                print_warning("No access token configured; only --dry-run restores will work")

        raise typer.Exit(EXIT_SUCCESS)

    except typer.Exit:
        raise
    except ConfigError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(EXIT_PLAN_FAILURE) from None
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        raise typer.Exit(EXIT_INTERRUPTED) from None

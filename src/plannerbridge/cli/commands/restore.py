"""Restore command implementation for plan restoration."""

import logging
import time
from pathlib import Path

import typer

from plannerbridge.cli.output import format_json, format_report_table
from plannerbridge.cli.rich_logging import (
    configure_rich_logging,
    log_level_for,
    print_error,
    print_success,
    print_warning,
)
from plannerbridge.config.loader import load_config
from plannerbridge.constants import EXIT_INTERRUPTED, EXIT_PLAN_FAILURE, EXIT_SUCCESS
from plannerbridge.exceptions import (
    ConfigError,
    RestorationError,
    StorageError,
    ValidationError,
)
from plannerbridge.identity.mapping import load_user_map
from plannerbridge.identity.resolver import IdentityResolver
from plannerbridge.planner.loader import load_exports
from plannerbridge.restoration.concurrency import ConcurrencyGuard
from plannerbridge.restoration.context import RunContext
from plannerbridge.restoration.coordinator import RestorationCoordinator
from plannerbridge.restoration.record_store import RestorationRecordStore, write_json
from plannerbridge.transport.client import GraphClient
from plannerbridge.transport.executor import RequestExecutor

logger = logging.getLogger(__name__)


def run(
    export_paths: list[Path],
    config: Path | None = None,
    group_id: str | None = None,
    user_map: Path | None = None,
    output_dir: Path | None = None,
    report_path: Path | None = None,
    dry_run: bool = False,
    skip_details: bool = False,
    skip_categories: bool = False,
    output: str = "table",
    quiet: bool = False,
    debug: bool = False,
) -> None:
    """Restore exported plans into the target tenant.

    Args:
        export_paths: Export files, or directories of ``*.json`` export files
        config: Optional path to config file
        group_id: Target Microsoft 365 group (overrides config)
        user_map: Explicit source -> target user mapping file (overrides config)
        output_dir: Where restoration records are written (overrides config)
        report_path: Where the JSON error report is written (default: inside output_dir)
        dry_run: Log what would be created without calling the API
        skip_details: Do not restore task descriptions, checklists and references
        skip_categories: Do not restore plan category labels
        output: "table" or "json"
        quiet: Only log warnings and errors
        debug: Enable debug logging

    Environment Variables:
        PLANNERBRIDGE_ACCESS_TOKEN: Bearer token for the target tenant
        PLANNERBRIDGE_GROUP_ID: Default target group

    Exit codes:
        0: Everything restored
        1: Some buckets, tasks, details or categories failed
        2: A plan could not be created, or nothing could be attempted
        130: Interrupted
    """
    configure_rich_logging(level=log_level_for(quiet, debug), show_path=debug)

    json_output = output == "json"
    start_time = time.time()
    client: GraphClient | None = None

    try:
        cfg = load_config(config)
        restore_cfg = cfg.restore
        target_group = group_id or restore_cfg.group_id
        records_dir = output_dir or restore_cfg.output_dir
        mapping_path = user_map or restore_cfg.user_map_path
        dry_run = dry_run or restore_cfg.dry_run

        exports = load_exports(export_paths)
        explicit_map = load_user_map(mapping_path) if mapping_path else {}

        context = RunContext(dry_run=dry_run)
        logger.info(
            f"Run {context.run_id}: {len(exports)} plan(s), dry_run={dry_run}, "
            f"explicit user mappings={len(explicit_map)}, {cfg.retry}"
        )

        executor = None
        resolver = None
        if not dry_run:
            if not cfg.graph.access_token:
                raise ConfigError(
                    "Missing access token. Set PLANNERBRIDGE_ACCESS_TOKEN or graph.access_token"
                )
            if not target_group:
                raise ConfigError(
                    "Missing target group. Pass --group-id or set PLANNERBRIDGE_GROUP_ID"
                )
            client = GraphClient.from_config(cfg.graph)
            executor = RequestExecutor(client, cfg.retry)
            resolver = IdentityResolver(executor, context, explicit_map=explicit_map)

        coordinator = RestorationCoordinator(
            context,
            executor=executor,
            guard=ConcurrencyGuard(executor) if executor else None,
            resolver=resolver,
            record_store=None if dry_run else RestorationRecordStore(records_dir),
            group_id=target_group,
            include_details=restore_cfg.include_details and not skip_details,
            include_categories=restore_cfg.include_categories and not skip_categories,
        )
        records = coordinator.restore_all(exports)

        report, exit_code = context.tracker.finalize()
        cache_stats = resolver.get_stats() if resolver else None
        document = report.to_document()
        document["RunId"] = context.run_id
        document["DryRun"] = dry_run
        document["DurationSeconds"] = round(time.time() - start_time, 2)
        if cache_stats is not None:
            document["IdentityCache"] = cache_stats
        if executor is not None:
            document["Requests"] = executor.get_stats()

        if not dry_run:
            report_file = report_path or records_dir / f"error-report-{context.run_id}.json"
            write_json(report_file, document)
            logger.info(f"Wrote error report to {report_file}")

        if json_output:
            typer.echo(format_json(document))
        else:
            format_report_table(report, cache_stats)
            if dry_run:
                print_warning("Dry run: no changes were made")
            elif exit_code == EXIT_SUCCESS:
                print_success(f"Restored {len(records)} plan(s)")
            else:
                print_warning(f"Restored {len(records)} plan(s) with failures (exit {exit_code})")

        raise typer.Exit(exit_code)

    except typer.Exit:
        raise
    except ConfigError as e:
        if not json_output:
            print_error(f"Configuration error: {e}")
        logger.error(f"Configuration error: {e}")
        raise typer.Exit(EXIT_PLAN_FAILURE) from None
    except ValidationError as e:
        if not json_output:
            print_error(f"Validation error: {e}")
        logger.error(f"Validation error: {e}")
        raise typer.Exit(EXIT_PLAN_FAILURE) from None
    except (RestorationError, StorageError) as e:
        if not json_output:
            print_error(f"Restoration error: {e}")
        logger.error(f"Restoration error: {e}")
        raise typer.Exit(EXIT_PLAN_FAILURE) from None
    except KeyboardInterrupt:
        if not json_output:
            print_error("Restoration interrupted; the target tenant may hold a partial plan")
        logger.info("Restoration interrupted by user")
        raise typer.Exit(EXIT_INTERRUPTED) from None
    except Exception as e:
        if not json_output:
            print_error(f"Unexpected error: {e}")
        logger.exception("Unexpected error during restoration")
        raise typer.Exit(EXIT_PLAN_FAILURE) from None
    finally:
        if client is not None:
            client.close()

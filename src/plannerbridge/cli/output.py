"""Output formatting utilities for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

from plannerbridge.restoration.error_tracker import ErrorReport


def format_json(data: Any) -> str:
    """
    Format data as JSON string.

    Args:
        data: Data to format (must be JSON-serializable)

    Returns:
        Pretty-printed JSON string
    """
    if hasattr(data, "model_dump"):
        data = data.model_dump(mode="json")
    return json.dumps(data, indent=2, default=str)


def format_report_table(
    report: ErrorReport,
    cache_stats: dict[str, Any] | None = None,
    console: Console | None = None,
) -> None:
    """
    Print a restoration report as Rich tables.

    Args:
        report: Finalized error report
        cache_stats: Optional identity cache statistics
        console: Console to print to (defaults to stdout)
    """
    console = console or Console()

    table = Table(title="Restoration Summary", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Attempted", justify="right")
    table.add_column("Succeeded", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    for kind, counters in report.kinds.items():
        if counters["Attempted"] == 0 and counters["Failed"] == 0:
            continue
        table.add_row(
            kind,
            str(counters["Attempted"]),
            str(counters["Succeeded"]),
            str(counters["Failed"]),
        )
    table.add_row(
        "[bold]Total[/bold]",
        str(report.total_attempted),
        str(report.total_succeeded),
        str(report.total_failed),
    )
    console.print(table)

    if report.total_failed:
        categories = ", ".join(
            f"{name}={count}" for name, count in report.categories.items() if count
        )
        console.print(f"Failure categories: {categories}", style="dim")
        for kind, counters in report.kinds.items():
            for example in counters["Examples"]:
                console.print(
                    f"  [red]✗[/red] {kind} '{example['EntityName']}' "
                    f"({example['Context']}): {example['ErrorType']} - {example['Message']}"
                )

    if report.unresolved_identities:
        console.print(
            f"[yellow]⚠ {len(report.unresolved_identities)} assignment(s) dropped "
            f"(user not found in target tenant)[/yellow]"
        )

    if cache_stats:
        console.print(
            f"Identity cache: {cache_stats['TotalLookups']} lookups, "
            f"{cache_stats['CacheHits']} hits ({cache_stats['HitRatePercent']}%), "
            f"~{cache_stats['EstimatedCallsAvoided']} API calls avoided",
            style="dim",
        )

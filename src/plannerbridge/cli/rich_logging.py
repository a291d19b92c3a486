"""Log handler and status lines for restore runs.

Everything here writes to stderr so that ``--output json`` leaves stdout
clean for the report document.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

RUN_THEME = Theme(
    {
        "ok": "bold green",
        "partial": "yellow",
        "failed": "bold red",
        "plan": "bold magenta",
        "dim": "dim",
    }
)

# (style, marker) per status line
_STATUS = {
    "ok": ("ok", "✓"),
    "partial": ("partial", "⚠"),
    "failed": ("failed", "✗"),
}

# Libraries that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")

console = Console(theme=RUN_THEME, stderr=True)


def log_level_for(quiet: bool = False, debug: bool = False) -> int:
    """Map the ``--quiet``/``--debug`` flags to a logging level; debug wins."""
    if debug:
        return logging.DEBUG
    if quiet:
        return logging.WARNING
    return logging.INFO


def configure_rich_logging(level: int = logging.INFO, show_path: bool = False) -> None:
    """Route all log records through a single RichHandler on stderr.

    Retry warnings and per-item failures are the lines operators watch, so
    request-level chatter from the HTTP stack is held at WARNING unless the
    run itself is at DEBUG.
    """
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=show_path,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


def _print_status(status: str, message: str, console_obj: Console | None) -> None:
    style, marker = _STATUS[status]
    (console_obj or console).print(f"{marker} {message}", style=style, highlight=False)


def print_success(message: str, console_obj: Console | None = None) -> None:
    _print_status("ok", message, console_obj)


def print_warning(message: str, console_obj: Console | None = None) -> None:
    """Print a line for a run that finished with item failures, or a notice."""
    _print_status("partial", message, console_obj)


def print_error(message: str, console_obj: Console | None = None) -> None:
    _print_status("failed", message, console_obj)

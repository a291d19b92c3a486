"""plannerbridge - Cross-tenant restoration tool for Microsoft Planner plans."""

__version__ = "0.1.0"


def main() -> None:
    """Main entry point for the CLI."""
    from plannerbridge.cli.main import app

    app()

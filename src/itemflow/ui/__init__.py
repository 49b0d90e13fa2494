"""Command-line surface for itemflow."""

from itemflow.ui.cli import CLIError, ExitCode, main, run_cli

__all__ = ["CLIError", "ExitCode", "main", "run_cli"]

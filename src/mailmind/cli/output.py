"""
Output formatting utilities for the CLI.

Provides consistent output formatting across all CLI commands.
"""

from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from mailmind.llms.exceptions import (
    ConfigurationError,
    ErrorKind,
    ProviderAuthError,
    ProviderQuotaError,
    classify_error,
    error_category,
)

# Global console instances
console = Console()
err_console = Console(stderr=True)


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message."""
    err_console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    err_console.print(f"[yellow]![/yellow] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]i[/blue] {message}")


def print_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str | None = None,
) -> None:
    """Print a table."""
    table = Table(title=title)

    for header in headers:
        table.add_column(header)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    console.print(table)


def exit_with_llm_error(error: Exception) -> NoReturn:
    """
    Report a failed completion and exit.

    Exit codes: 1 configuration, 3 key or balance problems, 4 other
    provider failures.
    """
    if isinstance(error, ConfigurationError):
        print_error(f"Configuration error: {error}")
        raise typer.Exit(1)

    kind = classify_error(error)
    category = error_category(kind)

    if category is ConfigurationError:
        print_error(f"Invalid model: {error}")
        raise typer.Exit(1)

    if category in (ProviderAuthError, ProviderQuotaError):
        print_error(f"{kind.value.replace('_', ' ').capitalize()}: {error}")
        console.print("[dim]Check your API key:[/dim]")
        console.print("[dim]  - Environment variable (e.g., ANTHROPIC_API_KEY)[/dim]")
        console.print("[dim]  - mailmind keys set <provider>[/dim]")
        raise typer.Exit(3)

    if kind is ErrorKind.UNCLASSIFIED:
        print_error(f"Request failed: {error}")
    else:
        print_error(f"Provider error ({kind.value}): {error}")
    raise typer.Exit(4)

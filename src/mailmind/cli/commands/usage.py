"""
mailmind usage - Inspect recorded LLM usage.

Usage:
    mailmind usage show
    mailmind usage show --email user@example.com --limit 50
    mailmind usage summary
"""

from typing import Annotated

import typer

from mailmind.cli.output import console, print_error, print_table
from mailmind.config import ConfigurationError, get_config
from mailmind.llms.usage import JsonlUsageRecorder, summarize
from mailmind.storage.paths import expand_path

app = typer.Typer(
    name="usage",
    help="Inspect recorded LLM usage.",
)


def _recorder() -> JsonlUsageRecorder:
    try:
        config = get_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    return JsonlUsageRecorder(expand_path(config.usage.path), enable=config.usage.enable)


@app.command()
def show(
    email: Annotated[
        str | None,
        typer.Option(
            "--email",
            "-e",
            help="Only show this user's usage.",
        ),
    ] = None,
    limit: Annotated[
        int,
        typer.Option(
            "--limit",
            "-n",
            help="Number of most recent records to show.",
        ),
    ] = 20,
) -> None:
    """Show recent usage records."""
    records = _recorder().read_records(email)
    if not records:
        console.print("[dim]No usage recorded.[/dim]")
        return

    rows = [
        [
            r.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            r.email,
            r.label,
            f"{r.provider}/{r.model}",
            r.usage.prompt_tokens,
            r.usage.completion_tokens,
            f"${r.usage.cost:.4f}",
        ]
        for r in records[-limit:]
    ]
    print_table(
        ["Time", "Email", "Label", "Model", "In", "Out", "Cost"],
        rows,
        title="Usage",
    )


@app.command()
def summary(
    email: Annotated[
        str | None,
        typer.Option(
            "--email",
            "-e",
            help="Only summarize this user's usage.",
        ),
    ] = None,
) -> None:
    """Summarize usage by model and by label."""
    records = _recorder().read_records(email)
    if not records:
        console.print("[dim]No usage recorded.[/dim]")
        return

    result = summarize(records)
    headers = ["Requests", "In", "Out", "Cost"]

    def row(key: str, totals) -> list:
        return [
            key,
            totals.request_count,
            totals.prompt_tokens,
            totals.completion_tokens,
            f"${totals.total_cost:.4f}",
        ]

    print_table(
        ["Model", *headers],
        [row(key, totals) for key, totals in sorted(result.by_model.items())],
        title="By model",
    )
    print_table(
        ["Label", *headers],
        [row(key, totals) for key, totals in sorted(result.by_label.items())],
        title="By label",
    )
    console.print(
        f"\n[bold]Total:[/bold] {result.total.request_count} requests, "
        f"${result.total.total_cost:.4f}"
    )

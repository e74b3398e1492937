"""
mailmind errors - Error messages shown to users.

Usage:
    mailmind errors list user@example.com
    mailmind errors clear user@example.com
"""

from typing import Annotated

import typer

from mailmind.cli.output import console, print_error, print_success, print_table
from mailmind.config import ConfigurationError, get_config
from mailmind.llms.error_messages import JsonErrorMessageStore
from mailmind.storage.paths import expand_path

app = typer.Typer(
    name="errors",
    help="Error messages shown to users.",
)


def _store() -> JsonErrorMessageStore:
    try:
        config = get_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    return JsonErrorMessageStore(expand_path(config.errors.path))


@app.command("list")
def list_messages(
    email: Annotated[
        str,
        typer.Argument(
            help="User email.",
        ),
    ],
) -> None:
    """List a user's error messages."""
    messages = _store().get_user_error_messages(email)
    if not messages:
        console.print(f"[dim]No error messages for {email}.[/dim]")
        return

    print_table(
        ["Time", "Kind", "Hint", "Message"],
        [
            [m.timestamp.strftime("%Y-%m-%d %H:%M:%S"), m.kind.value, m.hint, m.message]
            for m in messages
        ],
        title=f"Error messages for {email}",
    )


@app.command()
def clear(
    email: Annotated[
        str,
        typer.Argument(
            help="User email.",
        ),
    ],
) -> None:
    """Clear a user's error messages."""
    if _store().clear_user_error_messages(email):
        print_success(f"Cleared error messages for {email}.")
    else:
        console.print(f"[dim]No error messages for {email}.[/dim]")

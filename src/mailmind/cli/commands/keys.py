"""
mailmind keys - Manage system provider API keys.

Usage:
    mailmind keys set openai
    mailmind keys list
    mailmind keys delete openai --yes
"""

import os
from typing import Annotated

import typer
from rich.table import Table

from mailmind.cli.output import console, print_error, print_success, print_warning
from mailmind.llms.models import Provider
from mailmind.secrets import PROVIDER_ENV_VARS, ProviderKeyStore, SecretsError

app = typer.Typer(
    name="keys",
    help="Manage system provider API keys.",
)


def _check_provider(provider: str) -> str:
    name = provider.lower()
    if name not in {p.value for p in Provider if p.requires_api_key}:
        print_error(f"'{provider}' does not use an API key.")
        raise typer.Exit(1)
    return name


@app.command("set")
def set_key(
    provider: Annotated[
        str,
        typer.Argument(
            help="Provider name (e.g., 'openai', 'anthropic').",
        ),
    ],
    value: Annotated[
        str | None,
        typer.Option(
            "--value",
            help="API key value (will prompt if not provided).",
        ),
    ] = None,
) -> None:
    """Store a system API key."""
    provider = _check_provider(provider)

    if value is None:
        value = typer.prompt(f"Enter API key for {provider}", hide_input=True)
        if not value:
            print_error("No value provided.")
            raise typer.Exit(1)

    store = ProviderKeyStore()
    try:
        store.set(provider, value)
    except (SecretsError, OSError) as e:
        print_error(f"Failed to store key: {e}")
        raise typer.Exit(1)

    print_success(f"Key for '{provider}' stored.")
    env_var = PROVIDER_ENV_VARS.get(provider)
    if env_var and os.environ.get(env_var):
        print_warning(f"{env_var} is set and takes priority over the stored key.")


@app.command("list")
def list_keys() -> None:
    """List providers with a system key."""
    store = ProviderKeyStore()
    stored = set(store.list())

    table = Table(title="System API Keys")
    table.add_column("Provider", style="cyan")
    table.add_column("Environment Variable", style="green")
    table.add_column("Status")

    for provider, env_var in PROVIDER_ENV_VARS.items():
        if os.environ.get(env_var):
            status = "[yellow]env[/yellow]"
        elif provider in stored:
            status = "[green]stored[/green]"
        else:
            status = "[dim]missing[/dim]"
        table.add_row(provider, env_var, status)

    console.print(table)


@app.command("delete")
def delete_key(
    provider: Annotated[
        str,
        typer.Argument(
            help="Provider name.",
        ),
    ],
    yes: Annotated[
        bool,
        typer.Option(
            "--yes",
            "-y",
            help="Skip confirmation.",
        ),
    ] = False,
) -> None:
    """Delete a stored system API key."""
    provider = provider.lower()
    store = ProviderKeyStore()

    if provider not in store.list():
        print_error(f"No stored key for '{provider}'.")
        raise typer.Exit(1)

    if not yes and not typer.confirm(f"Delete key for '{provider}'?"):
        console.print("[dim]Cancelled.[/dim]")
        return

    store.delete(provider)
    print_success(f"Key for '{provider}' deleted.")

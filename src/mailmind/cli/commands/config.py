"""
mailmind config - Show the effective configuration.

Usage:
    mailmind config show
    mailmind config show llm
    mailmind config show --json
"""

import json
from typing import Annotated

import typer
import yaml
from rich.panel import Panel
from rich.syntax import Syntax

from mailmind.cli.output import console, print_error
from mailmind.config import ConfigurationError, load_config
from mailmind.storage.paths import get_global_config_path

app = typer.Typer(
    name="config",
    help="Configuration inspection.",
)


@app.command()
def show(
    section: Annotated[
        str | None,
        typer.Argument(
            help="Config section to show (e.g., 'llm', 'retry').",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output as JSON.",
        ),
    ] = False,
) -> None:
    """Show the effective configuration (defaults, config file and environment)."""
    try:
        config = load_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)

    config_dict = config.model_dump()
    if section:
        if section not in config_dict:
            print_error(f"Section '{section}' not found in configuration.")
            raise typer.Exit(1)
        config_dict = config_dict[section]

    if json_output:
        console.print_json(json.dumps(config_dict, default=str))
        return

    output = yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)
    title = f"[cyan]{section or get_global_config_path()}[/cyan]"
    console.print(Panel(Syntax(output, "yaml", theme="monokai"), title=title))

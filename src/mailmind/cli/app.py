"""
Main Typer application for mailmind CLI.

This module defines the root CLI application and registers all command groups.
"""

import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from mailmind import __version__
from mailmind.cli.commands import clean, config, errors, keys, run, usage
from mailmind.cli.output import err_console, print_info
from mailmind.config import ConfigurationError, get_config

# Create the main Typer app
app = typer.Typer(
    name="mailmind",
    help="LLM completion layer for email automation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        print_info(f"mailmind version [green]{__version__}[/green]")
        raise typer.Exit()


def configure_logging(verbose: bool = False) -> None:
    """Route log records through rich at the configured level."""
    level = "WARNING"
    if verbose:
        level = "DEBUG"
    else:
        try:
            level = get_config().logging.level
        except ConfigurationError:
            # Commands report the configuration error themselves
            pass

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # LiteLLM is chatty below WARNING
    logging.getLogger("LiteLLM").setLevel(logging.DEBUG if verbose else logging.WARNING)


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
) -> None:
    """
    [bold blue]mailmind[/bold blue] - LLM completion layer for email automation

    Run completions against any configured provider, inspect usage and
    the error messages shown to users, and manage system API keys.
    """
    configure_logging(verbose)


# Register commands and command groups
app.command("run")(run.run_prompt)
app.command("clean")(clean.clean_email)
app.add_typer(usage.app, name="usage")
app.add_typer(errors.app, name="errors")
app.add_typer(keys.app, name="keys")
app.add_typer(config.app, name="config")


if __name__ == "__main__":
    app()

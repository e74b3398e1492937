"""
mailmind clean - Decide whether an email can be archived.

Usage:
    mailmind clean message.eml
    mailmind clean message.eml --email user@example.com --provider openai
"""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from mailmind.ai import CleanUser, EmailForLLM, ai_clean
from mailmind.cli.commands.run import DEFAULT_EMAIL, load_engine
from mailmind.cli.output import console, exit_with_llm_error, print_error
from mailmind.llms import UserAIFields, is_transient_error, with_retry


def clean_email(
    files: Annotated[
        list[Path],
        typer.Argument(
            help="Raw email files (RFC 822) forming one thread, oldest first.",
        ),
    ],
    email: Annotated[
        str,
        typer.Option(
            "--email",
            "-e",
            help="Thread owner's email.",
        ),
    ] = DEFAULT_EMAIL,
    provider: Annotated[
        str | None,
        typer.Option(
            "--provider",
            "-p",
            help="Provider to use (default from config).",
        ),
    ] = None,
    model: Annotated[
        str | None,
        typer.Option(
            "--model",
            "-m",
            help="Model to use.",
        ),
    ] = None,
    instructions: Annotated[
        str | None,
        typer.Option(
            "--instructions",
            "-i",
            help="The user's own cleaning instructions.",
        ),
    ] = None,
) -> None:
    """Decide whether an email thread can be archived."""
    messages = []
    for path in files:
        if not path.is_file():
            print_error(f"File not found: {path}")
            raise typer.Exit(1)
        messages.append(EmailForLLM.from_text(path.read_text(encoding="utf-8", errors="replace")))

    config, engine = load_engine()
    user = CleanUser(
        email=email,
        ai=UserAIFields(provider=provider, model=model),
        instructions=instructions,
    )

    try:
        decision = asyncio.run(
            with_retry(
                lambda: ai_clean(engine, user, messages),
                retry_if=is_transient_error,
                max_retries=config.retry.max_retries,
                delay_ms=config.retry.delay_ms,
            )
        )
    except Exception as e:
        exit_with_llm_error(e)

    verdict = "[yellow]archive[/yellow]" if decision.archive else "[green]keep[/green]"
    console.print(f"Decision: {verdict}")
    console.print(f"[dim]{decision.reasoning}[/dim]")

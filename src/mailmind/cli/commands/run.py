"""
mailmind run - Run a completion for a user.

Usage:
    mailmind run "Summarize this email: ..."
    mailmind run "Query" --provider openai --model gpt-4o-mini
    mailmind run "Query" --economy --label "Summarize"
    mailmind run "Query" --stream
    mailmind run "Query" --retries 3
"""

import asyncio
from typing import Annotated

import typer

from mailmind.cli.output import console, exit_with_llm_error, print_error
from mailmind.config import Config, ConfigurationError, get_config
from mailmind.llms import (
    CompletionEngine,
    StreamRequest,
    TextRequest,
    TextResult,
    UserAIFields,
    create_engine,
    is_transient_error,
    with_retry,
)

DEFAULT_EMAIL = "cli@localhost"


def load_engine() -> tuple[Config, CompletionEngine]:
    """Load configuration and create the engine, exiting on bad configuration."""
    try:
        config = get_config()
    except ConfigurationError as e:
        print_error(f"Configuration error: {e}")
        raise typer.Exit(1)
    return config, create_engine(config)


async def _stream(engine: CompletionEngine, request: StreamRequest) -> None:
    stream = await engine.stream_completion(request)
    async for chunk in stream:
        if chunk.content:
            console.print(chunk.content, end="", markup=False, highlight=False)
    console.print()
    usage = stream.usage
    console.print(
        f"[dim]Tokens: {usage.prompt_tokens} in, {usage.completion_tokens} out | "
        f"Cost: ${usage.cost:.4f}[/dim]"
    )


async def _complete(
    engine: CompletionEngine,
    request: TextRequest,
    retries: int | None,
    delay_ms: int,
) -> TextResult:
    if retries is None:
        return await engine.generate_completion(request)
    return await with_retry(
        lambda: engine.generate_completion(request),
        retry_if=is_transient_error,
        max_retries=retries,
        delay_ms=delay_ms,
    )


def run_prompt(
    prompt: Annotated[
        str,
        typer.Argument(
            help="The prompt to send.",
        ),
    ],
    system: Annotated[
        str | None,
        typer.Option(
            "--system",
            "-s",
            help="System instruction.",
        ),
    ] = None,
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
            help="Model to use (default for the provider).",
        ),
    ] = None,
    api_key: Annotated[
        str | None,
        typer.Option(
            "--api-key",
            help="User API key (default: the system key).",
        ),
    ] = None,
    economy: Annotated[
        bool,
        typer.Option(
            "--economy",
            help="Use the provider's economy model.",
        ),
    ] = False,
    email: Annotated[
        str,
        typer.Option(
            "--email",
            "-e",
            help="User email the usage is recorded against.",
        ),
    ] = DEFAULT_EMAIL,
    label: Annotated[
        str,
        typer.Option(
            "--label",
            "-l",
            help="Usage label.",
        ),
    ] = "CLI",
    stream: Annotated[
        bool,
        typer.Option(
            "--stream/--no-stream",
            help="Stream the response.",
        ),
    ] = False,
    retries: Annotated[
        int | None,
        typer.Option(
            "--retries",
            "-r",
            help="Attempts for transient provider errors (not with --stream).",
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
    """Run a completion for a user."""
    config, engine = load_engine()

    common = {
        "user_ai": UserAIFields(provider=provider, model=model, api_key=api_key),
        "use_economy_model": economy,
        "user_email": email,
        "usage_label": label,
    }

    try:
        if stream:
            if retries is not None:
                print_error("--retries cannot be combined with --stream.")
                raise typer.Exit(1)
            asyncio.run(_stream(engine, StreamRequest(prompt=prompt, system=system, **common)))
            return

        result = asyncio.run(
            _complete(
                engine,
                TextRequest(prompt=prompt, system=system, **common),
                retries,
                config.retry.delay_ms,
            )
        )
    except typer.Exit:
        raise
    except Exception as e:
        exit_with_llm_error(e)

    if json_output:
        console.print_json(
            data={
                "text": result.text,
                "finish_reason": result.finish_reason,
                "usage": result.usage.to_dict(),
            }
        )
        return

    console.print(result.text, markup=False, highlight=False)
    console.print(
        f"\n[dim]Tokens: {result.usage.prompt_tokens} in, "
        f"{result.usage.completion_tokens} out | Cost: ${result.usage.cost:.4f}[/dim]"
    )

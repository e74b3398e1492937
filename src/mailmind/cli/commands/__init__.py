"""CLI command modules."""

from mailmind.cli.commands import clean, config, errors, keys, run, usage

__all__ = ["clean", "config", "errors", "keys", "run", "usage"]

"""
Mailmind - LLM orchestration for email automation

Provider-agnostic completion layer with error classification,
backup-model fallback, usage accounting and opt-in retries.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mailmind")
except PackageNotFoundError:
    __version__ = "0.4.0"

__all__ = [
    "__version__",
]

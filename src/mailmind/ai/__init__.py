"""
Mailmind AI features built on the completion engine.
"""

from mailmind.ai.clean import (
    CLEAN_USAGE_LABEL,
    CleanDecision,
    CleanUser,
    EmailForLLM,
    ai_clean,
    build_clean_prompt,
)

__all__ = [
    "CLEAN_USAGE_LABEL",
    "CleanDecision",
    "CleanUser",
    "EmailForLLM",
    "ai_clean",
    "build_clean_prompt",
]

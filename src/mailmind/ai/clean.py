"""
Inbox cleaning decision.

Asks the user's model whether an email thread can be archived without
the user reading it.
"""

import logging
from dataclasses import dataclass, field
from email import message_from_string
from email.message import Message

from pydantic import BaseModel, Field

from mailmind.llms.engine import CompletionEngine
from mailmind.llms.models import ObjectRequest, UserAIFields

logger = logging.getLogger(__name__)

CLEAN_USAGE_LABEL = "Clean"

# Per-message body limit in the prompt
MAX_CONTENT_LENGTH = 2000


class CleanDecision(BaseModel):
    """The model's verdict on a thread."""

    reasoning: str = Field(description="One or two sentences explaining the decision.")
    archive: bool = Field(description="Whether the thread can be archived.")


@dataclass(frozen=True)
class EmailForLLM:
    """An email reduced to the fields the model needs."""

    sender: str
    subject: str
    content: str
    to: str | None = None
    date: str | None = None

    @classmethod
    def from_text(cls, text: str) -> "EmailForLLM":
        """Parse a raw RFC 822 message. Only the plain text body is kept."""
        message = message_from_string(text)
        return cls(
            sender=message.get("From", ""),
            subject=message.get("Subject", ""),
            content=_plain_text_body(message),
            to=message.get("To"),
            date=message.get("Date"),
        )

    def to_prompt(self, max_length: int = MAX_CONTENT_LENGTH) -> str:
        content = self.content.strip()
        if len(content) > max_length:
            content = content[:max_length] + "..."

        lines = [f"From: {self.sender}"]
        if self.to:
            lines.append(f"To: {self.to}")
        if self.date:
            lines.append(f"Date: {self.date}")
        lines.append(f"Subject: {self.subject}")
        lines.append("")
        lines.append(content)
        return "\n".join(lines)


def _plain_text_body(message: Message) -> str:
    if message.is_multipart():
        for part in message.walk():
            if part.get_content_type() == "text/plain":
                payload = part.get_payload(decode=True)
                if isinstance(payload, bytes):
                    return payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        return ""

    payload = message.get_payload(decode=True)
    if isinstance(payload, bytes):
        return payload.decode(message.get_content_charset() or "utf-8", errors="replace")
    return str(message.get_payload())


@dataclass(frozen=True)
class CleanUser:
    """The user whose inbox is being cleaned."""

    email: str
    ai: UserAIFields = field(default_factory=UserAIFields)
    instructions: str | None = None


SYSTEM_PROMPT = """You are an assistant that helps keep an inbox clean.
Decide whether the email thread below can be archived without the user reading it.

Archive:
- newsletters, marketing and promotions
- notifications that need no action
- past calendar events and expired offers

Keep:
- personal messages and anything addressed to the user specifically
- receipts, invoices and financial or legal documents
- anything that asks the user to do something

When unsure, keep the thread."""


def build_clean_prompt(user: CleanUser, messages: list[EmailForLLM]) -> str:
    parts = []
    if user.instructions:
        parts.append(f"The user's own instructions:\n<instructions>\n{user.instructions}\n</instructions>")
    thread = "\n\n".join(
        f"<email index=\"{i}\">\n{message.to_prompt()}\n</email>" for i, message in enumerate(messages, 1)
    )
    parts.append(f"The email thread:\n<thread>\n{thread}\n</thread>")
    return "\n\n".join(parts)


async def ai_clean(
    engine: CompletionEngine,
    user: CleanUser,
    messages: list[EmailForLLM],
) -> CleanDecision:
    """
    Decide whether a thread should be archived.

    Args:
        engine: Completion engine to run the call with.
        user: The thread owner; their model settings and email are used.
        messages: The thread's messages, oldest first.

    Returns:
        The model's decision.

    Raises:
        ValueError: If the thread has no messages.
    """
    if not messages:
        raise ValueError("Cannot clean an empty thread")

    result = await engine.generate_structured(
        ObjectRequest.build(
            schema=CleanDecision,
            system=SYSTEM_PROMPT,
            prompt=build_clean_prompt(user, messages),
            user_ai=user.ai,
            user_email=user.email,
            usage_label=CLEAN_USAGE_LABEL,
        )
    )
    decision: CleanDecision = result.object
    logger.info(f"Clean decision for {user.email}: archive={decision.archive} ({decision.reasoning})")
    return decision

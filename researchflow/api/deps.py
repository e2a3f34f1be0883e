from __future__ import annotations

from typing import Any
from uuid import UUID

from researchflow.config import settings
from researchflow.errors import ValidationError
from researchflow.llm_client import get_model
from researchflow.models.research import TOPIC_MAX_LENGTH, Provider


def validate_topic(topic: Any) -> str:
    """Return the trimmed topic or raise a 400."""
    if not isinstance(topic, str) or not topic.strip():
        raise ValidationError("Topic is required and must be a non-empty string")
    topic = topic.strip()
    if len(topic) > TOPIC_MAX_LENGTH:
        raise ValidationError(f"Topic must be at most {TOPIC_MAX_LENGTH} characters")
    return topic


def validate_provider(provider: Any) -> Provider:
    if provider is None:
        return Provider(settings.default_provider)
    try:
        return Provider(provider)
    except ValueError:
        raise ValidationError('Provider must be either "openai" or "anthropic"') from None


def validate_user_id(user_id: Any, *, source: str = "userId") -> UUID | None:
    """Parse the caller's user id; only optional when user scoping is disabled."""
    if user_id in (None, "") and not settings.require_user_scope:
        return None
    if not isinstance(user_id, str):
        raise ValidationError(f"A valid {source} must be provided")
    try:
        return UUID(user_id)
    except ValueError:
        raise ValidationError(f"A valid {source} must be provided") from None


def get_available_providers() -> list[dict[str, str]]:
    """Return the AI providers a research request may select."""
    return [
        {
            "id": Provider.ANTHROPIC.value,
            "name": "Anthropic",
            "model": get_model(Provider.ANTHROPIC),
            "description": "Default provider. Strong at careful, nuanced analysis of sources.",
        },
        {
            "id": Provider.OPENAI.value,
            "name": "OpenAI",
            "model": get_model(Provider.OPENAI),
            "description": "Alternative provider for plan, analysis and summary generation.",
        },
    ]

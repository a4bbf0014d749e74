"""Creation of fresh learning records, including from generated content."""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from polyglot.application.id_service import generate_phrase_id
from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import DEFAULT_DIFFICULTY
from polyglot.domain.errors import PhraseGenerationError
from polyglot.domain.interfaces import ContentGenerator
from polyglot.domain.models import (
    CardState,
    ImportPhrase,
    PhraseEntity,
    SongData,
    ensure_utc,
    validate_phrase_entity,
)

logger = logging.getLogger(__name__)

PHRASE_LIST_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "meaning": {"type": "string"},
            "sentence": {"type": "string"},
            "pronunciation": {"type": "string"},
            "tags": {"type": "array", "items": {"type": "string"}},
            "memo": {"type": "string"},
        },
        "required": ["meaning", "sentence"],
    },
}


def create_phrase_entity(
    meaning: str,
    sentence: str,
    *,
    phrase_id: str | None = None,
    pronunciation: str | None = None,
    tags: list[str] | None = None,
    memo: str | None = None,
    song: SongData | None = None,
    package_id: str | None = None,
    now: datetime | None = None,
) -> PhraseEntity:
    """
    Build a new, unscheduled record.

    Raises:
        PhraseValidationError: If meaning or sentence is blank.
    """
    now = ensure_utc(now or utc_now())
    data: dict[str, Any] = {
        "id": phrase_id or generate_phrase_id(),
        "meaning": meaning,
        "sentence": sentence,
        "pronunciation": pronunciation,
        "tags": list(tags or []),
        "memo": memo,
        "song": song,
        "package_id": package_id,
        "created_at": now,
        "updated_at": now,
        "is_deleted": False,
        "state": CardState.NEW,
        "reps": 0,
        "lapses": 0,
        "difficulty": DEFAULT_DIFFICULTY,
    }
    return validate_phrase_entity({k: v for k, v in data.items() if v is not None})


def phrases_from_import(
    items: list[Any],
    id_factory: Callable[[], str] = generate_phrase_id,
    now: datetime | None = None,
) -> list[PhraseEntity]:
    """
    Validate imported / generated items and turn them into records.

    Raises:
        PhraseGenerationError: On the first invalid item, naming its index.
    """
    phrases = []
    for index, item in enumerate(items):
        try:
            parsed = ImportPhrase.model_validate(item)
        except ValidationError as e:
            raise PhraseGenerationError(f"Invalid phrase at index {index}: {e}") from e
        phrases.append(
            create_phrase_entity(
                parsed.meaning,
                parsed.sentence,
                phrase_id=id_factory(),
                pronunciation=parsed.pronunciation,
                tags=parsed.tags,
                memo=parsed.memo,
                now=now,
            )
        )
    return phrases


async def build_phrases_from_generation(
    generator: ContentGenerator, prompt: str
) -> list[PhraseEntity]:
    """
    Ask the content generator for phrases and validate what comes back.

    Raises:
        PhraseGenerationError: If the generator fails or returns malformed JSON.
    """
    try:
        result = await generator.generate(prompt, PHRASE_LIST_SCHEMA)
    except Exception as e:
        logger.error(f"Content generation failed: {e}")
        raise PhraseGenerationError(f"Content generation failed: {e}") from e

    if isinstance(result, dict) and isinstance(result.get("phrases"), list):
        result = result["phrases"]
    if not isinstance(result, list):
        raise PhraseGenerationError(
            f"Expected a list of phrases, got {type(result).__name__}"
        )

    phrases = phrases_from_import(result)
    logger.info(f"Generated {len(phrases)} phrases")
    return phrases

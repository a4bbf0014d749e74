from itertools import count
from unittest.mock import AsyncMock

import pytest

from polyglot.application.phrase_builder import (
    build_phrases_from_generation,
    create_phrase_entity,
    phrases_from_import,
)
from polyglot.domain.errors import PhraseGenerationError, PhraseValidationError
from polyglot.domain.models import CardState, Unscheduled


def test_create_phrase_entity_is_unscheduled(now):
    phrase = create_phrase_entity("hello", "hola", tags=["greet"], now=now)

    assert phrase.id.startswith("phr_")
    assert phrase.created_at == phrase.updated_at == now
    assert phrase.is_deleted is False
    assert phrase.state == CardState.NEW
    assert (phrase.reps, phrase.lapses, phrase.difficulty) == (0, 0, 0.3)
    assert isinstance(phrase.phase, Unscheduled)
    assert "memo" not in phrase.to_wire()


def test_create_phrase_entity_rejects_blank_text():
    with pytest.raises(PhraseValidationError):
        create_phrase_entity("  ", "hola")


def test_phrases_from_import(now):
    ids = count(1)
    items = [
        {"meaning": "hello", "sentence": "hola", "tags": "greet, basic"},
        {"meaning": "bye", "sentence": "adios"},
    ]

    phrases = phrases_from_import(items, id_factory=lambda: f"phr_{next(ids)}", now=now)

    assert [p.id for p in phrases] == ["phr_1", "phr_2"]
    assert phrases[0].tags == ["greet", "basic"]
    assert phrases[1].tags == []


def test_phrases_from_import_names_bad_index():
    with pytest.raises(PhraseGenerationError, match="index 1"):
        phrases_from_import([{"meaning": "a", "sentence": "b"}, {"meaning": "a"}])


@pytest.mark.asyncio
async def test_build_from_generation_accepts_wrapped_list():
    generator = AsyncMock()
    generator.generate.return_value = {"phrases": [{"meaning": "thanks", "sentence": "gracias"}]}

    phrases = await build_phrases_from_generation(generator, "food phrases")

    assert [p.sentence for p in phrases] == ["gracias"]
    prompt, schema = generator.generate.await_args.args
    assert prompt == "food phrases"
    assert schema["type"] == "array"


@pytest.mark.asyncio
async def test_build_from_generation_wraps_failures():
    generator = AsyncMock()
    generator.generate.side_effect = TimeoutError("slow")
    with pytest.raises(PhraseGenerationError, match="slow"):
        await build_phrases_from_generation(generator, "x")

    generator.generate.side_effect = None
    generator.generate.return_value = "not json"
    with pytest.raises(PhraseGenerationError, match="got str"):
        await build_phrases_from_generation(generator, "x")

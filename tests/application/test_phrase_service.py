from datetime import timedelta, timezone

import pytest

from polyglot.application.merge import unique_phrases
from polyglot.application.phrase_service import (
    PhraseService,
    decode_daily_stats,
    decode_learning_status,
    encode_daily_stats,
    encode_learning_status,
)
from polyglot.application.quiz import QuizItem
from polyglot.application.scheduler import Rating
from polyglot.application.storage_service import StorageService
from polyglot.application.synced_value import SyncedValue
from polyglot.domain.errors import PhraseNotFoundError
from polyglot.domain.models import (
    CardState,
    LearningStatus,
    QuizType,
    dump_phrase_list,
    parse_phrase_list,
)
from polyglot.infrastructure.adapters.local_store import MemoryKeyValueStore


@pytest.fixture
def local():
    return MemoryKeyValueStore()


@pytest.fixture
def service(local, make_phrase):
    storage = StorageService(local)
    phrases = SyncedValue(
        storage,
        "phraseList",
        [make_phrase("a"), make_phrase("b")],
        decode=parse_phrase_list,
        encode=dump_phrase_list,
        transform=unique_phrases,
    )
    daily = SyncedValue(
        storage, "daily_stats_history", {}, decode=decode_daily_stats, encode=encode_daily_stats
    )
    status = SyncedValue(
        storage,
        "learningStatus",
        LearningStatus(),
        decode=decode_learning_status,
        encode=encode_learning_status,
    )
    return PhraseService(phrases, daily, status, tz=timezone.utc)


@pytest.mark.asyncio
async def test_add_persists_and_counts(service, local, now):
    phrase = await service.add("thanks", "gracias", now=now, tags=["basic"])

    assert service.get(phrase.id) == phrase
    stored = await local.get("phraseList")
    assert stored[-1]["sentence"] == "gracias"
    daily = await local.get("daily_stats_history")
    assert daily["2024-03-15"]["addCount"] == 1


@pytest.mark.asyncio
async def test_review_schedules_and_records_activity(service, now):
    reviewed = await service.review("a", Rating.GOOD, now=now)
    await service.review("a", 3, now=now + timedelta(days=1))

    assert reviewed.state == CardState.LEARNING
    assert reviewed.due > now
    assert service.get("a").reps == 2
    today = service.daily_stats.value["2024-03-15"]
    assert today.review_count == 1
    assert today.reviewed_ids == ["a"]
    assert today.updated_at is not None


@pytest.mark.asyncio
async def test_review_unknown_phrase(service):
    with pytest.raises(PhraseNotFoundError, match="'zzz' not found"):
        await service.review("zzz", Rating.GOOD)


@pytest.mark.asyncio
async def test_delete_hides_phrase_and_purge_drops_it(service, now):
    await service.delete("a", now=now)

    assert [p.id for p in service.active()] == ["b"]
    with pytest.raises(PhraseNotFoundError):
        service.get("a")

    assert await service.purge(now=now + timedelta(days=10)) == 0
    assert await service.purge(now=now + timedelta(days=31)) == 1
    assert [p.id for p in service.phrases.value] == ["b"]


@pytest.mark.asyncio
async def test_readd_after_delete_keeps_new_phrase(service, now):
    first = await service.add("hello", "hola", now=now)
    await service.delete(first.id, now=now)

    second = await service.add("hello", "hola", now=now)

    assert service.get(second.id) == second
    assert [p.id for p in service.active()] == ["a", "b", second.id]
    assert any(p.id == first.id and p.is_deleted for p in service.phrases.value)


@pytest.mark.asyncio
async def test_record_quiz_answer(service):
    item = QuizItem("b", QuizType.WRITING, "meaning b", "sentence b")

    status = await service.record_quiz_answer(item, correct=True)

    assert status.completed_ids == ["b"]
    assert status.points == item.points
    (entry,) = service.daily_stats.value.values()
    assert entry.quiz_count == 1


@pytest.mark.asyncio
async def test_works_without_optional_values(make_phrase, local):
    phrases = SyncedValue(
        StorageService(local), "phraseList", [make_phrase("a")], encode=dump_phrase_list
    )
    service = PhraseService(phrases)

    await service.review("a", Rating.EASY)

    assert await service.record_quiz_answer(
        QuizItem("a", QuizType.CLOZE, "q", "a"), correct=False
    ) is None

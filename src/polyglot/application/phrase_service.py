"""
Phrase Service: user-facing operations on the synced phrase collection.

Every mutation goes through the SyncedValue for the phrase list, so it is
persisted locally and pushed to the remote store like any other change.
Reviews, additions and quiz answers also bump today's activity counters.
"""

import logging
from datetime import datetime, tzinfo
from typing import Any

from polyglot.application.lifecycle import (
    filter_active_phrases,
    purge_tombstones,
    soft_delete_phrase,
)
from polyglot.application.phrase_builder import create_phrase_entity
from polyglot.application.quiz import QuizItem, record_quiz_result
from polyglot.application.scheduler import Rating, schedule
from polyglot.application.synced_value import SyncedValue
from polyglot.application.utils.clock import epoch_ms, utc_now
from polyglot.domain.constants import TOMBSTONE_TTL_DAYS
from polyglot.domain.errors import PhraseNotFoundError
from polyglot.domain.models import DailyStats, LearningStatus, PhraseEntity, ensure_utc

logger = logging.getLogger(__name__)


def decode_daily_stats(raw: Any) -> dict[str, DailyStats]:
    return {date: DailyStats.model_validate(entry) for date, entry in (raw or {}).items()}


def encode_daily_stats(stats: dict[str, DailyStats]) -> dict[str, Any]:
    return {date: entry.to_wire() for date, entry in stats.items()}


def decode_learning_status(raw: Any) -> LearningStatus:
    return LearningStatus.model_validate(raw or {})


def encode_learning_status(status: LearningStatus) -> dict[str, Any]:
    return status.to_wire()


class PhraseService:
    def __init__(
        self,
        phrases: SyncedValue[list[PhraseEntity]],
        daily_stats: SyncedValue[dict[str, DailyStats]] | None = None,
        learning_status: SyncedValue[LearningStatus] | None = None,
        tombstone_ttl_days: int = TOMBSTONE_TTL_DAYS,
        tz: tzinfo | None = None,
    ):
        self.phrases = phrases
        self.daily_stats = daily_stats
        self.learning_status = learning_status
        self.tombstone_ttl_days = tombstone_ttl_days
        self.tz = tz

    def active(self) -> list[PhraseEntity]:
        return filter_active_phrases(self.phrases.value)

    def get(self, phrase_id: str) -> PhraseEntity:
        for phrase in self.phrases.value:
            if phrase.id == phrase_id and not phrase.is_deleted:
                return phrase
        raise PhraseNotFoundError(phrase_id)

    async def _replace(self, updated: PhraseEntity) -> None:
        await self.phrases.update(
            lambda items: [updated if p.id == updated.id else p for p in items]
        )

    async def add(
        self, meaning: str, sentence: str, now: datetime | None = None, **fields
    ) -> PhraseEntity:
        phrase = create_phrase_entity(meaning, sentence, now=now, **fields)
        await self.phrases.update(lambda items: [*items, phrase])
        await self._record_activity("add_count", now=now)
        logger.info(f"Added phrase {phrase.id}")
        return phrase

    async def review(
        self, phrase_id: str, rating: Rating | int, now: datetime | None = None
    ) -> PhraseEntity:
        updated = schedule(self.get(phrase_id), rating, now)
        await self._replace(updated)
        await self._record_activity("review_count", phrase_id=phrase_id, now=now)
        logger.debug(
            f"Reviewed {phrase_id}: state={updated.state.value} due in {updated.scheduled_days}d"
        )
        return updated

    async def delete(self, phrase_id: str, now: datetime | None = None) -> PhraseEntity:
        deleted = soft_delete_phrase(self.get(phrase_id), now)
        await self._replace(deleted)
        logger.info(f"Deleted phrase {phrase_id}")
        return deleted

    async def purge(self, now: datetime | None = None) -> int:
        """Drop expired tombstones. Returns how many records were removed."""
        before = self.phrases.value
        kept = purge_tombstones(before, ttl_days=self.tombstone_ttl_days, now=now)
        removed = len(before) - len(kept)
        if removed:
            await self.phrases.set(kept)
            logger.info(f"Purged {removed} expired tombstones")
        return removed

    async def record_quiz_answer(self, item: QuizItem, correct: bool) -> LearningStatus | None:
        await self._record_activity("quiz_count")
        if self.learning_status is None:
            return None
        await self.learning_status.update(lambda s: record_quiz_result(s, item, correct))
        return self.learning_status.value

    async def _record_activity(
        self, counter: str, phrase_id: str | None = None, now: datetime | None = None
    ) -> None:
        if self.daily_stats is None:
            return
        now = ensure_utc(now or utc_now())
        today = now.astimezone(self.tz).date().isoformat()

        def bump(stats: dict[str, DailyStats]) -> dict[str, DailyStats]:
            entry = stats.get(today) or DailyStats(date=today)
            update: dict[str, Any] = {
                counter: getattr(entry, counter) + 1,
                "updated_at": epoch_ms(),
            }
            if phrase_id and phrase_id not in entry.reviewed_ids:
                update["reviewed_ids"] = [*entry.reviewed_ids, phrase_id]
            return {**stats, today: entry.model_copy(update=update)}

        await self.daily_stats.update(bump)
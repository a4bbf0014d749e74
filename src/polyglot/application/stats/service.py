"""
Study Stats Service: application layer orchestrator.

Loads the persisted phrase collection and runs the retention queries on it.
"""

import logging
from datetime import datetime

from polyglot.application.scheduler import retrievability
from polyglot.domain.constants import PHRASE_LIST_KEY
from polyglot.domain.interfaces import KeyValueStore
from polyglot.domain.models import PhraseEntity, parse_phrase_list

from .metrics_calculator import (
    RetentionAnalyzer,
    StudySummary,
    get_due_cards,
    get_forecast,
    get_new_cards,
)

logger = logging.getLogger(__name__)


class StudyStatsService:
    """
    Application service for queue and retention statistics.

    Follows Dependency Inversion: depends on the KeyValueStore abstraction,
    not a concrete adapter.
    """

    def __init__(
        self,
        store: KeyValueStore,
        analyzer: RetentionAnalyzer | None = None,
    ):
        """
        Args:
            store: The local store holding the phrase collection.
            analyzer: Optional custom analyzer; uses default if not provided.
        """
        self._store = store
        self._analyzer = analyzer or RetentionAnalyzer()

    async def load_phrases(self) -> list[PhraseEntity]:
        return parse_phrase_list(await self._store.get(PHRASE_LIST_KEY))

    async def get_summary(self, now: datetime | None = None) -> StudySummary:
        phrases = await self.load_phrases()
        return self._analyzer.summarize(phrases, now=now)

    async def get_due(self, limit: int | None = None) -> list[PhraseEntity]:
        return get_due_cards(await self.load_phrases(), limit=limit)

    async def get_new(self, limit: int | None = None) -> list[PhraseEntity]:
        return get_new_cards(await self.load_phrases(), limit=limit)

    async def get_forecast(self, days: int) -> list[int]:
        return get_forecast(await self.load_phrases(), days, tz=self._analyzer.tz)

    async def get_weak_phrases(
        self,
        stability_threshold: float = 7.0,
        lapse_threshold: int = 1,
        min_retrievability: float = 0.7,
        now: datetime | None = None,
    ) -> list[PhraseEntity]:
        """
        Active phrases with low stability, at least `lapse_threshold` lapses,
        or a current recall probability below `min_retrievability`.
        """

        def is_weak(phrase: PhraseEntity) -> bool:
            if phrase.stability is not None and phrase.stability < stability_threshold:
                return True
            if (phrase.lapses or 0) >= lapse_threshold:
                return True
            recall = retrievability(phrase, now)
            return recall is not None and recall < min_retrievability

        weak = [p for p in await self.load_phrases() if not p.is_deleted and is_weak(p)]
        logger.debug(f"Found {len(weak)} weak phrases")
        return weak

"""
Due-queue and retention queries over a collection of learning records.

This is a pure computation module with no I/O. Every query skips
soft-deleted records.
"""

from dataclasses import dataclass, field
from datetime import datetime, tzinfo

from polyglot.application.scheduler import retrievability
from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import SUMMARY_FORECAST_DAYS
from polyglot.domain.models import CardState, PhraseEntity, ensure_utc


@dataclass(frozen=True)
class RetentionStats:
    total_reviews: int
    total_lapses: int
    retention_rate: float


@dataclass
class StudySummary:
    """Snapshot of a learner's queue, used by the CLI and the HTTP API."""

    active_count: int
    due_count: int
    new_count: int
    retention: RetentionStats
    forecast: list[int] = field(default_factory=list)
    average_retrievability: float | None = None


def get_due_cards(
    phrases: list[PhraseEntity], limit: int | None = None, now: datetime | None = None
) -> list[PhraseEntity]:
    """Records due at or before `now`, most overdue first."""
    now = ensure_utc(now or utc_now())
    due = [p for p in phrases if not p.is_deleted and p.due is not None and p.due <= now]
    due.sort(key=lambda p: p.due)
    return due[:limit] if limit else due


def get_new_cards(phrases: list[PhraseEntity], limit: int | None = None) -> list[PhraseEntity]:
    """Never-reviewed records, in input order."""
    new = [p for p in phrases if not p.is_deleted and p.state == CardState.NEW]
    return new[:limit] if limit else new


def get_forecast(
    phrases: list[PhraseEntity],
    days: int,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> list[int]:
    """
    Count of records falling due on each of the next `days` calendar days.

    Index 0 is today. Day boundaries are calendar dates in `tz` (the system's
    local zone when omitted), compared as dates, so a DST shift never moves a
    card into a neighbouring bucket. Dues before today or past the window are
    ignored.
    """
    if days < 0:
        raise ValueError("days must be non-negative")

    now = ensure_utc(now or utc_now())
    today = now.astimezone(tz).date()
    forecast = [0] * days

    for phrase in phrases:
        if phrase.is_deleted or phrase.due is None:
            continue
        day_diff = (phrase.due.astimezone(tz).date() - today).days
        if 0 <= day_diff < days:
            forecast[day_diff] += 1

    return forecast


def get_retention_stats(phrases: list[PhraseEntity]) -> RetentionStats:
    """
    Aggregate review effort over live records.

    retention_rate = (reviews - lapses) / reviews, or 0 when nothing was reviewed.
    """
    active = [p for p in phrases if not p.is_deleted]
    total_reviews = sum(p.reps or 0 for p in active)
    total_lapses = sum(p.lapses or 0 for p in active)
    rate = (total_reviews - total_lapses) / total_reviews if total_reviews > 0 else 0.0
    return RetentionStats(
        total_reviews=total_reviews, total_lapses=total_lapses, retention_rate=rate
    )


class RetentionAnalyzer:
    """
    Bundles the queue queries into one summary.

    Stateless and side-effect free.
    """

    def __init__(self, forecast_days: int = SUMMARY_FORECAST_DAYS, tz: tzinfo | None = None):
        self.forecast_days = forecast_days
        self.tz = tz

    def summarize(self, phrases: list[PhraseEntity], now: datetime | None = None) -> StudySummary:
        now = ensure_utc(now or utc_now())
        active = [p for p in phrases if not p.is_deleted]
        return StudySummary(
            active_count=len(active),
            due_count=len(get_due_cards(active, now=now)),
            new_count=len(get_new_cards(active)),
            retention=get_retention_stats(active),
            forecast=get_forecast(active, self.forecast_days, now=now, tz=self.tz),
            average_retrievability=self._average_retrievability(active, now),
        )

    def _average_retrievability(
        self, phrases: list[PhraseEntity], now: datetime
    ) -> float | None:
        values = [r for r in (retrievability(p, now) for p in phrases) if r is not None]
        if not values:
            return None
        return sum(values) / len(values)

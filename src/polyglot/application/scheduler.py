"""
FSRS-style scheduling engine.

Computes the next review state of a learning record from a user rating.
This is a pure computation module with no I/O; the only impure input is
the current time, which callers may pass explicitly.
"""

import math
from datetime import datetime, timedelta
from enum import IntEnum

from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import (
    DEFAULT_STABILITY,
    DIFFICULTY_STEP,
    EASY_BONUS,
    FSRS_WEIGHTS,
    HARD_PENALTY,
    MAXIMUM_INTERVAL,
    MINIMUM_STABILITY,
    REQUEST_RETENTION,
)
from polyglot.domain.models import (
    CardState,
    PhraseEntity,
    Scheduled,
    Unscheduled,
    ensure_utc,
)

SECONDS_PER_DAY = 86400.0


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def next_difficulty(difficulty: float, rating: Rating) -> float:
    """Easy lowers difficulty, Again/Hard raise it. Always within [0, 1]."""
    return clamp(difficulty - (rating - 3) * DIFFICULTY_STEP, 0.0, 1.0)


def next_stability(
    stability: float | None, difficulty: float, rating: Rating, elapsed_days: int
) -> float:
    """
    Compute the post-review stability.

    Args:
        stability: Current stability, or None for a never-reviewed card (prior of 1 day).
        difficulty: The already-updated difficulty.
        rating: The user's rating.
        elapsed_days: Whole days since the last review.
    """
    s = stability if stability is not None else DEFAULT_STABILITY
    d = difficulty

    if rating == Rating.AGAIN:
        return max(MINIMUM_STABILITY, s * 0.2 * (1 + 0.1 * d))

    w = FSRS_WEIGHTS
    r = elapsed_days / s
    hard = HARD_PENALTY if rating == Rating.HARD else 1.0
    easy = EASY_BONUS if rating == Rating.EASY else 1.0

    growth = (
        math.exp(w[8])
        * (11 - d)
        * math.pow(s, -w[9])
        * (math.exp((1 - r) * w[10]) - 1)
        * hard
        * easy
    )
    return clamp(s * (1 + growth), MINIMUM_STABILITY, MAXIMUM_INTERVAL)


def interval_days(stability: float, request_retention: float = REQUEST_RETENTION) -> int:
    """Inverse power-law interval for the target retention. Always at least one day."""
    interval = stability / math.pow(-math.log(request_retention), 1 / FSRS_WEIGHTS[4]) * 9
    # Round half up.
    return max(1, math.floor(interval + 0.5))


def next_state(current: CardState | None, rating: Rating) -> CardState:
    if rating == Rating.AGAIN:
        return CardState.LEARNING if current == CardState.NEW else CardState.RELEARNING

    if current is None or current == CardState.NEW:
        return CardState.LEARNING

    if current in (CardState.LEARNING, CardState.RELEARNING):
        return CardState.REVIEW if rating >= Rating.GOOD else current

    return CardState.REVIEW


def elapsed_whole_days(last_review: datetime | None, now: datetime) -> int:
    if last_review is None:
        return 0
    seconds = (ensure_utc(now) - ensure_utc(last_review)).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def schedule(
    phrase: PhraseEntity, rating: Rating | int, now: datetime | None = None
) -> PhraseEntity:
    """
    Produce the next version of `phrase` after a review with `rating`.

    The input record is left untouched.

    Raises:
        ValueError: If `rating` is not 1-4.
    """
    rating = Rating(rating)
    now = ensure_utc(now or utc_now())

    phase = phrase.phase
    if isinstance(phase, Scheduled):
        stability: float | None = phase.stability
        last_review = phase.last_review
    else:
        stability = None
        last_review = None

    elapsed = elapsed_whole_days(last_review, now)
    difficulty = next_difficulty(phase.difficulty, rating)
    stability = next_stability(stability, difficulty, rating, elapsed)
    scheduled = interval_days(stability)

    reps = phrase.reps or 0
    lapses = phrase.lapses or 0
    failed = rating == Rating.AGAIN

    return phrase.model_copy(
        update={
            "stability": stability,
            "difficulty": difficulty,
            "elapsed_days": elapsed,
            "scheduled_days": scheduled,
            "reps": reps if failed else reps + 1,
            "lapses": lapses + 1 if failed else lapses,
            "state": next_state(phrase.state, rating),
            "due": now + timedelta(days=scheduled),
            "last_review": now,
            "updated_at": now,
        }
    )


def retrievability(phrase: PhraseEntity, now: datetime | None = None) -> float | None:
    """
    Current recall probability.

    R = 0.9^(t/S) where t = days since last review, S = stability.
    """
    phase = phrase.phase
    if isinstance(phase, Unscheduled) or phase.last_review is None:
        return None

    now = ensure_utc(now or utc_now())
    days = max(0.0, (now - phase.last_review).total_seconds() / SECONDS_PER_DAY)
    return REQUEST_RETENTION ** (days / phase.stability)

"""
Merge engine for reconciling local and remote copies of learning records.

Counters (reps, lapses) are max-wins so review effort never regresses.
Everything else is last-write-wins on `updated_at`: stability, due and
state form one point-in-time belief about a card and are never blended.

This is a pure computation module with no I/O.
"""

import logging
from dataclasses import dataclass

from polyglot.domain.models import DailyStats, PhraseEntity

logger = logging.getLogger(__name__)

SCHEDULING_FIELDS = (
    "stability",
    "difficulty",
    "scheduled_days",
    "elapsed_days",
    "state",
    "due",
    "last_review",
)


@dataclass(frozen=True)
class FSRSMergeResult:
    merged: PhraseEntity
    has_conflict: bool


def _max_counter(local: int | None, remote: int | None) -> tuple[int | None, bool]:
    """Max-wins; a missing side takes the other's value. Returns (value, conflict)."""
    if local is None:
        return remote, False
    if remote is None:
        return local, False
    return max(local, remote), local != remote


def _remote_is_newer(local: PhraseEntity, remote: PhraseEntity) -> bool:
    return remote.updated_at > local.updated_at


def merge_fsrs_fields(local: PhraseEntity, remote: PhraseEntity) -> FSRSMergeResult:
    """
    Reconcile two versions of the same record.

    The newer record (by `updated_at`, ties keep local) is the base for
    content and scheduling fields; a scheduling field the newer side lacks
    falls back to the older side's value. `reps` and `lapses` are max-wins
    regardless of which side is newer.
    """
    reps, reps_conflict = _max_counter(local.reps, remote.reps)
    lapses, lapses_conflict = _max_counter(local.lapses, remote.lapses)
    has_conflict = reps_conflict or lapses_conflict

    update: dict = {"reps": reps, "lapses": lapses}
    if _remote_is_newer(local, remote):
        base = remote
        for name in SCHEDULING_FIELDS:
            if getattr(remote, name) is None:
                update[name] = getattr(local, name)
    else:
        base = local

    if has_conflict:
        logger.debug(
            f"[merge] counter conflict on {local.id}: "
            f"reps {local.reps}/{remote.reps} lapses {local.lapses}/{remote.lapses}"
        )

    return FSRSMergeResult(merged=base.model_copy(update=update), has_conflict=has_conflict)


def merge_phrase_lists(
    local: list[PhraseEntity], remote: list[PhraseEntity]
) -> list[PhraseEntity]:
    """
    Union of two collections keyed by `id`.

    Local order is kept, remote-only records follow in remote order. For ids
    present on both sides the newer record wins wholesale, then `reps` and
    `lapses` are overlaid with the max of both sides.
    """
    remote_by_id = {p.id: p for p in remote}
    merged: list[PhraseEntity] = []
    conflicts = 0

    for local_phrase in local:
        remote_phrase = remote_by_id.pop(local_phrase.id, None)
        if remote_phrase is None:
            merged.append(local_phrase)
            continue

        base = remote_phrase if _remote_is_newer(local_phrase, remote_phrase) else local_phrase
        reps, reps_conflict = _max_counter(local_phrase.reps, remote_phrase.reps)
        lapses, lapses_conflict = _max_counter(local_phrase.lapses, remote_phrase.lapses)
        if reps_conflict or lapses_conflict:
            conflicts += 1

        if reps == base.reps and lapses == base.lapses:
            merged.append(base)
        else:
            merged.append(base.model_copy(update={"reps": reps, "lapses": lapses}))

    merged.extend(remote_by_id.values())

    if conflicts:
        logger.debug(f"[merge] {conflicts} counter conflicts resolved max-wins")
    return merged


def content_key(phrase: PhraseEntity) -> tuple[str, str]:
    return phrase.sentence.strip().lower(), phrase.meaning.strip().lower()


def unique_phrases(phrases: list[PhraseEntity]) -> list[PhraseEntity]:
    """
    Drop records whose id, or whose normalized (sentence, meaning) pair,
    was already seen. The first occurrence wins.

    Tombstones are deduplicated by id only, so a deleted record never
    shadows a live one with the same content.
    """
    seen_ids: set[str] = set()
    seen_content: set[tuple[str, str]] = set()
    result = []
    for phrase in phrases:
        if phrase.id in seen_ids:
            continue
        if not phrase.is_deleted:
            key = content_key(phrase)
            if key in seen_content:
                continue
            seen_content.add(key)
        seen_ids.add(phrase.id)
        result.append(phrase)

    if len(result) < len(phrases):
        logger.info(f"[merge] removed {len(phrases) - len(result)} duplicate phrases")
    return result


def merge_daily_stats(
    local: dict[str, DailyStats], remote: dict[str, DailyStats]
) -> dict[str, DailyStats]:
    """Per-day last-write-wins on the entry's epoch-ms `updated_at`."""
    merged = dict(local)
    for date, remote_entry in remote.items():
        local_entry = merged.get(date)
        if local_entry is None:
            merged[date] = remote_entry
        elif (remote_entry.updated_at or 0) > (local_entry.updated_at or 0):
            merged[date] = remote_entry
    return merged

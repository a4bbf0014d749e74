"""Soft delete, timestamp bumps and tombstone expiry for learning records."""

import json
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, TypeVar

from pydantic import BaseModel

from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import TOMBSTONE_TTL_DAYS
from polyglot.domain.models import EPOCH, PhraseEntity, ensure_utc

T = TypeVar("T")


def soft_delete_phrase(phrase: PhraseEntity, now: datetime | None = None) -> PhraseEntity:
    """Tombstone a record; it is purged only once the TTL has passed."""
    now = ensure_utc(now or utc_now())
    return phrase.model_copy(update={"is_deleted": True, "deleted_at": now, "updated_at": now})


def update_phrase_timestamp(phrase: PhraseEntity, now: datetime | None = None) -> PhraseEntity:
    """Bump `updated_at` after a content edit."""
    return phrase.model_copy(update={"updated_at": ensure_utc(now or utc_now())})


def purge_tombstones(
    phrases: list[PhraseEntity],
    ttl_days: int = TOMBSTONE_TTL_DAYS,
    now: datetime | None = None,
) -> list[PhraseEntity]:
    """
    Drop tombstones deleted more than `ttl_days` ago.

    Tombstones without `deleted_at` are kept: their age is unknown.
    """
    cutoff = ensure_utc(now or utc_now()) - timedelta(days=ttl_days)
    return [
        p
        for p in phrases
        if not p.is_deleted or p.deleted_at is None or p.deleted_at > cutoff
    ]


def filter_active_phrases(phrases: list[PhraseEntity]) -> list[PhraseEntity]:
    return [p for p in phrases if not p.is_deleted]


def _item_key(item: Any) -> str:
    if isinstance(item, BaseModel):
        item_id = getattr(item, "id", None)
        if item_id:
            return str(item_id)
        return item.model_dump_json()
    if isinstance(item, dict) and item.get("id"):
        return str(item["id"])
    return json.dumps(item, sort_keys=True, default=str)


def _item_time(item: Any) -> datetime:
    if isinstance(item, dict):
        raw = item.get("updatedAt")
    else:
        raw = getattr(item, "updated_at", None)

    if raw is None:
        return EPOCH
    if isinstance(raw, datetime):
        return ensure_utc(raw)
    if isinstance(raw, (int, float)):
        return EPOCH + timedelta(milliseconds=raw)
    return ensure_utc(datetime.fromisoformat(str(raw)))


def last_write_wins(local: Sequence[T], remote: Sequence[T]) -> list[T]:
    """
    Generic keyed merge: a remote item replaces the local one only when its
    `updatedAt` is strictly newer.

    Items are keyed by `id`, or by their full value when they have none.
    Works on pydantic models and on plain JSON dicts.
    """
    merged: dict[str, T] = {}
    for item in local:
        merged[_item_key(item)] = item

    for remote_item in remote:
        key = _item_key(remote_item)
        local_item = merged.get(key)
        if local_item is None or _item_time(remote_item) > _item_time(local_item):
            merged[key] = remote_item

    return list(merged.values())

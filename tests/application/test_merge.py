import time
from datetime import timedelta

from polyglot.application.merge import (
    merge_daily_stats,
    merge_fsrs_fields,
    merge_phrase_lists,
    unique_phrases,
)
from polyglot.domain.models import CardState, DailyStats


def test_counters_max_wins_and_newer_side_is_base(make_phrase, now):
    t1 = now - timedelta(hours=2)
    t2 = now - timedelta(hours=1)
    local = [make_phrase(id="A", reps=10, lapses=2, updated_at=t1, meaning="old", stability=9.0)]
    remote = [
        make_phrase(
            id="A",
            reps=7,
            lapses=5,
            updated_at=t2,
            meaning="new",
            stability=3.0,
            state=CardState.RELEARNING,
        )
    ]

    merged = merge_phrase_lists(local, remote)

    assert len(merged) == 1
    assert merged[0].reps == 10
    assert merged[0].lapses == 5
    assert merged[0].meaning == "new"
    assert merged[0].stability == 3.0
    assert merged[0].state == CardState.RELEARNING
    assert merged[0].updated_at == t2


def test_local_wins_ties(make_phrase, now):
    local = make_phrase(id="A", meaning="local", updated_at=now)
    remote = make_phrase(id="A", meaning="remote", updated_at=now)
    assert merge_fsrs_fields(local, remote).merged.meaning == "local"


def test_merge_with_itself_is_identity(make_phrase, now):
    phrase = make_phrase(id="A", reps=3, lapses=1, state=CardState.REVIEW, stability=4.0, due=now)

    result = merge_fsrs_fields(phrase, phrase)

    assert result.merged == phrase
    assert result.has_conflict is False
    assert merge_phrase_lists([phrase], [phrase]) == [phrase]


def test_merge_reports_counter_conflict(make_phrase, now):
    local = make_phrase(id="A", reps=4, updated_at=now)
    remote = make_phrase(id="A", reps=6, updated_at=now - timedelta(days=1))

    result = merge_fsrs_fields(local, remote)

    assert result.has_conflict is True
    assert result.merged.reps == 6


def test_missing_scheduling_field_falls_back_to_older_side(make_phrase, now):
    local = make_phrase(id="A", stability=12.0, state=CardState.REVIEW, updated_at=now - timedelta(days=1))
    remote = make_phrase(id="A", stability=None, state=CardState.REVIEW, updated_at=now)

    merged = merge_fsrs_fields(local, remote).merged

    assert merged.stability == 12.0


def test_union_keeps_local_order_then_remote_only(make_phrase):
    local = [make_phrase(id="b"), make_phrase(id="a")]
    remote = [make_phrase(id="c"), make_phrase(id="a"), make_phrase(id="d")]

    assert [p.id for p in merge_phrase_lists(local, remote)] == ["b", "a", "c", "d"]


def test_large_merge_is_fast(make_phrase):
    base = make_phrase(id="template")
    local = [base.model_copy(update={"id": f"id{i}", "reps": i % 7}) for i in range(5000)]
    remote = [base.model_copy(update={"id": f"id{i}", "reps": i % 5}) for i in range(2500, 7500)]

    start = time.perf_counter()
    merged = merge_phrase_lists(local, remote)
    elapsed = time.perf_counter() - start

    assert len(merged) == 7500
    assert len({p.id for p in merged}) == 7500
    assert elapsed < 1.0
    for p in merged:
        i = int(p.id[2:])
        local_reps = i % 7 if i < 5000 else 0
        remote_reps = i % 5 if i >= 2500 else 0
        assert p.reps == max(local_reps, remote_reps)


def test_unique_phrases_by_id_and_content(make_phrase):
    phrases = [
        make_phrase(id="1", sentence="Hola", meaning="Hello"),
        make_phrase(id="1", sentence="other", meaning="other"),
        make_phrase(id="2", sentence="  hola ", meaning="HELLO"),
        make_phrase(id="3", sentence="adios", meaning="bye"),
    ]

    assert [p.id for p in unique_phrases(phrases)] == ["1", "3"]


def test_merge_daily_stats():
    local = {
        "2024-03-01": DailyStats(date="2024-03-01", review_count=5, updated_at=200),
        "2024-03-02": DailyStats(date="2024-03-02", review_count=1, updated_at=100),
    }
    remote = {
        "2024-03-01": DailyStats(date="2024-03-01", review_count=2, updated_at=100),
        "2024-03-02": DailyStats(date="2024-03-02", review_count=9, updated_at=300),
        "2024-03-03": DailyStats(date="2024-03-03", add_count=4),
    }

    merged = merge_daily_stats(local, remote)

    assert merged["2024-03-01"].review_count == 5
    assert merged["2024-03-02"].review_count == 9
    assert merged["2024-03-03"].add_count == 4


def test_unique_phrases_tombstone_does_not_shadow_live_record(make_phrase):
    phrases = [
        make_phrase(id="old", sentence="Hola", meaning="Hello", is_deleted=True),
        make_phrase(id="new", sentence="hola", meaning="hello"),
        make_phrase(id="dup", sentence="HOLA ", meaning="Hello"),
    ]

    assert [p.id for p in unique_phrases(phrases)] == ["old", "new"]

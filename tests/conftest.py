from datetime import datetime, timedelta, timezone

import pytest

from polyglot.domain.models import CardState, PhraseEntity

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_phrase():
    """Factory for v2 records with sensible defaults; keyword args override."""

    def _make(id="p1", **overrides) -> PhraseEntity:
        data = {
            "id": id,
            "meaning": f"meaning {id}",
            "sentence": f"sentence {id}",
            "created_at": NOW - timedelta(days=10),
            "updated_at": NOW - timedelta(days=1),
            "is_deleted": False,
            "state": CardState.NEW,
            "reps": 0,
            "lapses": 0,
            "difficulty": 0.3,
        }
        data.update(overrides)
        return PhraseEntity(**data)

    return _make


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config files
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("POLYGLOT_REMOTE_URL", "POLYGLOT_USER_ID", "POLYGLOT_DATA_DIR", "POLYGLOT_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)

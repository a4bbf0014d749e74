"""Tests for CLI commands: help, phrase study commands, migrate, sync and config."""

import json
import re
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from polyglot.application.factory import build_services
from polyglot.infrastructure.adapters.remote_store import MemoryDocumentStore
from polyglot.interface.cli import app

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path, mock_home):
    path = tmp_path / "data"
    path.mkdir()
    return path


def invoke(data_dir, *args, **kwargs):
    return runner.invoke(app, ["--data-dir", str(data_dir), *args], **kwargs)


def add_phrase(data_dir, meaning="hello", sentence="hola") -> str:
    result = invoke(data_dir, "add", meaning, sentence, "--tags", "greet, basic")
    assert result.exit_code == 0, result.stdout
    return re.search(r"Added (phr_\w+)", result.stdout).group(1)


# --- Help ---


def test_cli_help():
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "polyglot: spaced-repetition phrase study" in result.stdout
    assert "review" in result.stdout
    assert "sync" in result.stdout


# --- Study commands ---


def test_add_then_review(data_dir):
    phrase_id = add_phrase(data_dir)

    stored = json.loads((data_dir / "phraseList.json").read_text())
    assert stored[0]["id"] == phrase_id
    assert stored[0]["tags"] == ["greet", "basic"]

    result = invoke(data_dir, "review", phrase_id, "good")
    assert result.exit_code == 0
    assert f"{phrase_id}: learning, next review in" in result.stdout

    stored = json.loads((data_dir / "phraseList.json").read_text())
    assert stored[0]["reps"] == 1


def test_add_rejects_blank_text(data_dir):
    result = invoke(data_dir, "add", " ", "hola")
    assert result.exit_code == 1
    assert "Invalid phrase" in result.stdout


def test_review_rejects_bad_rating(data_dir):
    result = invoke(data_dir, "review", "phr_x", "7")
    assert result.exit_code == 2


def test_review_unknown_phrase(data_dir):
    result = invoke(data_dir, "review", "phr_missing", "3")
    assert result.exit_code == 1
    assert "Phrase 'phr_missing' not found" in result.stdout


def test_due_and_forecast(data_dir):
    add_phrase(data_dir)

    result = invoke(data_dir, "due")
    assert result.exit_code == 0
    assert "Nothing due." in result.stdout

    result = invoke(data_dir, "forecast", "--days", "3")
    assert result.exit_code == 0
    assert result.stdout.splitlines()[0].strip().startswith("today")
    assert len(result.stdout.splitlines()) == 3


def test_stats_json(data_dir):
    phrase_id = add_phrase(data_dir)
    add_phrase(data_dir, "bye", "adios")
    invoke(data_dir, "review", phrase_id, "again")

    result = invoke(data_dir, "stats", "--json")

    assert result.exit_code == 0
    summary = json.loads(result.stdout)
    assert summary["active_count"] == 2
    assert summary["new_count"] == 1
    assert summary["retention"]["total_lapses"] == 1
    assert len(summary["forecast"]) == 7


def test_delete_and_purge(data_dir):
    phrase_id = add_phrase(data_dir)

    result = invoke(data_dir, "delete", phrase_id)
    assert result.exit_code == 0

    stored = json.loads((data_dir / "phraseList.json").read_text())
    assert stored[0]["isDeleted"] is True

    result = invoke(data_dir, "purge")
    assert "Purged 0 tombstone(s)." in result.stdout

    result = invoke(data_dir, "delete", phrase_id)
    assert result.exit_code == 1


def test_quiz_session(data_dir):
    add_phrase(data_dir)

    result = invoke(data_dir, "quiz", input="no idea\n")

    assert result.exit_code == 0
    assert "Session points:" in result.stdout
    status = json.loads((data_dir / "learningStatus.json").read_text())
    assert len(status["completedIds"]) + len(status["incorrectIds"]) == 1


def test_quiz_without_phrases(data_dir):
    result = invoke(data_dir, "quiz")
    assert result.exit_code == 0
    assert "No phrases to quiz yet" in result.stdout


# --- Migrate ---


def test_migrate_legacy_store(data_dir):
    legacy = [
        {"id": "a1b2", "meaning": "hello", "sentence": "hola"},
        {"id": "c3d4", "meaning": "bye", "sentence": "adios"},
    ]
    (data_dir / "phraseList.json").write_text(json.dumps(legacy))

    result = invoke(data_dir, "migrate")
    assert result.exit_code == 0
    assert "Migrated 2 legacy phrases." in result.stdout

    metadata = json.loads((data_dir / "storageMetadata.json").read_text())
    assert metadata["schemaVersion"] == 2

    result = invoke(data_dir, "migrate")
    assert "already at schema v2" in result.stdout


def test_commands_migrate_first(data_dir):
    legacy = [{"id": "a1b2", "meaning": "hello", "sentence": "hola"}]
    (data_dir / "phraseList.json").write_text(json.dumps(legacy))

    result = invoke(data_dir, "due")

    assert "Migrated 1 legacy phrases." in result.stdout
    assert json.loads((data_dir / "migrationMap.json").read_text())["a1b2"].startswith("phr_")


# --- Sync ---


def test_sync_retry_local_only(data_dir):
    result = invoke(data_dir, "sync", "retry")
    assert result.exit_code == 0
    assert "not configured" in result.stdout


def test_sync_status_lists_queue(data_dir):
    (data_dir / "sync-retry-queue.json").write_text(
        json.dumps(
            [{"key": "phraseList", "value": [], "timestamp": 0, "retryCount": 2, "lastError": "x"}]
        )
    )

    result = invoke(data_dir, "sync", "status")

    assert result.exit_code == 0
    assert "phraseList  attempts=2  last_error=x" in result.stdout


def test_add_keeps_records_made_on_other_devices(data_dir, monkeypatch, make_phrase):
    remote = MemoryDocumentStore()
    remote.documents["users/u1/data/phraseList"] = {
        "value": [make_phrase("phr_other_device").to_wire()],
        "schemaVersion": 2,
    }
    monkeypatch.setenv("POLYGLOT_USER_ID", "u1")

    with patch(
        "polyglot.interface.cli.build_services",
        side_effect=lambda config: build_services(config, remote=remote),
    ):
        phrase_id = add_phrase(data_dir)

    pushed = remote.documents["users/u1/data/phraseList"]["value"]
    assert [p["id"] for p in pushed] == ["phr_other_device", phrase_id]
    stored = json.loads((data_dir / "phraseList.json").read_text())
    assert [p["id"] for p in stored] == ["phr_other_device", phrase_id]


# --- Config & server ---


def test_config_show(data_dir):
    result = invoke(data_dir, "config", "show")

    assert result.exit_code == 0
    output_data = json.loads(result.stdout)
    assert output_data["data_dir"] == str(data_dir.resolve())
    assert output_data["remote_url"] is None


@patch("uvicorn.run")
def test_serve_command(mock_run):
    result = runner.invoke(app, ["serve", "--port", "9000"])
    assert result.exit_code == 0
    mock_run.assert_called_with("polyglot.server:app", host="127.0.0.1", port=9000)

import pytest

from polyglot.application.config import AppConfig
from polyglot.application.factory import build_services
from polyglot.domain.constants import PHRASE_LIST_KEY
from polyglot.infrastructure.adapters.local_store import (
    JsonFileKeyValueStore,
    MemoryKeyValueStore,
)
from polyglot.infrastructure.adapters.remote_store import HttpDocumentStore, MemoryDocumentStore


def test_local_only_wiring(tmp_path):
    services = build_services(AppConfig(data_dir=tmp_path))

    assert isinstance(services.store, JsonFileKeyValueStore)
    assert services.store.root == tmp_path.resolve()
    assert services.remote is None
    assert services.storage.cloud_enabled is False
    assert services.tz is None


def test_cloud_wiring_from_config(tmp_path):
    config = AppConfig(
        data_dir=tmp_path,
        remote_url="https://sync.example.com",
        user_id="u1",
        timezone="Asia/Tokyo",
        max_retries=3,
    )

    services = build_services(config)

    assert isinstance(services.remote, HttpDocumentStore)
    assert services.remote.base_url == "https://sync.example.com"
    assert services.storage.cloud_enabled
    assert services.retry_queue.max_retries == 3
    assert str(services.tz) == "Asia/Tokyo"


@pytest.mark.asyncio
async def test_phrase_service_round_trip(tmp_path, now):
    store = MemoryKeyValueStore()
    remote = MemoryDocumentStore()
    config = AppConfig(data_dir=tmp_path, user_id="u1", debounce_seconds=60)
    services = build_services(config, store=store, remote=remote)

    phrases = await services.open_phrase_service(attach=True)
    added = await phrases.add("hello", "hola", now=now)
    await services.close_phrase_service(phrases)
    await services.aclose()

    assert (await store.get(PHRASE_LIST_KEY))[0]["id"] == added.id
    assert remote.documents["users/u1/data/phraseList"]["value"][0]["id"] == added.id
    assert "users/u1/data/daily_stats_history" in remote.documents


@pytest.mark.asyncio
async def test_detached_service_merges_remote_before_pushing(tmp_path, now, make_phrase):
    store = MemoryKeyValueStore()
    remote = MemoryDocumentStore()
    await remote.write(
        "users/u1/data/phraseList",
        [make_phrase("remote-only").to_wire()],
        {"schemaVersion": 2},
    )
    config = AppConfig(data_dir=tmp_path, user_id="u1", debounce_seconds=60)
    services = build_services(config, store=store, remote=remote)

    phrases = await services.open_phrase_service()
    assert [p.id for p in phrases.active()] == ["remote-only"]

    added = await phrases.add("hello", "hola", now=now)
    await services.close_phrase_service(phrases)
    await services.aclose()

    pushed = remote.documents["users/u1/data/phraseList"]["value"]
    assert [p["id"] for p in pushed] == ["remote-only", added.id]
    assert [p["id"] for p in await store.get(PHRASE_LIST_KEY)] == ["remote-only", added.id]

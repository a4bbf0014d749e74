from unittest.mock import AsyncMock, MagicMock

import pytest

from polyglot.application.retry_queue import RetryQueue, calculate_backoff, should_retry
from polyglot.domain.constants import RETRY_QUEUE_KEY
from polyglot.domain.models import RetryItem
from polyglot.infrastructure.adapters.local_store import MemoryKeyValueStore


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def queue(store, sleep):
    return RetryQueue(store, sleep=sleep)


def test_backoff():
    assert [calculate_backoff(n) for n in range(4)] == [1000, 2000, 4000, 8000]
    assert calculate_backoff(5) == 30000
    assert calculate_backoff(10) == 30000


def test_should_retry():
    assert should_retry(RetryItem(key="k", timestamp=0, retry_count=4))
    assert not should_retry(RetryItem(key="k", timestamp=0, retry_count=5))


@pytest.mark.asyncio
async def test_add_twice_upserts(queue, store):
    await queue.add("k", {"v": 1}, "err")
    await queue.add("k", {"v": 2}, "err again")

    items = await queue.get_queue()
    assert len(items) == 1
    assert items[0].retry_count == 1
    assert items[0].value == {"v": 2}
    assert items[0].last_error == "err again"

    raw = await store.get(RETRY_QUEUE_KEY)
    assert raw[0]["retryCount"] == 1


@pytest.mark.asyncio
async def test_process_delivers_and_removes(queue, sleep):
    await queue.add("a", 1)
    await queue.add("b", 2)
    op = AsyncMock()
    progress = MagicMock()

    result = await queue.process(op, on_progress=progress)

    assert (result.success, result.failed) == (2, 0)
    assert await queue.get_queue() == []
    op.assert_any_await("a", 1)
    op.assert_any_await("b", 2)
    sleep.assert_awaited_with(1.0)
    progress.assert_called_with(2, 2)


@pytest.mark.asyncio
async def test_process_requeues_failures_with_backoff(queue, sleep):
    await queue.add("a", 1)
    await queue.add("a", 1)  # retry_count 1
    op = AsyncMock(side_effect=ConnectionError("offline"))

    result = await queue.process(op)

    assert (result.success, result.failed) == (0, 1)
    sleep.assert_awaited_once_with(2.0)
    items = await queue.get_queue()
    assert items[0].retry_count == 2
    assert items[0].last_error == "offline"


@pytest.mark.asyncio
async def test_process_drops_exhausted_items(queue, store):
    await store.set(
        RETRY_QUEUE_KEY,
        [{"key": "dead", "value": 1, "timestamp": 0, "retryCount": 5, "lastError": "boom"}],
    )
    op = AsyncMock()
    dropped = MagicMock()

    result = await queue.process(op, on_drop=dropped)

    assert (result.success, result.failed) == (0, 1)
    op.assert_not_awaited()
    assert await queue.get_queue() == []
    assert dropped.call_args.args[0].key == "dead"


@pytest.mark.asyncio
async def test_empty_queue(queue):
    result = await queue.process(AsyncMock())
    assert (result.success, result.failed) == (0, 0)


def newer_write_during_backoff(queue):
    async def sleep(_seconds):
        await queue.add("phraseList", {"v": "new"}, "offline")

    return sleep


@pytest.mark.asyncio
async def test_process_keeps_entry_replaced_during_delivery(store):
    queue = RetryQueue(store)
    queue._sleep = newer_write_during_backoff(queue)
    await queue.add("phraseList", {"v": "old"})
    op = AsyncMock()

    result = await queue.process(op)

    assert result.success == 1
    op.assert_awaited_once_with("phraseList", {"v": "old"})
    items = await queue.get_queue()
    assert [item.value for item in items] == [{"v": "new"}]


@pytest.mark.asyncio
async def test_failed_delivery_does_not_overwrite_newer_entry(store):
    queue = RetryQueue(store)
    queue._sleep = newer_write_during_backoff(queue)
    await queue.add("phraseList", {"v": "old"})
    op = AsyncMock(side_effect=ConnectionError("offline"))

    result = await queue.process(op)

    assert result.failed == 1
    items = await queue.get_queue()
    assert len(items) == 1
    assert items[0].value == {"v": "new"}
    assert items[0].retry_count == 1

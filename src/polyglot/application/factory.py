"""
Service Factory
Centralizes the wiring of stores, sync services and their configuration.
"""

import logging
from dataclasses import dataclass
from datetime import tzinfo
from zoneinfo import ZoneInfo

from polyglot.application.config import AppConfig
from polyglot.application.merge import merge_daily_stats, merge_phrase_lists, unique_phrases
from polyglot.application.migration_service import MigrationService
from polyglot.application.phrase_service import (
    PhraseService,
    decode_daily_stats,
    decode_learning_status,
    encode_daily_stats,
    encode_learning_status,
)
from polyglot.application.retry_queue import RetryQueue
from polyglot.application.stats import RetentionAnalyzer, StudyStatsService
from polyglot.application.storage_service import StorageService
from polyglot.application.sync_errors import SyncErrorService, ThrottledErrorReporter
from polyglot.application.sync_retry import OnlineSignal, SyncRetryRunner
from polyglot.application.synced_value import SyncedValue
from polyglot.domain.constants import DAILY_STATS_KEY, LEARNING_STATUS_KEY, PHRASE_LIST_KEY
from polyglot.domain.interfaces import KeyValueStore, RemoteDocumentStore
from polyglot.domain.models import (
    DailyStats,
    LearningStatus,
    PhraseEntity,
    dump_phrase_list,
    parse_phrase_list,
)
from polyglot.infrastructure.adapters.local_store import JsonFileKeyValueStore
from polyglot.infrastructure.adapters.remote_store import HttpDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    store: KeyValueStore
    remote: RemoteDocumentStore | None
    errors: SyncErrorService
    reporter: ThrottledErrorReporter
    retry_queue: RetryQueue
    storage: StorageService
    migration: MigrationService
    stats: StudyStatsService
    online: OnlineSignal
    retry_runner: SyncRetryRunner
    tz: tzinfo | None = None

    def phrase_list(self) -> SyncedValue[list[PhraseEntity]]:
        return SyncedValue(
            self.storage,
            PHRASE_LIST_KEY,
            [],
            decode=parse_phrase_list,
            encode=dump_phrase_list,
            transform=unique_phrases,
            merge_strategy=merge_phrase_lists,
            debounce_seconds=self.config.debounce_seconds,
        )

    def daily_stats(self) -> SyncedValue[dict[str, DailyStats]]:
        return SyncedValue(
            self.storage,
            DAILY_STATS_KEY,
            {},
            decode=decode_daily_stats,
            encode=encode_daily_stats,
            merge_strategy=merge_daily_stats,
            debounce_seconds=self.config.debounce_seconds,
        )

    def learning_status(self) -> SyncedValue[LearningStatus]:
        # No merge strategy: the remote value replaces the local one
        return SyncedValue(
            self.storage,
            LEARNING_STATUS_KEY,
            LearningStatus(),
            decode=decode_learning_status,
            encode=encode_learning_status,
            debounce_seconds=self.config.debounce_seconds,
        )

    async def open_phrase_service(self, attach: bool = False) -> PhraseService:
        """
        Load the synced values from the local store and wrap them in a PhraseService.

        With `attach` the values follow remote changes until closed; otherwise,
        when a remote store is configured, the current remote values are merged
        in once so local changes are never pushed over records made elsewhere.
        """
        values = (self.phrase_list(), self.daily_stats(), self.learning_status())
        for value in values:
            await value.load()
            if attach:
                value.attach()
            elif self.storage.cloud_enabled and not await value.pull():
                logger.warning(f"Could not read remote '{value.key}'; continuing with local data")
        phrases, daily, status = values
        return PhraseService(
            phrases,
            daily_stats=daily,
            learning_status=status,
            tombstone_ttl_days=self.config.tombstone_ttl_days,
            tz=self.tz,
        )

    async def close_phrase_service(self, service: PhraseService) -> None:
        """Push pending changes now and release subscriptions."""
        for value in (service.phrases, service.daily_stats, service.learning_status):
            if value is None:
                continue
            await value.flush()
            await value.close()

    async def aclose(self) -> None:
        await self.retry_runner.stop()
        if isinstance(self.remote, HttpDocumentStore):
            await self.remote.close()


def build_services(
    config: AppConfig,
    store: KeyValueStore | None = None,
    remote: RemoteDocumentStore | None = None,
) -> Services:
    """
    Wire every service from configuration.

    `store` and `remote` override the adapters chosen from config (tests pass
    in-memory ones). Without a remote store or user id the remote side is left
    out and everything runs local-only.
    """
    store = store or JsonFileKeyValueStore(config.data_dir)

    if remote is None and config.cloud_enabled:
        remote = HttpDocumentStore(
            config.remote_url,
            timeout=config.request_timeout,
            poll_interval=config.remote_poll_interval,
        )
    if remote is None or not config.user_id:
        logger.debug("No remote store or user configured; running local-only")

    tz = ZoneInfo(config.timezone) if config.timezone else None

    errors = SyncErrorService()
    reporter = ThrottledErrorReporter(throttle_seconds=config.error_throttle_seconds)
    reporter.attach(errors)

    retry_queue = RetryQueue(store, max_retries=config.max_retries)
    storage = StorageService(
        store,
        remote=remote,
        user_id=config.user_id,
        retry_queue=retry_queue,
        errors=errors,
    )
    online = OnlineSignal()

    return Services(
        config=config,
        store=store,
        remote=remote,
        errors=errors,
        reporter=reporter,
        retry_queue=retry_queue,
        storage=storage,
        migration=MigrationService(
            store, errors=errors, tombstone_ttl_days=config.tombstone_ttl_days
        ),
        stats=StudyStatsService(store, RetentionAnalyzer(tz=tz)),
        online=online,
        retry_runner=SyncRetryRunner(storage, retry_queue, errors, online),
        tz=tz,
    )

"""
Migration Service: upgrades a v1 store to the current schema.

A migration pass backs up the phrase list, gives every legacy record a
durable id and timestamps, rewrites id references held by the learning
status, backfills scheduling defaults and finally records the new schema
version. Any failure restores the pre-migration state.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from polyglot.application.id_service import generate_phrase_id
from polyglot.application.lifecycle import purge_tombstones
from polyglot.application.merge import content_key, unique_phrases
from polyglot.application.sync_errors import SyncErrorService
from polyglot.application.utils.clock import utc_now
from polyglot.domain.constants import (
    DEFAULT_DIFFICULTY,
    LEARNING_STATUS_KEY,
    METADATA_KEY,
    MIGRATION_MAP_KEY,
    PHRASE_LIST_BACKUP_KEY,
    PHRASE_LIST_KEY,
    SCHEMA_VERSION_CURRENT,
    SCHEMA_VERSION_LEGACY,
    TOMBSTONE_TTL_DAYS,
)
from polyglot.domain.errors import MigrationError, PhraseValidationError, SyncErrorType
from polyglot.domain.interfaces import KeyValueStore
from polyglot.domain.models import (
    CardState,
    LearningStatus,
    LegacyPhrase,
    MigrationLogEntry,
    PhraseEntity,
    StorageMetadata,
    dump_phrase_list,
    ensure_utc,
    parse_stored_phrase,
    validate_phrase_entity,
)

logger = logging.getLogger(__name__)

MigrationMap = dict[str, str]


@dataclass
class MigrationResult:
    success: bool
    migrated_count: int = 0
    migration_map: MigrationMap = field(default_factory=dict)
    error: str | None = None


def migrate_id_references(ids: list[str], migration_map: MigrationMap) -> list[str]:
    """Substitute ids through the map; unmapped ids pass through. Repeats collapse."""
    return list(dict.fromkeys(migration_map.get(i, i) for i in ids))


def migrate_learning_status(status: LearningStatus, migration_map: MigrationMap) -> LearningStatus:
    quiz_stats = None
    if status.quiz_stats is not None:
        quiz_stats = {migration_map.get(k, k): v for k, v in status.quiz_stats.items()}
    return status.model_copy(
        update={
            "completed_ids": migrate_id_references(status.completed_ids, migration_map),
            "incorrect_ids": migrate_id_references(status.incorrect_ids, migration_map),
            "quiz_stats": quiz_stats,
        }
    )


def redirect_dropped_ids(
    migration_map: MigrationMap,
    candidates: list[PhraseEntity],
    kept: list[PhraseEntity],
) -> MigrationMap:
    """
    Point map entries whose record was dropped as a duplicate at the record
    that survived with the same content.
    """
    kept_ids = {p.id for p in kept}
    survivor_by_content = {content_key(p): p.id for p in kept if not p.is_deleted}
    content_by_id = {p.id: content_key(p) for p in candidates}

    redirected = {}
    for legacy_id, new_id in migration_map.items():
        if new_id not in kept_ids:
            new_id = survivor_by_content.get(content_by_id.get(new_id), new_id)
        redirected[legacy_id] = new_id
    return redirected


def backfill_scheduling_defaults(phrase: PhraseEntity) -> PhraseEntity:
    """Fill in state/reps/lapses/difficulty where a record has none."""
    defaults = {
        "state": CardState.NEW,
        "reps": 0,
        "lapses": 0,
        "difficulty": DEFAULT_DIFFICULTY,
    }
    update = {k: v for k, v in defaults.items() if getattr(phrase, k) is None}
    return phrase.model_copy(update=update) if update else phrase


class MigrationService:
    def __init__(
        self,
        store: KeyValueStore,
        errors: SyncErrorService | None = None,
        id_factory=generate_phrase_id,
        tombstone_ttl_days: int = TOMBSTONE_TTL_DAYS,
    ):
        self.store = store
        self.errors = errors
        self.id_factory = id_factory
        self.tombstone_ttl_days = tombstone_ttl_days

    async def get_storage_metadata(self) -> StorageMetadata:
        """
        Read the schema marker. Without one, detect the version from the
        stored phrases: current only if there is v2 data and no v1 data.
        """
        raw = await self.store.get(METADATA_KEY)
        if raw:
            return StorageMetadata.model_validate(raw)

        has_legacy = False
        has_current = False
        for item in await self.store.get(PHRASE_LIST_KEY) or []:
            try:
                parsed = parse_stored_phrase(item)
            except PhraseValidationError:
                continue
            if isinstance(parsed, LegacyPhrase):
                has_legacy = True
            else:
                has_current = True

        version = (
            SCHEMA_VERSION_CURRENT if has_current and not has_legacy else SCHEMA_VERSION_LEGACY
        )
        return StorageMetadata(schema_version=version)

    async def set_storage_metadata(self, metadata: StorageMetadata) -> None:
        await self.store.set(METADATA_KEY, metadata.to_wire())

    @staticmethod
    def needs_migration(metadata: StorageMetadata) -> bool:
        return metadata.schema_version < SCHEMA_VERSION_CURRENT

    async def create_backup(self) -> bool:
        try:
            phrases = await self.store.get(PHRASE_LIST_KEY)
            if not phrases:
                return True
            await self.store.set(PHRASE_LIST_BACKUP_KEY, phrases)
            return True
        except Exception as e:
            logger.error(f"Failed to create backup: {e}")
            return False

    async def restore_from_backup(self) -> bool:
        try:
            backup = await self.store.get(PHRASE_LIST_BACKUP_KEY)
            if backup is None:
                logger.error("No backup found to restore")
                return False
            await self.store.set(PHRASE_LIST_KEY, backup)
            return True
        except Exception as e:
            logger.error(f"Failed to restore from backup: {e}")
            return False

    async def clear_backup(self) -> None:
        await self.store.delete(PHRASE_LIST_BACKUP_KEY)

    def migrate_legacy_phrase(
        self,
        legacy: LegacyPhrase,
        migration_map: MigrationMap,
        now: datetime | None = None,
    ) -> PhraseEntity:
        """Give a v1 record a durable id (reused if already mapped) and timestamps."""
        new_id = migration_map.get(legacy.id)
        if new_id is None:
            new_id = self.id_factory()
            migration_map[legacy.id] = new_id

        now = ensure_utc(now or utc_now())
        data = legacy.model_dump(exclude_none=True)
        data.update(id=new_id, created_at=now, updated_at=now, is_deleted=False)
        return validate_phrase_entity(data)

    async def get_migration_map(self) -> MigrationMap:
        return await self.store.get(MIGRATION_MAP_KEY) or {}

    async def run_migration(self, now: datetime | None = None) -> MigrationResult:
        metadata = await self.get_storage_metadata()
        if not self.needs_migration(metadata):
            return MigrationResult(success=True)

        if not await self.create_backup():
            return MigrationResult(success=False, error="Failed to create backup before migration")

        now = ensure_utc(now or utc_now())
        raw_status: Any = None
        try:
            raw_phrases = await self.store.get(PHRASE_LIST_KEY) or []
            raw_status = await self.store.get(LEARNING_STATUS_KEY)
            if not isinstance(raw_phrases, list):
                raise MigrationError(f"{PHRASE_LIST_KEY} is not a list")

            migration_map: MigrationMap = {}
            migrated: list[PhraseEntity] = []
            for item in raw_phrases:
                parsed = parse_stored_phrase(item)
                if isinstance(parsed, LegacyPhrase):
                    parsed = self.migrate_legacy_phrase(parsed, migration_map, now)
                migrated.append(backfill_scheduling_defaults(parsed))

            kept = unique_phrases(
                purge_tombstones(migrated, ttl_days=self.tombstone_ttl_days, now=now)
            )
            migration_map = redirect_dropped_ids(migration_map, migrated, kept)
            migrated = kept

            if raw_status and migration_map:
                status = migrate_learning_status(
                    LearningStatus.model_validate(raw_status), migration_map
                )
                await self.store.set(LEARNING_STATUS_KEY, status.to_wire())

            await self.store.set(PHRASE_LIST_KEY, dump_phrase_list(migrated))
            await self.store.set(MIGRATION_MAP_KEY, migration_map)

            log = list(metadata.migration_log)
            log.append(
                MigrationLogEntry(
                    from_version=metadata.schema_version,
                    to_version=SCHEMA_VERSION_CURRENT,
                    migrated_at=now,
                    item_count=len(migration_map),
                )
            )
            await self.set_storage_metadata(
                StorageMetadata(
                    schema_version=SCHEMA_VERSION_CURRENT,
                    last_migration_at=now,
                    migration_log=log,
                )
            )
            await self.clear_backup()
        except Exception as e:
            logger.error(f"Migration failed, attempting rollback: {e}")
            await self._rollback(raw_status)
            if self.errors:
                self.errors.emit(SyncErrorType.MIGRATION, PHRASE_LIST_KEY, e)
            return MigrationResult(success=False, error=str(e) or type(e).__name__)

        logger.info(
            f"Migrated {len(migration_map)} legacy phrases to schema v{SCHEMA_VERSION_CURRENT}"
        )
        return MigrationResult(
            success=True,
            migrated_count=len(migration_map),
            migration_map=migration_map,
        )

    async def _rollback(self, raw_status: Any) -> None:
        try:
            if await self.store.get(PHRASE_LIST_BACKUP_KEY) is not None:
                if not await self.restore_from_backup():
                    logger.critical("Rollback failed; the backup is kept for manual recovery")
                    return
            if raw_status is not None:
                await self.store.set(LEARNING_STATUS_KEY, raw_status)
        except Exception as e:
            logger.critical(f"Rollback failed: {e}")

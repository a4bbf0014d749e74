"""Exception hierarchy for the polyglot core."""

from enum import Enum


class PolyglotError(Exception):
    """Base class for every error raised by polyglot."""


class PhraseValidationError(PolyglotError, ValueError):
    """A record failed validation at the storage / import boundary."""


class SyncErrorType(str, Enum):
    """Categories reported to the sync error sink."""

    CLOUD_SAVE = "cloud_save"
    CLOUD_LOAD = "cloud_load"
    LOCAL_SAVE = "local_save"
    LOCAL_LOAD = "local_load"
    MIGRATION = "migration"


class SyncError(PolyglotError):
    """An I/O failure while talking to the local or remote store."""

    error_type: SyncErrorType = SyncErrorType.CLOUD_SAVE

    def __init__(self, key: str, message: str):
        super().__init__(f"{self.error_type.value} failed for '{key}': {message}")
        self.key = key
        self.message = message


class RemoteWriteError(SyncError):
    error_type = SyncErrorType.CLOUD_SAVE


class RemoteReadError(SyncError):
    error_type = SyncErrorType.CLOUD_LOAD


class LocalWriteError(SyncError):
    error_type = SyncErrorType.LOCAL_SAVE


class LocalReadError(SyncError):
    error_type = SyncErrorType.LOCAL_LOAD


class MigrationError(PolyglotError):
    """Raised inside a migration pass; always triggers a rollback."""


class PhraseGenerationError(PolyglotError):
    """Generated content could not be turned into learning records."""


class PhraseNotFoundError(PolyglotError, KeyError):
    """No active record carries the requested id."""

    def __init__(self, phrase_id: str):
        super().__init__(f"Phrase '{phrase_id}' not found")
        self.phrase_id = phrase_id

    def __str__(self) -> str:
        return f"Phrase '{self.phrase_id}' not found"

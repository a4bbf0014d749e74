# Domain Package
from .errors import PolyglotError, PhraseValidationError, SyncErrorType
from .models import CardState, LegacyPhrase, PhraseEntity, Scheduled, Unscheduled

__all__ = [
    "CardState",
    "LegacyPhrase",
    "PhraseEntity",
    "Scheduled",
    "Unscheduled",
    "PolyglotError",
    "PhraseValidationError",
    "SyncErrorType",
]

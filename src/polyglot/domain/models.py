"""
Domain models for learning records and sync bookkeeping.

These are pure data structures with no I/O or external dependencies beyond
pydantic. The wire format (local store, remote store) uses the camelCase
field names of the stored JSON; Python code uses snake_case attributes.

Unknown fields are kept on every model and written back out, so payloads
produced by a newer client survive a round trip through an older one.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .constants import (
    DEFAULT_DIFFICULTY,
    DEFAULT_STABILITY,
    SCHEMA_VERSION_CURRENT,
    SCHEMA_VERSION_LEGACY,
)
from .errors import PhraseValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC; normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class WireModel(BaseModel):
    """Base for everything that is persisted or sent to the remote store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys; unset optionals are omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CardState(str, Enum):
    NEW = "new"
    LEARNING = "learning"
    REVIEW = "review"
    RELEARNING = "relearning"


class QuizType(str, Enum):
    WRITING = "writing"
    INTERPRETATION = "interpretation"
    CLOZE = "cloze"
    SPEAKING = "speaking"
    LISTENING = "listening"


class SongData(WireModel):
    video_id: str
    title: str
    artist: str
    thumbnail_url: str


# ---------------------------------------------------------------------------
# Scheduling phase
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Unscheduled:
    """A card that has never been reviewed. Only the difficulty prior is known."""

    difficulty: float = DEFAULT_DIFFICULTY


@dataclass(frozen=True)
class Scheduled:
    """
    A card with a live memory estimate.

    Attributes:
        state: learning, review or relearning.
        stability: Days until recall probability drops to the target retention.
        difficulty: Normalized item hardness (0.0-1.0).
        due: When the card next becomes eligible for review.
        last_review: Time of the most recent review.
    """

    state: CardState
    stability: float
    difficulty: float
    due: datetime | None
    last_review: datetime | None
    elapsed_days: int = 0
    scheduled_days: int = 0


SchedulingPhase = Unscheduled | Scheduled


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class LegacyPhrase(WireModel):
    """v1 record: content-hash id, no timestamps, no soft delete."""

    schema_version: ClassVar[int] = SCHEMA_VERSION_LEGACY

    id: str
    meaning: str
    sentence: str
    pronunciation: str | None = None
    tags: list[str] = Field(default_factory=list)
    memo: str | None = None
    song: SongData | None = None
    package_id: str | None = None


class PhraseEntity(WireModel):
    """v2 learning record: opaque id, timestamps, soft delete and FSRS state."""

    schema_version: ClassVar[int] = SCHEMA_VERSION_CURRENT

    id: str = Field(min_length=1)
    meaning: str
    sentence: str
    pronunciation: str | None = None
    tags: list[str] = Field(default_factory=list)
    memo: str | None = None
    song: SongData | None = None
    package_id: str | None = None

    created_at: datetime
    updated_at: datetime
    is_deleted: bool = False
    deleted_at: datetime | None = None

    # Scheduling fields (absent until the record is scheduled or backfilled)
    state: CardState | None = None
    stability: float | None = Field(default=None, gt=0)
    difficulty: float | None = Field(default=None, ge=0.0, le=1.0)
    elapsed_days: int | None = Field(default=None, ge=0)
    scheduled_days: int | None = Field(default=None, ge=0)
    reps: int | None = Field(default=None, ge=0)
    lapses: int | None = Field(default=None, ge=0)
    due: datetime | None = None
    last_review: datetime | None = None

    @field_validator("meaning", "sentence")
    @classmethod
    def _require_text(cls, v: str, info) -> str:
        if not v.strip():
            raise ValueError(f"{info.field_name} is required")
        return v

    @field_validator("created_at", "updated_at", "deleted_at", "due", "last_review")
    @classmethod
    def _normalize_timestamp(cls, v: datetime | None) -> datetime | None:
        if v is None:
            return None
        return ensure_utc(v)

    @property
    def phase(self) -> SchedulingPhase:
        """The scheduling state machine phase of this record."""
        if self.state is None or self.state == CardState.NEW:
            return Unscheduled(
                difficulty=self.difficulty if self.difficulty is not None else DEFAULT_DIFFICULTY
            )
        return Scheduled(
            state=self.state,
            stability=self.stability if self.stability is not None else DEFAULT_STABILITY,
            difficulty=self.difficulty if self.difficulty is not None else DEFAULT_DIFFICULTY,
            due=self.due,
            last_review=self.last_review,
            elapsed_days=self.elapsed_days or 0,
            scheduled_days=self.scheduled_days or 0,
        )


def _stored_phrase_tag(value: Any) -> str | None:
    if isinstance(value, PhraseEntity):
        return "v2"
    if isinstance(value, LegacyPhrase):
        return "v1"
    if isinstance(value, dict):
        if (
            isinstance(value.get("createdAt"), str)
            and isinstance(value.get("updatedAt"), str)
            and isinstance(value.get("isDeleted"), bool)
        ):
            return "v2"
        if "createdAt" not in value:
            return "v1"
    return None


StoredPhrase = Annotated[
    Union[
        Annotated[LegacyPhrase, Tag("v1")],
        Annotated[PhraseEntity, Tag("v2")],
    ],
    Discriminator(_stored_phrase_tag),
]

_STORED_PHRASE = TypeAdapter(StoredPhrase)
_PHRASE_LIST = TypeAdapter(list[PhraseEntity])


def parse_stored_phrase(raw: Any) -> LegacyPhrase | PhraseEntity:
    """
    Decide the schema version of a stored payload once, at the boundary.

    Raises:
        PhraseValidationError: If the payload is neither a valid v1 nor v2 record.
    """
    try:
        return _STORED_PHRASE.validate_python(raw)
    except ValidationError as e:
        raise PhraseValidationError(str(e)) from e


def validate_phrase_entity(data: Any) -> PhraseEntity:
    try:
        return PhraseEntity.model_validate(data)
    except ValidationError as e:
        raise PhraseValidationError(str(e)) from e


def parse_phrase_list(data: Any) -> list[PhraseEntity]:
    """Validate a stored phrase list (v2 records only)."""
    try:
        return _PHRASE_LIST.validate_python(data or [])
    except ValidationError as e:
        raise PhraseValidationError(str(e)) from e


def dump_phrase_list(phrases: list[PhraseEntity]) -> list[dict[str, Any]]:
    return [p.to_wire() for p in phrases]


# ---------------------------------------------------------------------------
# Learning status & activity
# ---------------------------------------------------------------------------


class QuizStatsEntry(WireModel):
    correct: list[QuizType] = Field(default_factory=list)
    incorrect: list[QuizType] = Field(default_factory=list)


class LearningStatus(WireModel):
    completed_ids: list[str] = Field(default_factory=list)
    incorrect_ids: list[str] = Field(default_factory=list)
    points: int = 0
    learning_language: str | None = None
    quiz_stats: dict[str, QuizStatsEntry] | None = None


class DailyStats(WireModel):
    """Activity counters for one local calendar day (`date` is YYYY-MM-DD)."""

    date: str
    speak_count: int = 0
    quiz_count: int = 0
    review_count: int = 0
    add_count: int = 0
    listen_count: int = 0
    reviewed_ids: list[str] = Field(default_factory=list)
    updated_at: int | None = None  # epoch ms


# ---------------------------------------------------------------------------
# Storage bookkeeping
# ---------------------------------------------------------------------------


class MigrationLogEntry(WireModel):
    from_version: int
    to_version: int
    migrated_at: datetime
    item_count: int


class StorageMetadata(WireModel):
    schema_version: int
    last_migration_at: datetime | None = None
    migration_log: list[MigrationLogEntry] = Field(default_factory=list)


class RetryItem(WireModel):
    """A remote write awaiting delivery, keyed by storage key."""

    key: str
    value: Any = None
    timestamp: int  # epoch ms
    retry_count: int = 0
    last_error: str | None = None


class ImportPhrase(WireModel):
    """Content produced by an import or by the content-generation collaborator."""

    meaning: str = Field(min_length=1)
    sentence: str = Field(min_length=1)
    pronunciation: str | None = None
    tags: list[str] = Field(default_factory=list)
    memo: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

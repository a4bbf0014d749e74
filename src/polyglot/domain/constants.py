"""Centralized constants for the polyglot core.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Schema ----------
SCHEMA_VERSION_LEGACY = 1
SCHEMA_VERSION_CURRENT = 2

# ---------- FSRS ----------
FSRS_WEIGHTS = (
    0.4, 0.6, 2.4, 5.8, 4.93, 0.94, 0.86, 0.01, 1.49,
    0.14, 0.94, 2.18, 0.05, 0.34, 1.26, 0.29, 2.61,
)
REQUEST_RETENTION = 0.9
MAXIMUM_INTERVAL = 36500
MINIMUM_STABILITY = 0.1
EASY_BONUS = 1.3
HARD_PENALTY = 0.8
DEFAULT_DIFFICULTY = 0.3
DEFAULT_STABILITY = 1.0
DIFFICULTY_STEP = 0.1

# ---------- Lifecycle ----------
TOMBSTONE_TTL_DAYS = 30

# ---------- Retry Queue ----------
RETRY_QUEUE_KEY = "sync-retry-queue"
BACKOFF_BASE_MS = 1000
BACKOFF_MAX_MS = 30000
MAX_RETRY_COUNT = 5

# ---------- Orchestrator ----------
DEBOUNCE_SECONDS = 1.0
ERROR_THROTTLE_SECONDS = 5.0
REMOTE_POLL_INTERVAL = 5.0
REQUEST_TIMEOUT = 30.0

# ---------- Storage Keys ----------
METADATA_KEY = "storageMetadata"
PHRASE_LIST_KEY = "phraseList"
PHRASE_LIST_BACKUP_KEY = "phraseList_backup_v1"
LEARNING_STATUS_KEY = "learningStatus"
MIGRATION_MAP_KEY = "migrationMap"
DAILY_STATS_KEY = "daily_stats_history"

# ---------- Analyzer ----------
SUMMARY_FORECAST_DAYS = 7

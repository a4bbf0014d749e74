# Application Stats Package
from .metrics_calculator import (
    RetentionAnalyzer,
    RetentionStats,
    StudySummary,
    get_due_cards,
    get_forecast,
    get_new_cards,
    get_retention_stats,
)
from .service import StudyStatsService

__all__ = [
    "RetentionAnalyzer",
    "RetentionStats",
    "StudySummary",
    "StudyStatsService",
    "get_due_cards",
    "get_forecast",
    "get_new_cards",
    "get_retention_stats",
]

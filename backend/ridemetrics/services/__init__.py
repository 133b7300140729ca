"""Services package for business logic."""

from ridemetrics.services.activity_store import ActivityStore, StreamStore
from ridemetrics.services.intake import IntakeScheduler
from ridemetrics.services.metrics_service import MetricsError, MetricsService, metrics_service
from ridemetrics.services.stats_service import ActivityStatsService
from ridemetrics.services.training_load_service import (
    PendingActivity,
    TrainingLoadAggregator,
    TrainingLoadInternalError,
    TrainingLoadManager,
    update_training_loads,
)

__all__ = [
    "ActivityStore",
    "StreamStore",
    "IntakeScheduler",
    "MetricsError",
    "MetricsService",
    "metrics_service",
    "ActivityStatsService",
    "PendingActivity",
    "TrainingLoadAggregator",
    "TrainingLoadInternalError",
    "TrainingLoadManager",
    "update_training_loads",
]

"""Pydantic schemas package for API request/response models."""

from ridemetrics.schemas.athlete import (
    AthleteCreate,
    AthleteResponse,
    FTPUpdate,
    HistoryEntry,
)
from ridemetrics.schemas.activity import (
    ActivityBase,
    ActivityCreate,
    ActivityResponse,
    TrainingLoad,
)
from ridemetrics.schemas.metrics import (
    FlushResponse,
    PeakEffort,
    PeaksResponse,
    TrainingLoadPoint,
    TrainingLoadResponse,
)

__all__ = [
    # Athlete schemas
    "AthleteCreate",
    "AthleteResponse",
    "FTPUpdate",
    "HistoryEntry",
    # Activity schemas
    "ActivityBase",
    "ActivityCreate",
    "ActivityResponse",
    "TrainingLoad",
    # Metrics schemas
    "FlushResponse",
    "PeakEffort",
    "PeaksResponse",
    "TrainingLoadPoint",
    "TrainingLoadResponse",
]

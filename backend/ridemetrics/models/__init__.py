"""Database models for the RideMetrics application."""

from ridemetrics.models.base import Base
from ridemetrics.models.athlete import Athlete
from ridemetrics.models.activity import Activity, ActivityBaseType
from ridemetrics.models.stream import ActivityStream

__all__ = [
    "Base",
    "Athlete",
    "Activity",
    "ActivityBaseType",
    "ActivityStream",
]

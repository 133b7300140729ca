"""API routers package."""

from ridemetrics.routers import activities, athletes, training_load

__all__ = ["activities", "athletes", "training_load"]

"""Activity model for storing synced activities and their derived stats."""

import enum
import time
from datetime import date, datetime
from typing import TYPE_CHECKING, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridemetrics.models.base import Base

if TYPE_CHECKING:
    from ridemetrics.models.athlete import Athlete
    from ridemetrics.models.stream import ActivityStream


class ActivityBaseType(str, enum.Enum):
    """Coarse sport classification used to pick stream processing."""
    RIDE = "ride"
    RUN = "run"
    SWIM = "swim"
    OTHER = "other"


class Activity(Base):
    """Activity with its per-activity stats and training load record."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_athlete_ts", "athlete_id", "ts"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    athlete_id: Mapped[int] = mapped_column(Integer, ForeignKey("athletes.id"), index=True)

    # Activity details
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    basetype: Mapped[str] = mapped_column(String(20), default=ActivityBaseType.RIDE.value)
    trainer: Mapped[bool] = mapped_column(Boolean, default=False)
    ts: Mapped[float] = mapped_column(Float)  # start time, epoch seconds

    # Derived stats, overwritten on every stats pass
    active_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # seconds
    average_power: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # watts
    normalized_power: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # watts
    xp: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # watts
    kj: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tss: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hr_tss: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    intensity_factor: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    altitude_gain: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # meters
    altitude_loss: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # meters

    # Training load record, recomputed whenever an earlier activity changes TSS
    training_atl: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    training_ctl: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # {"<sync name>": {"errorCount": int, "errorTS": float, "errorMessage": str, "version": int}}
    sync_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    athlete: Mapped["Athlete"] = relationship("Athlete", back_populates="activities")
    streams: Mapped[List["ActivityStream"]] = relationship(
        "ActivityStream", back_populates="activity", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Activity(id={self.id}, name='{self.name}', ts={self.ts})>"

    @property
    def training(self) -> Optional[dict]:
        """The persisted ``{atl, ctl}`` pair, or None if never computed."""
        if self.training_atl is None or self.training_ctl is None:
            return None
        return {"atl": self.training_atl, "ctl": self.training_ctl}

    def set_training(self, atl: float, ctl: float) -> None:
        self.training_atl = atl
        self.training_ctl = ctl

    def get_tss(self) -> Optional[float]:
        """Power based TSS when available, otherwise the heart rate estimate."""
        return self.tss if self.tss is not None else self.hr_tss

    def get_locale_day(self, tz: str) -> date:
        return datetime.fromtimestamp(self.ts, tz=ZoneInfo(tz)).date()

    def clear_stats(self) -> None:
        self.active_time = None
        self.average_power = None
        self.normalized_power = None
        self.xp = None
        self.kj = None
        self.tss = None
        self.hr_tss = None
        self.intensity_factor = None
        self.altitude_gain = None
        self.altitude_loss = None

    def _get_sync_state(self, name: str) -> dict:
        if not name:
            raise TypeError("name required")
        # Copy so SQLAlchemy notices the JSON column change on assignment
        state = dict(self.sync_state or {})
        entry = dict(state.get(name) or {})
        state[name] = entry
        self.sync_state = state
        return entry

    def set_sync_error(self, name: str, error: BaseException) -> None:
        """Record a processing failure; the count drives retry backoff."""
        entry = self._get_sync_state(name)
        entry["errorCount"] = entry.get("errorCount", 0) + 1
        entry["errorTS"] = time.time()
        entry["errorMessage"] = str(error)
        self.sync_state = {**self.sync_state, name: entry}

    def clear_sync_error(self, name: str) -> None:
        entry = self._get_sync_state(name)
        entry.pop("errorTS", None)
        entry.pop("errorMessage", None)
        # errorCount is kept for backoff
        self.sync_state = {**self.sync_state, name: entry}

    def has_sync_error(self, name: str) -> bool:
        if not name:
            raise TypeError("name required")
        entry = (self.sync_state or {}).get(name) or {}
        return entry.get("errorTS") is not None

    def in_error_backoff(self, name: str, backoff: float, now: Optional[float] = None) -> bool:
        """True while the most recent error is younger than ``count * backoff``."""
        entry = (self.sync_state or {}).get(name) or {}
        error_ts = entry.get("errorTS")
        if error_ts is None:
            return False
        if now is None:
            now = time.time()
        return now - error_ts < entry.get("errorCount", 0) * backoff

    def set_sync_version(self, name: str, version: int) -> None:
        entry = self._get_sync_state(name)
        entry["version"] = version
        self.sync_state = {**self.sync_state, name: entry}

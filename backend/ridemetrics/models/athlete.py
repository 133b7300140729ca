"""Athlete model holding the profile used to normalize activity stats."""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Integer, String, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridemetrics.models.base import Base

if TYPE_CHECKING:
    from ridemetrics.models.activity import Activity


class Athlete(Base):
    """Athlete profile with time-varying FTP and weight history."""

    __tablename__ = "athletes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gender: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # male/female
    timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # IANA zone name

    # Current FTP, used when there is no history
    ftp: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # [{"ts": <epoch seconds>, "value": <number>}, ...] sorted by ts ascending
    ftp_history: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    weight_history: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Heart rate profile for hrTSS
    lthr: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    resting_hr: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_hr: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    activities: Mapped[List["Activity"]] = relationship(
        "Activity", back_populates="athlete", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Athlete(id={self.id}, name='{self.name}', ftp={self.ftp})>"

    def _get_history_value_at(self, key: str, ts: float):
        values = getattr(self, key)
        if not values:
            return None
        value = values[0]["value"]
        for entry in values:
            if entry["ts"] > ts:
                break
            value = entry["value"]
        return value

    def _set_history_value_at(self, key: str, value: float, ts: float) -> None:
        values = [x for x in (getattr(self, key) or []) if x["ts"] != ts]
        values.append({"ts": ts, "value": value})
        values.sort(key=lambda x: x["ts"])
        # Assign a new list so SQLAlchemy sees the JSON column change
        setattr(self, key, values)

    def get_ftp_at(self, ts: float) -> Optional[int]:
        """Return the FTP in effect at ``ts``, falling back to the current FTP."""
        ftp = self._get_history_value_at("ftp_history", ts)
        return ftp if ftp is not None else self.ftp

    def get_weight_at(self, ts: float) -> Optional[float]:
        """Return the body weight (kg) in effect at ``ts``."""
        return self._get_history_value_at("weight_history", ts)

    def set_ftp_at(self, value: int, ts: float) -> None:
        self._set_history_value_at("ftp_history", value, ts)

    def set_weight_at(self, value: float, ts: float) -> None:
        self._set_history_value_at("weight_history", value, ts)

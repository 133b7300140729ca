"""Activity stream model: one named numeric array per activity."""

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ridemetrics.models.base import Base

if TYPE_CHECKING:
    from ridemetrics.models.activity import Activity


class ActivityStream(Base):
    """A decoded stream such as ``time``, ``watts`` or ``heartrate``."""

    __tablename__ = "activity_streams"

    activity_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("activities.id"), primary_key=True
    )
    stream: Mapped[str] = mapped_column(String(50), primary_key=True)
    athlete_id: Mapped[int] = mapped_column(Integer, ForeignKey("athletes.id"), index=True)
    data: Mapped[list] = mapped_column(JSON)

    # Relationships
    activity: Mapped["Activity"] = relationship("Activity", back_populates="streams")

    def __repr__(self) -> str:
        return f"<ActivityStream(activity_id={self.activity_id}, stream='{self.stream}', len={len(self.data or [])})>"

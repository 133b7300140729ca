"""Pydantic schemas for peak efforts and training load responses."""

from typing import List, Optional

from pydantic import BaseModel, Field


class PeakEffort(BaseModel):
    """Best window of an activity for one metric."""

    type: str = Field(..., description="power, np, xp or pace")
    period: float = Field(..., description="Window seconds, or meters for pace")
    value: float = Field(..., description="Watts, or seconds per meter for pace")
    start: Optional[float] = Field(None, description="Window start, seconds into the activity")
    end: Optional[float] = Field(None, description="Window end, seconds into the activity")


class PeaksResponse(BaseModel):
    """Peak efforts of an activity."""

    activity_id: int = Field(..., description="Activity ID")
    peaks: List[PeakEffort] = Field(default_factory=list, description="Peak efforts")


class TrainingLoadPoint(BaseModel):
    """Training load after an activity's day."""

    activity_id: int = Field(..., description="Activity ID")
    ts: float = Field(..., description="Activity start, epoch seconds")
    tss: Optional[float] = Field(None, description="TSS (power based, else heart rate estimate)")
    atl: float = Field(..., description="Acute Training Load (fatigue)")
    ctl: float = Field(..., description="Chronic Training Load (fitness)")
    tsb: float = Field(..., description="Training Stress Balance (form)")


class TrainingLoadResponse(BaseModel):
    """Training load series of an athlete."""

    athlete_id: int = Field(..., description="Athlete ID")
    points: List[TrainingLoadPoint] = Field(default_factory=list, description="Oldest first")

    class Config:
        json_schema_extra = {
            "example": {
                "athlete_id": 42,
                "points": [
                    {"activity_id": 1, "ts": 1705307400, "tss": 80, "atl": 10.6, "ctl": 1.9, "tsb": -8.7}
                ],
            }
        }


class FlushResponse(BaseModel):
    """Result of a training load flush."""

    athlete_id: int = Field(..., description="Athlete ID")
    status: str = Field(..., description="flushed")

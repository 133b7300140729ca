"""Pydantic schemas for activity-related API operations."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ridemetrics.models.activity import ActivityBaseType


class ActivityBase(BaseModel):
    """Base schema for activity data."""

    name: Optional[str] = Field(None, description="Activity name")
    basetype: ActivityBaseType = Field(ActivityBaseType.RIDE, description="Sport classification")
    trainer: bool = Field(False, description="Indoor trainer activity")
    ts: float = Field(..., description="Start time, epoch seconds")


class ActivityCreate(ActivityBase):
    """Schema for ingesting an activity with its decoded streams."""

    streams: Dict[str, List[Optional[float]]] = Field(
        default_factory=dict,
        description="Named streams such as time, watts, heartrate, distance, altitude",
    )

    @model_validator(mode="after")
    def check_streams(self):
        time_stream = self.streams.get("time")
        if self.streams and not time_stream:
            raise ValueError("streams require a time stream")
        for name, data in self.streams.items():
            if len(data) != len(time_stream):
                raise ValueError(f"stream '{name}' is not the same length as time")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Morning Ride",
                "basetype": "ride",
                "ts": 1705307400,
                "streams": {
                    "time": [0, 1, 2, 3],
                    "watts": [180, 210, 205, 190],
                    "heartrate": [120, 124, 128, 131],
                },
            }
        }


class TrainingLoad(BaseModel):
    """ATL/CTL pair recorded on an activity."""

    atl: float = Field(..., description="Acute Training Load (fatigue)")
    ctl: float = Field(..., description="Chronic Training Load (fitness)")


class ActivityResponse(ActivityBase):
    """Schema for activity API responses."""

    id: int = Field(..., description="Activity ID")
    athlete_id: int = Field(..., description="Athlete ID")
    active_time: Optional[float] = Field(None, description="Active time in seconds")
    average_power: Optional[float] = Field(None, description="Average power over active time in watts")
    normalized_power: Optional[float] = Field(None, description="Normalized power in watts")
    xp: Optional[float] = Field(None, description="xPower in watts")
    kj: Optional[float] = Field(None, description="Work in kilojoules")
    tss: Optional[float] = Field(None, description="Training Stress Score")
    hr_tss: Optional[float] = Field(None, description="Heart rate based TSS estimate")
    intensity_factor: Optional[float] = Field(None, description="Intensity Factor")
    altitude_gain: Optional[float] = Field(None, description="Climbing in meters")
    altitude_loss: Optional[float] = Field(None, description="Descending in meters")
    training: Optional[TrainingLoad] = Field(None, description="Training load after this activity's day")
    sync_state: Optional[dict] = Field(None, description="Processing state and errors")
    created_at: datetime = Field(..., description="Created timestamp")

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": 1,
                "athlete_id": 42,
                "name": "Morning Ride",
                "basetype": "ride",
                "trainer": False,
                "ts": 1705307400,
                "active_time": 3600,
                "average_power": 200,
                "normalized_power": 215,
                "xp": 218,
                "kj": 720,
                "tss": 73.9,
                "intensity_factor": 0.86,
                "training": {"atl": 12.3, "ctl": 2.1},
                "created_at": "2024-01-15T10:00:00Z"
            }
        }

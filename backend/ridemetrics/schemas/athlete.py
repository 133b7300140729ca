"""Pydantic schemas for athlete profile API operations."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class HistoryEntry(BaseModel):
    """A value that took effect at ``ts``."""

    ts: float = Field(..., description="Effective from, epoch seconds")
    value: float = Field(..., description="Value")


class AthleteCreate(BaseModel):
    """Schema for creating an athlete."""

    name: Optional[str] = Field(None, description="Athlete name")
    gender: Optional[str] = Field(None, description="male or female")
    timezone: Optional[str] = Field(None, description="IANA timezone used for day boundaries")
    ftp: Optional[int] = Field(None, gt=0, description="Current FTP in watts")
    weight: Optional[float] = Field(None, gt=0, description="Current weight in kg")
    lthr: Optional[int] = Field(None, gt=0, description="Lactate threshold heart rate")
    resting_hr: Optional[int] = Field(None, gt=0, description="Resting heart rate")
    max_hr: Optional[int] = Field(None, gt=0, description="Max heart rate")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Jane",
                "timezone": "Europe/Berlin",
                "ftp": 250,
                "weight": 68,
                "lthr": 168,
                "resting_hr": 50,
            }
        }


class AthleteResponse(BaseModel):
    """Schema for athlete API responses."""

    id: int = Field(..., description="Athlete ID")
    name: Optional[str] = Field(None, description="Athlete name")
    gender: Optional[str] = Field(None, description="male or female")
    timezone: Optional[str] = Field(None, description="IANA timezone")
    ftp: Optional[int] = Field(None, description="Current FTP in watts")
    ftp_history: Optional[List[HistoryEntry]] = Field(None, description="FTP changes over time")
    weight_history: Optional[List[HistoryEntry]] = Field(None, description="Weight changes over time")
    lthr: Optional[int] = Field(None, description="Lactate threshold heart rate")
    resting_hr: Optional[int] = Field(None, description="Resting heart rate")
    max_hr: Optional[int] = Field(None, description="Max heart rate")
    created_at: datetime = Field(..., description="Created timestamp")

    class Config:
        from_attributes = True


class FTPUpdate(BaseModel):
    """Schema for recording an FTP change."""

    ftp: int = Field(..., gt=0, description="FTP in watts")
    ts: Optional[float] = Field(None, description="Effective from, epoch seconds (default now)")
    recalculate: bool = Field(True, description="Recompute stats of activities after ts")

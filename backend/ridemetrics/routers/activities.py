"""Activities API router for activity details, deletion and peak efforts."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ridemetrics.database import get_db
from ridemetrics.models import Activity
from ridemetrics.routers.training_load import get_training_load_manager
from ridemetrics.schemas.activity import ActivityResponse
from ridemetrics.schemas.metrics import PeakEffort, PeaksResponse
from ridemetrics.services.activity_store import ActivityStore, StreamStore
from ridemetrics.services.stats_service import ActivityStatsService
from ridemetrics.services.training_load_service import TrainingLoadManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_activity_or_404(db: Session, activity_id: int) -> Activity:
    activity = db.query(Activity).filter(Activity.id == activity_id).first()
    if not activity:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Activity with id {activity_id} not found",
        )
    return activity


@router.get("/{activity_id}", response_model=ActivityResponse)
async def get_activity(
    activity_id: int,
    db: Session = Depends(get_db),
) -> Activity:
    """
    Get activity details by ID.

    Raises:
        HTTPException: 404 if activity not found
    """
    return _get_activity_or_404(db, activity_id)


@router.delete("/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(
    activity_id: int,
    db: Session = Depends(get_db),
    manager: TrainingLoadManager = Depends(get_training_load_manager),
) -> None:
    """
    Delete an activity and its streams.

    The next activity is queued for a training load update so the series
    after the removed day is recomputed.

    Raises:
        HTTPException: 404 if activity not found
    """
    activity = _get_activity_or_404(db, activity_id)
    athlete = activity.athlete
    following = None
    async for a in ActivityStore(db).siblings(activity_id, direction="next"):
        following = a
        break
    db.delete(activity)
    db.commit()
    logger.info(f"Deleted activity {activity_id}")
    if following is not None:
        manager.submit(athlete, [following], invalidate=True)


@router.get("/{activity_id}/peaks", response_model=PeaksResponse)
async def get_peaks(
    activity_id: int,
    periods: Optional[List[float]] = Query(None, description="Window lengths in seconds"),
    distances: Optional[List[float]] = Query(None, description="Distances in meters (runs)"),
    db: Session = Depends(get_db),
) -> PeaksResponse:
    """
    Find peak power, NP, xPower and pace efforts of an activity.

    Args:
        activity_id: Activity to search
        periods: Power window lengths, defaults to a standard set
        distances: Pace distances, defaults to a standard set
        db: Database session

    Returns:
        Peak efforts found; windows longer than the activity are omitted

    Raises:
        HTTPException: 404 if activity not found, 400 for non positive targets
    """
    activity = _get_activity_or_404(db, activity_id)
    if any(x <= 0 for x in (periods or []) + (distances or [])):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Periods and distances must be positive",
        )
    stats = ActivityStatsService(StreamStore(db))
    peaks = await stats.find_peaks(activity, periods, distances)
    return PeaksResponse(activity_id=activity_id, peaks=[PeakEffort(**x) for x in peaks])

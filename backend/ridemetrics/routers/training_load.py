"""Training load API router for ATL/CTL series and processing control."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ridemetrics.database import get_db
from ridemetrics.models import Activity, Athlete
from ridemetrics.schemas.metrics import FlushResponse, TrainingLoadPoint, TrainingLoadResponse
from ridemetrics.services.metrics_service import metrics_service
from ridemetrics.services.training_load_service import TrainingLoadManager

logger = logging.getLogger(__name__)

router = APIRouter()


def get_training_load_manager(request: Request) -> TrainingLoadManager:
    """Dependency returning the manager started by the application lifespan."""
    return request.app.state.training_load_manager


@router.post("/{athlete_id}/training-load/flush", response_model=FlushResponse)
async def flush_training_load(
    athlete_id: int,
    db: Session = Depends(get_db),
    manager: TrainingLoadManager = Depends(get_training_load_manager),
) -> FlushResponse:
    """
    Process the athlete's queued activities now instead of after the debounce.

    Returns once the queued activities have been persisted.

    Raises:
        HTTPException: 404 if athlete not found
    """
    if not db.query(Athlete).filter(Athlete.id == athlete_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Athlete with id {athlete_id} not found",
        )
    await manager.flush(athlete_id)
    return FlushResponse(athlete_id=athlete_id, status="flushed")


@router.get("/{athlete_id}/training-load", response_model=TrainingLoadResponse)
async def get_training_load(
    athlete_id: int,
    db: Session = Depends(get_db),
) -> TrainingLoadResponse:
    """
    Get the athlete's training load series.

    Args:
        athlete_id: Athlete to query
        db: Database session

    Returns:
        One point per activity with a training load record, oldest first

    Raises:
        HTTPException: 404 if athlete not found
    """
    if not db.query(Athlete).filter(Athlete.id == athlete_id).first():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Athlete with id {athlete_id} not found",
        )
    activities = (
        db.query(Activity)
        .filter(
            Activity.athlete_id == athlete_id,
            Activity.training_atl.isnot(None),
            Activity.training_ctl.isnot(None),
        )
        .order_by(Activity.ts.asc(), Activity.id.asc())
        .all()
    )
    points = [
        TrainingLoadPoint(
            activity_id=a.id,
            ts=a.ts,
            tss=a.get_tss(),
            atl=a.training_atl,
            ctl=a.training_ctl,
            tsb=metrics_service.calculate_tsb(a.training_ctl, a.training_atl),
        )
        for a in activities
    ]
    return TrainingLoadResponse(athlete_id=athlete_id, points=points)

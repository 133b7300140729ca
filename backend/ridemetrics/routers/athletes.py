"""Athletes API router for profiles and activity ingestion."""

import logging
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ridemetrics.database import get_db
from ridemetrics.models import Activity, ActivityStream, Athlete
from ridemetrics.routers.training_load import get_training_load_manager
from ridemetrics.schemas.activity import ActivityCreate, ActivityResponse
from ridemetrics.schemas.athlete import AthleteCreate, AthleteResponse, FTPUpdate
from ridemetrics.services.activity_store import StreamStore
from ridemetrics.services.stats_service import ActivityStatsService
from ridemetrics.services.training_load_service import TrainingLoadManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_athlete_or_404(db: Session, athlete_id: int) -> Athlete:
    athlete = db.query(Athlete).filter(Athlete.id == athlete_id).first()
    if not athlete:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Athlete with id {athlete_id} not found",
        )
    return athlete


@router.post("/", response_model=AthleteResponse, status_code=status.HTTP_201_CREATED)
async def create_athlete(
    data: AthleteCreate,
    db: Session = Depends(get_db),
) -> Athlete:
    """
    Create an athlete profile.

    The given FTP and weight become the first entries of their histories.
    """
    athlete = Athlete(
        name=data.name,
        gender=data.gender,
        timezone=data.timezone,
        ftp=data.ftp,
        lthr=data.lthr,
        resting_hr=data.resting_hr,
        max_hr=data.max_hr,
    )
    now = time.time()
    if data.ftp:
        athlete.set_ftp_at(data.ftp, now)
    if data.weight:
        athlete.set_weight_at(data.weight, now)
    db.add(athlete)
    db.commit()
    db.refresh(athlete)
    logger.info(f"Created athlete {athlete.id}")
    return athlete


@router.get("/{athlete_id}", response_model=AthleteResponse)
async def get_athlete(
    athlete_id: int,
    db: Session = Depends(get_db),
) -> Athlete:
    """
    Get athlete profile by ID.

    Raises:
        HTTPException: 404 if athlete not found
    """
    return _get_athlete_or_404(db, athlete_id)


@router.put("/{athlete_id}/ftp", response_model=AthleteResponse)
async def update_ftp(
    athlete_id: int,
    update: FTPUpdate,
    db: Session = Depends(get_db),
    manager: TrainingLoadManager = Depends(get_training_load_manager),
) -> Athlete:
    """
    Record an FTP change.

    Activities from ``ts`` onward are restated with the new FTP when
    ``recalculate`` is set, which in turn updates their training loads.

    Args:
        athlete_id: Athlete to update
        update: New FTP and when it took effect
        db: Database session
        manager: Training load processor owner

    Returns:
        Updated athlete

    Raises:
        HTTPException: 404 if athlete not found
    """
    athlete = _get_athlete_or_404(db, athlete_id)
    ts = update.ts if update.ts is not None else time.time()
    athlete.set_ftp_at(update.ftp, ts)
    if ts >= athlete.ftp_history[-1]["ts"]:
        athlete.ftp = update.ftp
    db.commit()

    if update.recalculate:
        activities = (
            db.query(Activity)
            .filter(Activity.athlete_id == athlete_id, Activity.ts >= ts)
            .order_by(Activity.ts.asc())
            .all()
        )
        if activities:
            stats = ActivityStatsService(StreamStore(db))
            await stats.process(activities, athlete, force=True)
            db.commit()
            manager.submit(athlete, activities)
            logger.info(f"Recalculated {len(activities)} activities for athlete {athlete_id} after FTP change")

    db.refresh(athlete)
    return athlete


@router.post(
    "/{athlete_id}/activities",
    response_model=ActivityResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_activity(
    athlete_id: int,
    data: ActivityCreate,
    db: Session = Depends(get_db),
    manager: TrainingLoadManager = Depends(get_training_load_manager),
) -> Activity:
    """
    Ingest an activity with its streams.

    Stats are computed right away; the training load update is queued and
    lands after the debounce period or on an explicit flush.

    Args:
        athlete_id: Owner of the activity
        data: Activity details and decoded streams
        db: Database session
        manager: Training load processor owner

    Returns:
        Activity with computed stats

    Raises:
        HTTPException: 404 if athlete not found
    """
    athlete = _get_athlete_or_404(db, athlete_id)
    activity = Activity(
        athlete_id=athlete.id,
        name=data.name,
        basetype=data.basetype.value,
        trainer=data.trainer,
        ts=data.ts,
    )
    db.add(activity)
    db.flush()
    for name, values in data.streams.items():
        db.add(ActivityStream(
            activity_id=activity.id,
            athlete_id=athlete.id,
            stream=name,
            data=values,
        ))
    db.commit()

    stats = ActivityStatsService(StreamStore(db))
    await stats.process_extra_streams([activity], athlete)
    await stats.process([activity], athlete)
    db.commit()
    db.refresh(activity)

    manager.submit(athlete, [activity])
    logger.info(f"Ingested activity {activity.id} for athlete {athlete_id}")
    return activity


@router.get("/{athlete_id}/activities", response_model=List[ActivityResponse])
async def list_activities(
    athlete_id: int,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of records to return"),
    db: Session = Depends(get_db),
) -> List[Activity]:
    """
    List the athlete's activities, newest first.

    Raises:
        HTTPException: 404 if athlete not found
    """
    _get_athlete_or_404(db, athlete_id)
    return (
        db.query(Activity)
        .filter(Activity.athlete_id == athlete_id)
        .order_by(Activity.ts.desc(), Activity.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )

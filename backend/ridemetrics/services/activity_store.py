"""Activity and stream storage used by the stats and training load services."""

import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ridemetrics.models import Activity, ActivityStream

logger = logging.getLogger(__name__)


class ActivityStore:
    """
    Timestamp ordered access to an athlete's activities.

    Activities are ordered by ``(ts, id)`` so activities sharing a start time
    still have a stable position. Methods are coroutines so callers can await
    each step of a walk through history.
    """

    SIBLINGS_PAGE_SIZE = 100

    def __init__(self, db: Session):
        self.db = db

    async def get_all_keys_for_athlete(
        self,
        athlete_id: int,
        start: Optional[float] = None,
        reverse: bool = False
    ) -> List[int]:
        """
        Get activity ids for an athlete in timestamp order.

        Args:
            athlete_id: Athlete to list
            start: Only include activities with ``ts >= start``
            reverse: Newest first

        Returns:
            List of activity ids
        """
        query = self.db.query(Activity.id).filter(Activity.athlete_id == athlete_id)
        if start is not None:
            query = query.filter(Activity.ts >= start)
        if reverse:
            query = query.order_by(Activity.ts.desc(), Activity.id.desc())
        else:
            query = query.order_by(Activity.ts.asc(), Activity.id.asc())
        return [row.id for row in query.all()]

    async def get(self, activity_id: int) -> Optional[Activity]:
        return self.db.query(Activity).filter(Activity.id == activity_id).first()

    async def get_many(self, activity_ids: Sequence[int]) -> List[Activity]:
        """Fetch activities keeping the order of ``activity_ids``; missing ids are skipped."""
        if not activity_ids:
            return []
        found = {
            a.id: a for a in self.db.query(Activity).filter(Activity.id.in_(list(activity_ids))).all()
        }
        return [found[x] for x in activity_ids if x in found]

    async def siblings(
        self,
        activity_id: int,
        direction: str = "next"
    ) -> AsyncIterator[Activity]:
        """
        Iterate the same athlete's activities before or after ``activity_id``.

        Args:
            activity_id: Starting activity, not included in the results
            direction: ``"prev"`` walks back in time, ``"next"`` forward

        Yields:
            Activity models, nearest first
        """
        if direction not in ("prev", "next"):
            raise ValueError(f"Invalid direction: {direction}")
        origin = await self.get(activity_id)
        if origin is None:
            return
        athlete_id = origin.athlete_id
        ts, pk = origin.ts, origin.id
        while True:
            query = self.db.query(Activity).filter(Activity.athlete_id == athlete_id)
            if direction == "prev":
                query = query.filter(
                    or_(Activity.ts < ts, and_(Activity.ts == ts, Activity.id < pk))
                ).order_by(Activity.ts.desc(), Activity.id.desc())
            else:
                query = query.filter(
                    or_(Activity.ts > ts, and_(Activity.ts == ts, Activity.id > pk))
                ).order_by(Activity.ts.asc(), Activity.id.asc())
            page = query.limit(self.SIBLINGS_PAGE_SIZE).all()
            if not page:
                return
            for activity in page:
                yield activity
            ts, pk = page[-1].ts, page[-1].id

    async def save_models(self, activities: Iterable[Activity]) -> None:
        """Persist all given activities in a single commit."""
        activities = list(activities)
        self.db.add_all(activities)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.debug(f"Saved {len(activities)} activities")

    async def rollback(self) -> None:
        self.db.rollback()


class StreamStore:
    """Named stream arrays per activity."""

    def __init__(self, db: Session):
        self.db = db

    async def get_activities_streams(
        self,
        activities: Sequence[Activity],
        names: Sequence[str]
    ) -> Dict[int, Dict[str, list]]:
        """
        Fetch streams for many activities at once.

        Returns:
            ``{activity_id: {stream_name: data}}``; every requested activity
            has an entry, streams that do not exist are absent from it
        """
        ids = [a.id for a in activities]
        result: Dict[int, Dict[str, list]] = {x: {} for x in ids}
        if not ids or not names:
            return result
        rows = (
            self.db.query(ActivityStream)
            .filter(ActivityStream.activity_id.in_(ids), ActivityStream.stream.in_(list(names)))
            .all()
        )
        for row in rows:
            result[row.activity_id][row.stream] = row.data
        return result

    async def put_many(self, records: Iterable[dict]) -> None:
        """
        Insert or replace streams.

        Args:
            records: Dicts with ``activity``, ``athlete``, ``stream`` and ``data`` keys
        """
        for record in records:
            self.db.merge(ActivityStream(
                activity_id=record["activity"],
                athlete_id=record["athlete"],
                stream=record["stream"],
                data=record["data"],
            ))
        self.db.commit()

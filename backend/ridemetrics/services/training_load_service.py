"""Incremental ATL/CTL training load aggregation.

Each athlete has one ``TrainingLoadAggregator`` fed by an ``IntakeScheduler``.
Released batches are folded into the athlete's day bucketed ATL/CTL series,
starting from the most recent earlier day that already carries a training
load record and running forward through every later activity.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ridemetrics.config import Settings, get_settings
from ridemetrics.log_config import log_context
from ridemetrics.models import Activity, Athlete
from ridemetrics.services.activity_store import ActivityStore
from ridemetrics.services.intake import IntakeScheduler
from ridemetrics.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)


class TrainingLoadInternalError(Exception):
    """Raised when the training load walk reaches an impossible state."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


@dataclass(frozen=True)
class PendingActivity:
    """Snapshot of an activity waiting for a training load update."""
    id: int
    ts: float
    tss: Optional[float]

    @classmethod
    def from_model(cls, activity: Activity) -> "PendingActivity":
        return cls(id=activity.id, ts=activity.ts, tss=activity.get_tss())


def day_range(start: date, end: date) -> Iterator[date]:
    """Calendar days from ``start`` up to but not including ``end``."""
    day = start
    while day < end:
        yield day
        day += timedelta(days=1)


class TrainingLoadAggregator:
    """
    Sequential ATL/CTL processor for one athlete.

    ``run()`` is the processing loop; it ends when cancelled or when a flush
    finds nothing queued. Processed snapshots are handed back through
    ``get_batch``/``wait`` for callers that track completion.
    """

    def __init__(
        self,
        athlete: Athlete,
        store: ActivityStore,
        intake: Optional[IntakeScheduler] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time
    ):
        self.settings = settings or get_settings()
        self.athlete_id = athlete.id
        self.timezone = athlete.timezone or self.settings.DEFAULT_TIMEZONE
        self.store = store
        self.intake = intake if intake is not None else IntakeScheduler()
        self.metrics = MetricsService(
            atl_time_constant=self.settings.ATL_TIME_CONSTANT,
            ctl_time_constant=self.settings.CTL_TIME_CONSTANT,
        )
        self.clock = clock
        # activity id -> TSS it was last processed with
        self.completed_with: Dict[int, Optional[float]] = {}
        self.pending: set = set()
        self._finished: deque = deque()
        self._finished_event = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    def put_incoming(self, activities: Sequence[Activity]) -> None:
        """Queue activities (models or snapshots) for a training load update."""
        for a in activities:
            snap = a if isinstance(a, PendingActivity) else PendingActivity.from_model(a)
            self.pending.add(snap.id)
            self.intake.put(snap, snap.ts)
        if activities:
            self._idle.clear()

    def flush(self) -> None:
        self.intake.flush()

    def cancel(self) -> None:
        self.intake.cancel()

    @property
    def cancelled(self) -> bool:
        return self.intake.cancel_event.is_set()

    @property
    def size(self) -> int:
        """Number of processed snapshots not yet collected with ``get_batch``."""
        return len(self._finished)

    def get_batch(self, count: int) -> List[PendingActivity]:
        batch = []
        while self._finished and len(batch) < count:
            snap = self._finished.popleft()
            self.pending.discard(snap.id)
            batch.append(snap)
        if not self._finished:
            self._finished_event.clear()
        return batch

    async def wait(self) -> None:
        """Wait until at least one processed snapshot is available."""
        await self._finished_event.wait()

    async def wait_idle(self) -> None:
        """Wait until every queued activity has been processed."""
        await self._idle.wait()

    def _put_finished(self, batch: Sequence[PendingActivity]) -> None:
        self._finished.extend(batch)
        if batch:
            self._finished_event.set()

    async def run(self) -> None:
        min_wait = self.settings.TRAINING_LOAD_MIN_WAIT
        max_wait = self.settings.TRAINING_LOAD_MAX_WAIT
        max_size = self.settings.TRAINING_LOAD_MAX_SIZE
        try:
            while True:
                batch = await self.intake.get_incoming_debounced(min_wait, max_wait, max_size)
                if batch is None:
                    return
                batch.sort(key=lambda x: (x.ts, x.id))  # oldest -> newest
                try:
                    processed = await self._process(batch)
                except Exception:
                    # Abandon the batch, nothing of it may be persisted
                    await self.store.rollback()
                    raise
                if not processed:
                    logger.info(f"Training load processing cancelled for athlete {self.athlete_id}")
                    return
                self._put_finished(batch)
                if not self.intake.size:
                    self._idle.set()
        finally:
            self._idle.set()

    def _day(self, activity: Activity) -> date:
        return activity.get_locale_day(self.timezone)

    @staticmethod
    def _absorb(activity: Activity, ordered: List[Activity], activities: Dict[int, Activity]) -> None:
        # Equal ts siblings with a lower id were already listed from the ordered keys
        if activity.id in activities:
            return
        ordered.insert(0, activity)
        activities[activity.id] = activity

    async def _process(self, batch: List[PendingActivity]) -> bool:
        """
        Recompute training loads for a sorted batch.

        Returns:
            False if cancellation was observed and nothing was persisted

        Raises:
            TrainingLoadInternalError: If the history walk is inconsistent
        """
        seen = 0
        unseen = 0
        for snap in batch:
            if snap.id in self.completed_with and self.completed_with[snap.id] == snap.tss:
                seen += 1
            else:
                unseen += 1
        if not unseen:
            logger.debug("No training load updates required")
            return True
        logger.info(
            f"Updating training loads for athlete {self.athlete_id}: "
            f"{len(batch)} activities (seen={seen}, unseen={unseen})",
            extra=log_context(
                athlete_id=self.athlete_id, batch_size=len(batch), seen=seen, unseen=unseen
            ),
        )

        activities: Dict[int, Activity] = {}
        for a in await self.store.get_many([x.id for x in batch]):
            activities[a.id] = a
        if not activities:
            return True
        oldest = activities.get(batch[0].id) or next(iter(activities.values()))
        ordered_ids = await self.store.get_all_keys_for_athlete(self.athlete_id, start=oldest.ts)
        need = [x for x in ordered_ids if x not in activities]
        for a in await self.store.get_many(need):
            activities[a.id] = a
        ordered = [activities[x] for x in ordered_ids if x in activities]

        atl = 0.0
        ctl = 0.0
        seed = None
        # Rewind until we find a valid seed record from a prior day
        async for a in self.store.siblings(oldest.id, direction="prev"):
            if self._day(a) != self._day(oldest):
                training = a.training
                if not training:
                    # Keep searching backwards for a day with a record
                    oldest = a
                    self._absorb(a, ordered, activities)
                    continue
                seed = a
                atl = training["atl"] or 0
                ctl = training["ctl"] or 0
                break
            elif a.id != oldest.id:
                # Same day as the oldest activity, it must be computed jointly
                oldest = a
                self._absorb(a, ordered, activities)
            else:
                raise TrainingLoadInternalError(
                    "Internal Error: sibling search produced non sensical result"
                )

        if seed is not None:
            # Drain the loads with zero TSS days across the gap to our first entry
            zeros = [0 for _ in day_range(self._day(seed), self._day(oldest))]
            if zeros:
                zeros.pop()  # Exclude seed day
            if zeros:
                atl = self.metrics.calculate_atl(zeros, atl)
                ctl = self.metrics.calculate_ctl(zeros, ctl)

        tz = ZoneInfo(self.timezone)
        future = datetime.fromtimestamp(self.clock(), tz=tz).date() + timedelta(
            days=self.settings.TRAINING_LOAD_FUTURE_DAYS
        )
        completed: Dict[int, Optional[float]] = {}
        i = 0
        for day in day_range(self._day(oldest), future):
            if i >= len(ordered):
                break
            daily = []
            tss = 0.0
            while i < len(ordered) and self._day(ordered[i]) == day:
                act = ordered[i]
                i += 1
                daily.append(act)
                act_tss = act.get_tss()
                tss += act_tss or 0
                completed[act.id] = act_tss
            atl = self.metrics.calculate_atl([tss], atl)
            ctl = self.metrics.calculate_ctl([tss], ctl)
            for x in daily:
                x.set_training(atl, ctl)
        if i < len(ordered):
            raise TrainingLoadInternalError(
                f"Internal Error: {len(ordered) - i} activities beyond the forward walk"
            )

        if self.cancelled:
            await self.store.rollback()
            return False
        await self.store.save_models(activities.values())
        self.completed_with.update(completed)
        return True


class TrainingLoadManager:
    """
    Owns one aggregator and processing task per athlete.

    Each aggregator gets its own database session from ``session_factory``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._aggregators: Dict[int, TrainingLoadAggregator] = {}
        self._tasks: Dict[int, asyncio.Task] = {}
        self._sessions: Dict[int, Session] = {}

    def _get_aggregator(self, athlete: Athlete) -> TrainingLoadAggregator:
        task = self._tasks.get(athlete.id)
        if task is not None and not task.done():
            return self._aggregators[athlete.id]
        self._discard(athlete.id)
        db = self.session_factory()
        aggregator = TrainingLoadAggregator(athlete, ActivityStore(db), settings=self.settings)
        self._sessions[athlete.id] = db
        self._aggregators[athlete.id] = aggregator
        task = asyncio.get_running_loop().create_task(self._run(athlete.id, aggregator))
        self._tasks[athlete.id] = task
        return aggregator

    async def _run(self, athlete_id: int, aggregator: TrainingLoadAggregator) -> None:
        try:
            await aggregator.run()
        except TrainingLoadInternalError as e:
            logger.exception(
                f"Training load failed for athlete {athlete_id}: {e.message}",
                extra=log_context(athlete_id=athlete_id),
            )
        except Exception:
            logger.exception(
                f"Unexpected training load error for athlete {athlete_id}",
                extra=log_context(athlete_id=athlete_id),
            )

    def _discard(self, athlete_id: int) -> None:
        self._aggregators.pop(athlete_id, None)
        self._tasks.pop(athlete_id, None)
        db = self._sessions.pop(athlete_id, None)
        if db is not None:
            db.close()

    def submit(
        self,
        athlete: Athlete,
        activities: Sequence[Activity],
        invalidate: bool = False
    ) -> None:
        """
        Queue activities for the athlete's training load processor.

        Args:
            athlete: Owner of the activities
            activities: Activities whose TSS is ready
            invalidate: Recompute even if their TSS is unchanged, e.g. after
                an earlier activity was removed
        """
        if not activities:
            return
        aggregator = self._get_aggregator(athlete)
        if invalidate:
            for a in activities:
                aggregator.completed_with.pop(a.id, None)
        aggregator.put_incoming(activities)

    async def flush(self, athlete_id: int) -> None:
        """Release the athlete's queued activities now and wait until they are persisted."""
        aggregator = self._aggregators.get(athlete_id)
        task = self._tasks.get(athlete_id)
        if aggregator is None or task is None or task.done():
            return
        aggregator.flush()
        idle = asyncio.ensure_future(aggregator.wait_idle())
        try:
            await asyncio.wait([idle, task], return_when=asyncio.FIRST_COMPLETED)
        finally:
            idle.cancel()

    async def shutdown(self) -> None:
        """Cancel every processor and close their sessions."""
        for aggregator in self._aggregators.values():
            aggregator.cancel()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for athlete_id in list(self._aggregators):
            self._discard(athlete_id)
        logger.info("Training load manager stopped")


async def update_training_loads(
    athlete: Athlete,
    activities: Sequence[Activity],
    store: ActivityStore,
    settings: Optional[Settings] = None
) -> List[PendingActivity]:
    """
    Update training loads for ``activities`` and return once persisted.

    Args:
        athlete: Owner of the activities
        activities: Activities whose TSS is ready
        store: Store bound to the session the updates are written with
        settings: Overrides the global settings

    Returns:
        Snapshots of the processed activities

    Raises:
        TrainingLoadInternalError: If the history walk is inconsistent
    """
    aggregator = TrainingLoadAggregator(athlete, store, settings=settings)
    aggregator.put_incoming(activities)
    aggregator.flush()
    task = asyncio.ensure_future(aggregator.run())
    await aggregator.wait_idle()
    # A flush on the empty queue ends the loop
    aggregator.flush()
    await task
    return aggregator.get_batch(len(activities))

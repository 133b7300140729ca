"""Per-activity stats, derived streams and peak efforts.

The stats pass fills the stat columns of each activity from its streams. A
failure in one activity is recorded on that activity and never stops the
rest of the batch.
"""

import logging
from typing import Dict, List, Optional, Sequence

from ridemetrics.config import settings
from ridemetrics.log_config import log_context
from ridemetrics.models import Activity, ActivityBaseType, Athlete
from ridemetrics.services.activity_store import StreamStore
from ridemetrics.services.metrics_service import MetricsError, MetricsService, metrics_service
from ridemetrics.services.stream_utils import active_time, altitude_changes, create_active_stream

logger = logging.getLogger(__name__)

# Name under which stats pass errors are recorded on the activity
SYNC_NAME = "local"
STATS_VERSION = 1


def in_stats_backoff(activity: Activity, now: Optional[float] = None) -> bool:
    """True while a failed stats pass should not be retried for ``activity``."""
    return activity.in_error_backoff(SYNC_NAME, settings.SYNC_ERROR_BACKOFF, now)


class ActivityStatsService:
    """Compute activity stats from stored streams."""

    STATS_STREAMS = ["time", "heartrate", "active", "watts", "watts_calc", "altitude"]
    EXTRA_STREAMS = ["time", "moving", "cadence", "watts", "distance", "grade_adjusted_distance"]
    PEAK_STREAMS = ["time", "watts", "watts_calc", "distance"]

    # Default search targets for peak efforts
    PEAK_PERIODS = [5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600]
    PEAK_DISTANCES = [400, 1000, 1609.344, 5000, 10000]

    # Heart rate profile used when the athlete has none
    DEFAULT_LTHR = 170
    DEFAULT_REST_HR = 60

    def __init__(self, streams: StreamStore, metrics: Optional[MetricsService] = None):
        self.streams = streams
        self.metrics = metrics or metrics_service

    async def process(
        self,
        activities: Sequence[Activity],
        athlete: Athlete,
        force: bool = False
    ) -> None:
        """
        Compute stats for each activity in place.

        Args:
            activities: Activities to update, not committed here
            athlete: Owner, supplies FTP and heart rate profile
            force: Also retry activities still backing off from an error
        """
        if not force:
            activities = [a for a in activities if not in_stats_backoff(a)]
        act_streams = await self.streams.get_activities_streams(activities, self.STATS_STREAMS)
        for activity in activities:
            streams = act_streams.get(activity.id) or {}
            try:
                self._process_one(activity, streams, athlete)
            except Exception as e:
                logger.warning(
                    f"Failed to compute stats for activity {activity.id}",
                    exc_info=True,
                    extra=log_context(athlete_id=athlete.id, activity_id=activity.id),
                )
                activity.set_sync_error(SYNC_NAME, e)
            else:
                activity.clear_sync_error(SYNC_NAME)
                activity.set_sync_version(SYNC_NAME, STATS_VERSION)

    def _process_one(self, activity: Activity, streams: Dict[str, list], athlete: Athlete) -> None:
        time_stream = streams.get("time")
        activity.clear_stats()
        if not time_stream or len(time_stream) < 2:
            return
        time_gaps = self.metrics.time_gaps(time_stream)
        active = streams.get("active")
        if active is not None and len(active) != len(time_stream):
            raise MetricsError("active and time streams not same length")
        activity.active_time = active_time(time_stream, active, self.metrics.gaps_cache)
        ftp = athlete.get_ftp_at(activity.ts)

        heartrate = streams.get("heartrate")
        if heartrate and activity.active_time:
            samples = [
                hr for i, hr in enumerate(heartrate)
                if hr and (active is None or active[i])
            ]
            if samples:
                activity.hr_tss = self.metrics.estimate_tss_from_hr(
                    activity.active_time,
                    sum(samples) / len(samples),
                    athlete.lthr or self.DEFAULT_LTHR,
                    athlete.resting_hr or self.DEFAULT_REST_HR,
                )

        altitude = streams.get("altitude")
        if altitude:
            changes = altitude_changes(altitude)
            activity.altitude_gain = changes.gain
            activity.altitude_loss = changes.loss

        watts = streams.get("watts")
        if not watts and activity.basetype == ActivityBaseType.RUN.value:
            watts = streams.get("watts_calc")
        if not watts:
            return
        corrected = self.metrics.corrected_power(
            time_stream, watts, ideal_gap=time_gaps.ideal, max_gap=time_gaps.max
        )
        if corrected is None:
            return
        activity.kj = corrected.kj()
        if activity.active_time:
            activity.average_power = activity.kj * 1000 / activity.active_time
        activity.normalized_power = corrected.np()
        activity.xp = corrected.xp()
        power = activity.normalized_power or activity.average_power
        if ftp and power:
            activity.tss = self.metrics.calculate_tss(power, activity.active_time, ftp)
            activity.intensity_factor = self.metrics.calculate_intensity_factor(power, ftp)

    async def process_extra_streams(self, activities: Sequence[Activity], athlete: Athlete) -> None:
        """
        Derive streams the stats pass reads but devices do not record.

        ``active`` comes from the ``moving`` stream, counting pedaling on
        trainer activities. Runs also get a ``watts_calc`` stream from
        distance and body weight, preferring grade adjusted distance.
        """
        act_streams = await self.streams.get_activities_streams(activities, self.EXTRA_STREAMS)
        extra = []
        for activity in activities:
            streams = act_streams.get(activity.id) or {}
            time_stream = streams.get("time")
            if streams.get("moving") and time_stream:
                try:
                    active = create_active_stream(streams, is_trainer=bool(activity.trainer))
                except Exception as e:
                    logger.warning(
                        f"Failed to create active stream for activity {activity.id}",
                        exc_info=True,
                        extra=log_context(athlete_id=athlete.id, activity_id=activity.id),
                    )
                    activity.set_sync_error(SYNC_NAME, e)
                else:
                    extra.append(self._stream_record(activity, athlete, "active", active))
            if activity.basetype != ActivityBaseType.RUN.value:
                continue
            dist = streams.get("grade_adjusted_distance") or streams.get("distance")
            weight = athlete.get_weight_at(activity.ts)
            if not dist or not time_stream or not weight:
                continue
            try:
                watts_stream = [0.0]
                for i in range(1, len(dist)):
                    elapsed = time_stream[i] - time_stream[i - 1]
                    kj = self.metrics.running_work(weight, dist[i] - dist[i - 1])
                    watts_stream.append(kj * 1000 / elapsed if elapsed else 0.0)
            except Exception as e:
                logger.warning(
                    f"Failed to create running watts stream for activity {activity.id}",
                    exc_info=True,
                    extra=log_context(athlete_id=athlete.id, activity_id=activity.id),
                )
                activity.set_sync_error(SYNC_NAME, e)
                continue
            extra.append(self._stream_record(activity, athlete, "watts_calc", watts_stream))
        if extra:
            await self.streams.put_many(extra)
            logger.info(f"Stored {len(extra)} derived streams")

    @staticmethod
    def _stream_record(activity: Activity, athlete: Athlete, name: str, data: list) -> dict:
        return {
            "activity": activity.id,
            "athlete": athlete.id,
            "stream": name,
            "data": data,
        }

    async def find_peaks(
        self,
        activity: Activity,
        periods: Optional[Sequence[float]] = None,
        distances: Optional[Sequence[float]] = None
    ) -> List[dict]:
        """
        Find peak power, NP, xPower and pace efforts of one activity.

        Args:
            activity: Activity with stored streams
            periods: Window lengths in seconds for power peaks
            distances: Distances in meters for pace peaks

        Returns:
            List of dicts with ``type``, ``period``, ``value``, ``start`` and ``end``
        """
        periods = self.PEAK_PERIODS if periods is None else periods
        distances = self.PEAK_DISTANCES if distances is None else distances
        streams = (await self.streams.get_activities_streams([activity], self.PEAK_STREAMS))[activity.id]
        time_stream = streams.get("time")
        if not time_stream:
            return []
        peaks = []
        watts = streams.get("watts") or streams.get("watts_calc")
        if watts:
            for period in periods:
                for kind, finder, metric in (
                    ("power", self.metrics.peak_power, "avg"),
                    ("np", self.metrics.peak_np, "np"),
                    ("xp", self.metrics.peak_xp, "xp"),
                ):
                    window = finder(period, time_stream, watts)
                    value = getattr(window, metric)() if window is not None else None
                    if value is not None:
                        peaks.append(self._peak(kind, period, value, window))
        dist = streams.get("distance")
        if dist and activity.basetype == ActivityBaseType.RUN.value:
            for distance in distances:
                window = self.metrics.best_pace(distance, time_stream, dist)
                value = window.avg() if window is not None else None
                if value is not None:
                    peaks.append(self._peak("pace", distance, value, window))
        return peaks

    @staticmethod
    def _peak(kind: str, period: float, value: float, window) -> dict:
        return {
            "type": kind,
            "period": period,
            "value": value,
            "start": window.first_time(),
            "end": window.last_time(),
        }

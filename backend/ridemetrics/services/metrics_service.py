"""Power and pace metrics calculation service.

This service implements the per-activity metrics built on rolling windows:
- Peak power, Normalized Power (NP) and xPower (XP) over a period
- Corrected power (energy, NP, XP with sensor dropouts filled)
- Best pace over a distance
- Training Stress Score (TSS) and Intensity Factor (IF)
- Acute/Chronic Training Load (ATL/CTL) exponential decay
"""

from math import exp
from typing import Optional, Sequence

from ridemetrics.config import settings
from ridemetrics.services.rolling import (
    PaceWindow,
    PowerWindow,
    at_least,
    at_most,
    calc_np,
    calc_xp,
)
from ridemetrics.services.stream_utils import TimeGaps, TimeGapsCache, recommended_time_gaps


class MetricsError(Exception):
    """Exception raised when metrics cannot be derived from the given input."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class MetricsService:
    """Calculate power, pace and training load metrics from activity streams."""

    # Constants for training load calculations
    CTL_TIME_CONSTANT = 42  # Days for Chronic Training Load
    ATL_TIME_CONSTANT = 7   # Days for Acute Training Load

    # Running work estimate
    RUN_COST = 4.35   # Hand tuned
    WALK_COST = 2
    HUMAN_MECH_FACTOR = 0.24  # Human mechanical efficiency

    def __init__(
        self,
        atl_time_constant: Optional[int] = None,
        ctl_time_constant: Optional[int] = None,
        gaps_cache: Optional[TimeGapsCache] = None
    ):
        self.atl_time_constant = atl_time_constant or self.ATL_TIME_CONSTANT
        self.ctl_time_constant = ctl_time_constant or self.CTL_TIME_CONSTANT
        self.gaps_cache = gaps_cache if gaps_cache is not None else TimeGapsCache()

    def time_gaps(self, time_stream: Sequence[float]) -> TimeGaps:
        """Ideal and max sampling gaps for a time stream (cached)."""
        return recommended_time_gaps(time_stream, self.gaps_cache)

    def _corrected_power_window(
        self,
        time_stream: Sequence[float],
        period: Optional[float],
        ideal_gap: Optional[float] = None,
        max_gap: Optional[float] = None,
        inline_np: bool = False,
        inline_xp: bool = False
    ) -> Optional[PowerWindow]:
        if len(time_stream) < 2:
            return None
        if ideal_gap is None or max_gap is None:
            gaps = self.time_gaps(time_stream)
            if ideal_gap is None:
                ideal_gap = gaps.ideal
            if max_gap is None:
                max_gap = gaps.max
        return PowerWindow(period, ideal_gap, max_gap, inline_np=inline_np, inline_xp=inline_xp)

    def peak_power(
        self,
        period: float,
        time_stream: Sequence[float],
        watts_stream: Sequence[float]
    ) -> Optional[PowerWindow]:
        """
        Find the highest average power window of ``period`` seconds.

        Args:
            period: Window length in seconds
            time_stream: Sample timestamps in seconds
            watts_stream: Power values in watts

        Returns:
            Copy of the winning window, or None if the activity is too short
        """
        roll = self._corrected_power_window(time_stream, period)
        if roll is None:
            return None
        return roll.import_reduce(
            time_stream, watts_stream, lambda cur, lead: at_least(cur.avg(), lead.avg())
        )

    def peak_np(
        self,
        period: float,
        time_stream: Sequence[float],
        watts_stream: Sequence[float]
    ) -> Optional[PowerWindow]:
        """Find the window of ``period`` seconds with the highest Normalized Power."""
        roll = self._corrected_power_window(time_stream, period, inline_np=True)
        if roll is None:
            return None
        return roll.import_reduce(
            time_stream, watts_stream, lambda cur, lead: at_least(cur.np(), lead.np())
        )

    def peak_xp(
        self,
        period: float,
        time_stream: Sequence[float],
        watts_stream: Sequence[float]
    ) -> Optional[PowerWindow]:
        """Find the window of ``period`` seconds with the highest xPower."""
        roll = self._corrected_power_window(time_stream, period, inline_xp=True)
        if roll is None:
            return None
        return roll.import_reduce(
            time_stream, watts_stream, lambda cur, lead: at_least(cur.xp(), lead.xp())
        )

    def corrected_power(
        self,
        time_stream: Sequence[float],
        watts_stream: Sequence[float],
        ideal_gap: Optional[float] = None,
        max_gap: Optional[float] = None
    ) -> Optional[PowerWindow]:
        """
        Ingest a whole power stream into one dropout corrected window.

        The returned window has no period, so nothing is ever evicted and
        ``kj()``, ``avg()``, ``np()`` and ``xp()`` describe the full activity.
        NP and xPower are computed over the whole stream when requested.

        Args:
            time_stream: Sample timestamps in seconds
            watts_stream: Power values in watts
            ideal_gap: Expected sample interval, derived from the stream if omitted
            max_gap: Dropout threshold, derived from the stream if omitted

        Returns:
            PowerWindow, or None for fewer than two samples
        """
        roll = self._corrected_power_window(time_stream, None, ideal_gap, max_gap)
        if roll is None:
            return None
        roll.import_data(time_stream, watts_stream)
        return roll

    def best_pace(
        self,
        distance: float,
        time_stream: Sequence[float],
        dist_stream: Sequence[float]
    ) -> Optional[PaceWindow]:
        """
        Find the fastest window covering ``distance`` meters.

        Args:
            distance: Window distance in meters
            time_stream: Sample timestamps in seconds
            dist_stream: Cumulative distance in meters

        Returns:
            Copy of the winning window (``avg()`` is seconds per meter), or None
        """
        if len(time_stream) < 2:
            return None
        roll = PaceWindow(distance)
        return roll.import_reduce(
            time_stream, dist_stream, lambda cur, lead: at_most(cur.avg(), lead.avg())
        )

    def calculate_np(
        self,
        power_data: Sequence[float],
        sample_rate: float = 1,
        offset: int = 0
    ) -> Optional[float]:
        """Normalized Power of an evenly sampled stream, None under 5 minutes."""
        return calc_np(power_data, sample_rate, offset)

    def calculate_xp(
        self,
        power_data: Sequence[float],
        sample_rate: float = 1,
        offset: int = 0
    ) -> Optional[float]:
        """xPower of an evenly sampled stream, None under 5 minutes."""
        return calc_xp(power_data, sample_rate, offset)

    def calculate_tss(self, power: float, duration_seconds: float, ftp: float) -> float:
        """
        Calculate Training Stress Score (TSS).

        TSS = (power × duration × IF) / (FTP × 3600) × 100
        where IF (Intensity Factor) = power / FTP

        Args:
            power: NP (or average power when NP is unavailable) in watts
            duration_seconds: Active duration in seconds
            ftp: Functional Threshold Power in watts

        Returns:
            Training Stress Score

        Raises:
            ValueError: If FTP is zero or negative
        """
        if ftp <= 0:
            raise ValueError("FTP must be greater than zero")
        joules = power * duration_seconds
        ftp_hour_joules = ftp * 3600
        intensity = power / ftp
        return ((joules * intensity) / ftp_hour_joules) * 100

    def calculate_intensity_factor(self, power: float, ftp: float) -> float:
        """IF = power / FTP; 1.0 means the effort was at FTP."""
        if ftp <= 0:
            raise ValueError("FTP must be greater than zero")
        return power / ftp

    def estimate_tss_from_hr(
        self,
        duration_seconds: float,
        avg_hr: float,
        lthr: int,
        rest_hr: int = 60
    ) -> float:
        """
        Estimate TSS from heart rate when power data is not available.

        hrTSS = (duration × hrIF × hrIF) / 3600 × 100
        where hrIF = (avg_hr - rest_hr) / (lthr - rest_hr), capped at 1.2

        Args:
            duration_seconds: Active duration in seconds
            avg_hr: Average heart rate during the activity
            lthr: Lactate Threshold Heart Rate
            rest_hr: Resting heart rate (default 60)

        Returns:
            Estimated TSS as a float

        Raises:
            ValueError: If LTHR is not above resting heart rate
        """
        if duration_seconds <= 0:
            return 0.0

        if lthr <= rest_hr:
            raise ValueError("LTHR must be greater than resting heart rate")

        if avg_hr < rest_hr:
            return 0.0  # Invalid HR data

        hr_intensity_factor = (avg_hr - rest_hr) / (lthr - rest_hr)
        hr_intensity_factor = min(hr_intensity_factor, 1.2)

        return (duration_seconds * hr_intensity_factor * hr_intensity_factor) / 3600 * 100

    def _decay(self, daily_tss: Sequence[float], seed: float, time_constant: int) -> float:
        """
        Exponentially weighted moving average over consecutive days.

        new = old + (tss - old) × (1 - e^(-1/k))
        """
        factor = 1 - exp(-1 / time_constant)
        value = seed
        for tss in daily_tss:
            value = value + (tss - value) * factor
        return value

    def calculate_atl(self, daily_tss: Sequence[float], seed: float = 0.0) -> float:
        """Acute Training Load ("Fatigue") after folding in ``daily_tss`` days."""
        return self._decay(daily_tss, seed, self.atl_time_constant)

    def calculate_ctl(self, daily_tss: Sequence[float], seed: float = 0.0) -> float:
        """Chronic Training Load ("Fitness") after folding in ``daily_tss`` days."""
        return self._decay(daily_tss, seed, self.ctl_time_constant)

    def calculate_tsb(self, ctl: float, atl: float) -> float:
        """
        Calculate Training Stress Balance (TSB) - "Form".

        TSB = CTL - ATL; positive means fresh, negative means fatigued.
        """
        return ctl - atl

    def running_work(self, weight: float, distance: float, is_walking: bool = False) -> float:
        """
        Estimate the mechanical work (kJ) of covering ``distance`` meters on foot.

        Args:
            weight: Body weight in kg
            distance: Distance in meters
            is_walking: Use the walking cost of transport

        Returns:
            Work in kilojoules
        """
        cost = self.WALK_COST if is_walking else self.RUN_COST
        joules = cost * weight * distance
        return joules * self.HUMAN_MECH_FACTOR / 1000


# Create a singleton instance for convenience
metrics_service = MetricsService(
    atl_time_constant=settings.ATL_TIME_CONSTANT,
    ctl_time_constant=settings.CTL_TIME_CONSTANT,
)

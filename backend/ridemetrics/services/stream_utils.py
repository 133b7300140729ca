"""Small numeric helpers over decoded activity streams.

These operate on plain lists of numbers (time in seconds, watts, meters...)
and never raise for empty input; they return None (or 0 where a sum is
expected) instead.
"""

import math
from typing import NamedTuple, Optional, Sequence


def sum_(data: Sequence[float], offset: int = 0) -> float:
    total = 0
    for i in range(offset, len(data)):
        total += data[i]
    return total


def avg(data: Sequence[float], offset: int = 0) -> Optional[float]:
    if not data or len(data) - offset <= 0:
        return None
    return sum_(data, offset) / (len(data) - offset)


def mode(data: Sequence[float]) -> Optional[float]:
    """Most frequent value; ties go to the value that reached the count first."""
    if not data:
        return None
    counts: dict = {}
    most_freq = None
    for value in data:
        count = counts.get(value, 0) + 1
        counts[value] = count
        if most_freq is None or most_freq[0] < count:
            most_freq = (count, value)
            if count > len(data) / 2:
                break  # Nobody can possibly overtake now.
    return most_freq[1]


def median(data: Sequence[float]) -> Optional[float]:
    if not data:
        return None
    ordered = sorted(data)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    # even length calls for avg of middle pair.
    return (ordered[mid - 1] + ordered[mid]) / 2


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives, unlike the builtin banker's round."""
    return math.floor(value + 0.5)


class TimeGaps(NamedTuple):
    """Sampling gaps derived from a time stream."""
    ideal: float
    max: float


class TimeGapsCache:
    """Memoizes ``recommended_time_gaps`` per time stream.

    Entries are keyed by the identity of the stream list and validated with a
    ``(length, first, last)`` hash, so a list reused for different content is
    recomputed. Call ``invalidate`` when mutating a stream in place without
    changing those three properties.
    """

    def __init__(self, maxsize: int = 1024):
        self.maxsize = maxsize
        self._entries: dict[int, tuple[tuple, TimeGaps]] = {}

    @staticmethod
    def _hash(time_stream: Sequence[float]) -> tuple:
        return (len(time_stream), time_stream[0], time_stream[-1])

    def get(self, time_stream: Sequence[float]) -> Optional[TimeGaps]:
        entry = self._entries.get(id(time_stream))
        if entry is None or entry[0] != self._hash(time_stream):
            return None
        return entry[1]

    def set(self, time_stream: Sequence[float], gaps: TimeGaps) -> None:
        key = id(time_stream)
        self._entries.pop(key, None)
        if len(self._entries) >= self.maxsize:
            # Oldest entry first, dicts keep insertion order
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (self._hash(time_stream), gaps)

    def invalidate(self, time_stream: Sequence[float]) -> None:
        self._entries.pop(id(time_stream), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def recommended_time_gaps(
    time_stream: Sequence[float],
    cache: Optional[TimeGapsCache] = None
) -> TimeGaps:
    """
    Derive the ideal and maximum sampling gap of a time stream.

    The ideal gap is the mode of the inter-sample gaps (1 when there is no
    usable mode). The max gap is four times the larger of the ideal gap and
    the median gap, rounded to whole seconds.

    Args:
        time_stream: Non-decreasing timestamps in seconds, at least 2 long
        cache: Optional cache owned by the caller

    Returns:
        TimeGaps(ideal, max)
    """
    if cache is not None:
        cached = cache.get(time_stream)
        if cached is not None:
            return cached
    gaps = [time_stream[i + 1] - time_stream[i] for i in range(len(time_stream) - 1)]
    ideal = mode(gaps) or 1
    med = median(gaps)
    peak = ideal if med is None else max(ideal, med)
    value = TimeGaps(ideal=ideal, max=round_half_up(peak) * 4)
    if cache is not None:
        cache.set(time_stream, value)
    return value


def active_time(
    time_stream: Sequence[float],
    active_stream: Optional[Sequence[bool]] = None,
    cache: Optional[TimeGapsCache] = None
) -> float:
    """
    Seconds spent active.

    With an ``active`` stream, a sample's gap counts when the sample is
    flagged active. Without one, gaps larger than the recommended max gap
    are treated as stops and skipped.
    """
    if len(time_stream) < 2:
        return 0
    max_gap = None
    if active_stream is None:
        max_gap = recommended_time_gaps(time_stream, cache).max
    accumulated = 0
    last = time_stream[0]
    for i, ts in enumerate(time_stream):
        delta = ts - last
        if max_gap is not None:
            if delta <= max_gap:
                accumulated += delta
        elif active_stream[i]:
            accumulated += delta
        last = ts
    return accumulated


class AltitudeChanges(NamedTuple):
    gain: float
    loss: float


def altitude_changes(altitude_stream: Sequence[Optional[float]], min_step: float = 2.0) -> AltitudeChanges:
    """
    Total climbing and descending of an altitude stream.

    Small undulations are ignored with an accumulator: a change only counts
    once it reaches ``min_step`` meters in one direction.
    """
    gain = 0.0
    loss = 0.0
    acc = 0.0
    last = None
    for alt in altitude_stream:
        if alt is None:
            continue
        if last is not None:
            acc += alt - last
            if acc >= min_step:
                gain += acc
                acc = 0.0
            elif acc <= -min_step:
                loss -= acc
                acc = 0.0
        last = alt
    return AltitudeChanges(gain=gain, loss=loss)


# Pauses longer than this are never active, whatever the sensors report
MAX_IMMOBILE_GAP = 300


def create_active_stream(
    streams: dict,
    is_trainer: bool = False,
    max_immobile_gap: float = MAX_IMMOBILE_GAP
) -> list[bool]:
    """
    Flag each sample of an activity as active or stopped.

    A sample is active when the device reported it as moving. Trainer
    activities never move, so there a non zero cadence or power sample is
    active as well.

    Args:
        streams: Decoded streams, ``time`` and ``moving`` are required
        is_trainer: Activity was recorded on an indoor trainer
        max_immobile_gap: Samples closing a longer gap are stopped

    Returns:
        List of booleans, one per sample

    Raises:
        ValueError: If the moving and time streams differ in length
    """
    time_stream = streams["time"]
    moving = streams["moving"]
    if len(moving) != len(time_stream):
        raise ValueError("moving and time streams not same length")
    cadence = streams.get("cadence") if is_trainer else None
    watts = streams.get("watts") if is_trainer else None
    active = []
    for i, ts in enumerate(time_stream):
        if i and ts - time_stream[i - 1] > max_immobile_gap:
            active.append(False)
            continue
        flag = bool(moving[i])
        if not flag and is_trainer:
            flag = bool(
                (cadence and i < len(cadence) and cadence[i]) or
                (watts and i < len(watts) and watts[i])
            )
        active.append(flag)
    return active

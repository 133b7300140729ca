"""Rolling windows over time (or distance) indexed activity streams.

A window holds ``(timestamp, value)`` samples plus a logical offset marking
the first in-window sample. Eviction is lazy: shifted samples stay in the
buffers until the window is copied, and ``copy()`` keeps at most one of them
so elapsed time and distance can still be measured at the boundary.

``PowerWindow`` fills sensor dropouts with synthetic samples and keeps
running energy, normalized power and xPower totals; ``PaceWindow`` measures
pace over a distance. ``import_reduce`` finds the best full window of a
stream for any window implementation and caller supplied comparator.
"""

import enum
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Protocol, Sequence, TypeVar

from ridemetrics.services.stream_utils import avg as _avg
from ridemetrics.services.stream_utils import round_half_up

NP_MIN_TIME = 300  # Coggan says 20 mins, 5 is plenty for rolling searches
XP_MIN_TIME = 300
NP_ROLL_SECONDS = 30
XP_WINDOW_SECONDS = 25
XP_EPSILON = 0.1
XP_NEGLIGIBLE = 0.1


class SampleKind(str, enum.Enum):
    """Origin of a sample in a window."""
    REAL = "real"
    PAD = "pad"    # Synthetic, repeats the value that closed a small gap
    ZERO = "zero"  # Synthetic, fills a dropout longer than the max gap


class Window(Protocol):
    """Capabilities ``import_reduce`` needs from a window."""

    def add(self, ts: float, value: float) -> float: ...

    def full(self, offt: int = 0) -> bool: ...

    def copy(self) -> "Window": ...


W = TypeVar("W", bound=Window)


def import_reduce(
    window: W,
    times: Sequence[float],
    values: Sequence[float],
    comparator: Callable[[W, W], bool]
) -> Optional[W]:
    """
    Feed a stream through ``window`` and keep a copy of the best full window.

    A new leader is taken whenever the window is full and
    ``comparator(current, leader)`` is true, so ties favor later windows.

    Returns:
        Copy of the winning window, or None if the window never filled
    """
    if len(times) != len(values):
        raise TypeError("times and values not same length")
    leader = None
    for ts, value in zip(times, values):
        window.add(ts, value)
        if window.full() and (leader is None or comparator(window, leader)):
            leader = window.copy()
    return leader


class RollingWindow:
    """Time based sliding window; full once it spans ``period`` seconds."""

    def __init__(self, period: Optional[float] = None):
        self.period = period or None
        self._times: list[float] = []
        self._values: list[float] = []
        self._kinds: list[SampleKind] = []
        self._offt = 0

    def copy(self):
        instance = object.__new__(type(self))
        instance.__dict__.update(self.__dict__)
        safe_offset = self._offt - 1 if self._offt > 0 else 0
        instance._times = self._times[safe_offset:]
        instance._values = self._values[safe_offset:]
        instance._kinds = self._kinds[safe_offset:]
        instance._offt = 1 if self._offt > 0 else 0
        return instance

    def slice(self, start_time: float, end_time: float):
        """Copy trimmed to samples within ``[start_time, end_time]``."""
        window = self.copy()
        while window.size() and window.first_time() < start_time:
            window.shift()
        while window.size() and window.last_time() > end_time:
            window.pop()
        return window

    def import_data(self, times: Sequence[float], values: Sequence[float]) -> None:
        if len(times) != len(values):
            raise TypeError("times and values not same length")
        for ts, value in zip(times, values):
            self.add(ts, value)

    def import_reduce(self, times, values, comparator):
        return import_reduce(self, times, values, comparator)

    def elapsed(self, offt: int = 0) -> float:
        start = offt + self._offt
        if len(self._times) - start <= 1:
            return 0
        return self._times[-1] - self._times[start]

    def full(self, offt: int = 0) -> bool:
        if self.period is None:
            return False
        return self.elapsed(offt) >= self.period

    def add(self, ts: float, value: float, kind: SampleKind = SampleKind.REAL) -> float:
        self._values.append(self.add_value(value, ts))
        self._times.append(ts)
        self._kinds.append(kind)
        while self.full(offt=1):
            self.shift()
        return value

    def add_value(self, value: float, ts: float) -> float:
        return value

    def shift_value(self, value: float) -> None:
        pass

    def pop_value(self, value: float) -> None:
        pass

    def first_time(self, no_pad: bool = False) -> Optional[float]:
        if no_pad:
            for i in range(self._offt, len(self._values)):
                if self._kinds[i] is SampleKind.REAL:
                    return self._times[i]
            return None
        if self._offt >= len(self._times):
            return None
        return self._times[self._offt]

    def last_time(self, no_pad: bool = False) -> Optional[float]:
        if no_pad:
            for i in range(len(self._values) - 1, self._offt - 1, -1):
                if self._kinds[i] is SampleKind.REAL:
                    return self._times[i]
            return None
        if self._offt >= len(self._times):
            return None
        return self._times[-1]

    def size(self) -> int:
        return len(self._times) - self._offt

    def values(self) -> list[float]:
        return self._values[self._offt:]

    def times(self) -> list[float]:
        return self._times[self._offt:]

    def kinds(self) -> list[SampleKind]:
        return self._kinds[self._offt:]

    def shift(self) -> None:
        value = self._values[self._offt]
        self._offt += 1
        self.shift_value(value)

    def pop(self) -> None:
        value = self._values.pop()
        self._kinds.pop()
        self.pop_value(value)
        self._times.pop()


class RollingAverage(RollingWindow):
    """Window keeping a running sum for elapsed or per-sample averages."""

    def __init__(self, period: Optional[float] = None, ignore_zeros: bool = False):
        super().__init__(period)
        self._ignore_zeros = ignore_zeros
        self._zeros = 0
        self._sum = 0

    def avg(self, active: bool = False) -> Optional[float]:
        if active:
            count = len(self._values) - self._offt - self._zeros
            return self._sum / count if count else 0
        if self._ignore_zeros:
            raise TypeError("Elapsed avg unsupported when ignore_zeros=True")
        elapsed = self.elapsed()
        if not elapsed:
            return None
        # The first sample's value belongs to the time before the window
        return (self._sum - self._values[self._offt]) / elapsed

    def add_value(self, value, ts):
        self._sum += value
        if self._ignore_zeros and not value:
            self._zeros += 1
        return value

    def shift_value(self, value):
        self._sum -= value
        if self._ignore_zeros and not value:
            self._zeros -= 1

    def pop_value(self, value):
        self._sum -= value
        if self._ignore_zeros and not value:
            self._zeros -= 1


def peak_average(
    period: float,
    times: Sequence[float],
    values: Sequence[float],
    active: bool = False,
    ignore_zeros: bool = False
) -> Optional[RollingAverage]:
    """Highest average window of ``period`` seconds."""
    roll = RollingAverage(period, ignore_zeros=ignore_zeros)
    return roll.import_reduce(
        times, values, lambda cur, lead: at_least(cur.avg(active=active), lead.avg(active=active))
    )


def smooth(period: int, times: Optional[Sequence[float]], values: Sequence[float]) -> list[float]:
    """Rolling per-sample average; ``times`` defaults to sample indexes."""
    smoothed = []
    roll = RollingAverage(period)
    for i, value in enumerate(values):
        ts = i if times is None else times[i]
        if i < period - 1:
            # soften the leading edge by unweighting the first values.
            weighted = list(values[i:period - 1])
            weighted.append(value)
            roll.add(ts, _avg(weighted))
        else:
            roll.add(ts, value)
        smoothed.append(roll.avg(active=True))
    return smoothed


def at_least(a: Optional[float], b: Optional[float]) -> bool:
    return a is not None and b is not None and a >= b


def at_most(a: Optional[float], b: Optional[float]) -> bool:
    return a is not None and b is not None and a <= b


@dataclass
class _InlineNP:
    """Running state for normalized power."""
    roll_size: int
    roll: list
    slot: int = 0
    roll_sum: float = 0.0
    total: float = 0.0
    stream: list = field(default_factory=list)  # quartic term per sample

    def copy(self, keep: int) -> "_InlineNP":
        return replace(self, roll=list(self.roll), stream=self.stream[len(self.stream) - keep:])


@dataclass
class _InlineXP:
    """Running state for xPower."""
    sample_interval: float
    attenuation: float
    sample_weight: float
    prev_time: float = 0.0
    weighted: float = 0.0
    total: float = 0.0
    count: int = 0
    stream: list = field(default_factory=list)  # quartic total added per sample
    counts: list = field(default_factory=list)  # count added per sample

    def copy(self, keep: int) -> "_InlineXP":
        offt = len(self.stream) - keep
        return replace(self, stream=self.stream[offt:], counts=self.counts[offt:])


class PowerWindow(RollingWindow):
    """
    Power window with dropout correction and running energy/NP/xPower.

    When a new sample arrives more than ``max_gap`` seconds after the last,
    the hole is filled with Zero samples every ``ideal_gap`` seconds; gaps
    between ``ideal_gap`` and ``max_gap`` are filled with Pad samples that
    repeat the new value.
    """

    def __init__(
        self,
        period: Optional[float] = None,
        ideal_gap: Optional[float] = None,
        max_gap: Optional[float] = None,
        inline_np: bool = False,
        inline_xp: bool = False
    ):
        super().__init__(period)
        self._joules = 0.0
        self.ideal_gap = ideal_gap
        if max_gap and ideal_gap:
            max_gap = max(max_gap, ideal_gap)
        self.max_gap = max_gap
        sample_interval = ideal_gap or 1
        self._inline_np: Optional[_InlineNP] = None
        self._inline_xp: Optional[_InlineXP] = None
        if inline_np:
            roll_size = max(1, round_half_up(NP_ROLL_SECONDS / sample_interval))
            self._inline_np = _InlineNP(roll_size=roll_size, roll=[0.0] * roll_size)
        if inline_xp:
            samples_per_window = XP_WINDOW_SECONDS / sample_interval
            self._inline_xp = _InlineXP(
                sample_interval=sample_interval,
                attenuation=samples_per_window / (samples_per_window + sample_interval),
                sample_weight=sample_interval / (samples_per_window + sample_interval),
            )

    def add(self, ts: float, value: float, kind: SampleKind = SampleKind.REAL) -> float:
        if self._times and self.ideal_gap:
            prev_ts = self._times[-1]
            gap = ts - prev_ts
            if self.max_gap is not None and gap > self.max_gap:
                i = self.ideal_gap
                while i < gap:
                    super().add(prev_ts + i, 0.0, SampleKind.ZERO)
                    i += self.ideal_gap
            elif gap > self.ideal_gap:
                i = self.ideal_gap
                while i < gap:
                    super().add(prev_ts + i, value, SampleKind.PAD)
                    i += self.ideal_gap
        return super().add(ts, value, kind)

    def add_value(self, value, ts):
        i = len(self._times)
        gap = ts - self._times[i - 1] if i else 0
        self._joules += value * gap
        if self._inline_np is not None:
            state = self._inline_np
            state.slot = (state.slot + 1) % state.roll_size
            state.roll_sum += value
            state.roll_sum -= state.roll[state.slot]
            state.roll[state.slot] = value
            npa = state.roll_sum / min(state.roll_size, i + 1)
            qnpa = npa * npa * npa * npa  # unrolled for perf
            state.total += qnpa
            state.stream.append(qnpa)
        if self._inline_xp is not None:
            state = self._inline_xp
            time = i * state.sample_interval
            added = 0.0
            counts = 0
            while (state.weighted > XP_NEGLIGIBLE and
                   time > state.prev_time + state.sample_interval + XP_EPSILON):
                # Only runs for unpadded streams
                state.weighted *= state.attenuation
                state.prev_time += state.sample_interval
                w = state.weighted
                added += w * w * w * w  # unrolled for perf
                counts += 1
            state.weighted *= state.attenuation
            state.weighted += state.sample_weight * value
            state.prev_time = time
            w = state.weighted
            added += w * w * w * w  # unrolled for perf
            counts += 1
            state.total += added
            state.count += counts
            state.stream.append(added)
            state.counts.append(counts)
        return value

    def shift_value(self, value):
        i = self._offt - 1
        if i + 1 < len(self._times):
            gap = self._times[i + 1] - self._times[i]
            self._joules -= self._values[i + 1] * gap
        if self._inline_np is not None:
            self._inline_np.total -= self._inline_np.stream[i]
        if self._inline_xp is not None:
            self._inline_xp.total -= self._inline_xp.stream[i]
            self._inline_xp.count -= self._inline_xp.counts[i]

    def pop(self) -> None:
        if self._inline_np is not None or self._inline_xp is not None:
            raise TypeError("pop is unsupported with inline NP/XP")
        super().pop()

    def pop_value(self, value):
        last = len(self._times) - 1
        gap = self._times[last] - self._times[last - 1] if last >= 1 else 0
        self._joules -= value * gap

    def avg(self) -> Optional[float]:
        elapsed = self.elapsed()
        if not elapsed:
            return None
        return self._joules / elapsed

    def _covered_time(self) -> float:
        # Sample count times the sample interval, as calc_np and calc_xp measure it
        return self.size() * (self.ideal_gap or 1)

    def np(self, external: bool = False) -> Optional[float]:
        if self._inline_np is not None and not external:
            if self._covered_time() < NP_MIN_TIME:
                return None
            return (max(self._inline_np.total, 0) / self.size()) ** 0.25
        return calc_np(self._values, 1 / (self.ideal_gap or 1), self._offt)

    def xp(self, external: bool = False) -> Optional[float]:
        if self._inline_xp is not None and not external:
            if self._covered_time() < XP_MIN_TIME:
                return None
            state = self._inline_xp
            if not state.count:
                return None
            return (max(state.total, 0) / state.count) ** 0.25
        return calc_xp(self._values, 1 / (self.ideal_gap or 1), self._offt)

    def kj(self) -> float:
        return self._joules / 1000

    @property
    def joules(self) -> float:
        return self._joules

    def copy(self):
        instance = super().copy()
        keep = len(instance._times)
        if self._inline_np is not None:
            instance._inline_np = self._inline_np.copy(keep)
        if self._inline_xp is not None:
            instance._inline_xp = self._inline_xp.copy(keep)
        return instance


class PaceWindow(RollingWindow):
    """Distance window over a cumulative distance stream; avg() is pace (s/m)."""

    def distance(self, offt: int = 0) -> Optional[float]:
        start_idx = offt + self._offt
        if start_idx >= len(self._values):
            return None
        start = self._values[start_idx]
        end = self._values[-1]
        if start is None or end is None:
            return None
        return end - start

    def avg(self) -> Optional[float]:
        dist = self.distance()
        elapsed = self.elapsed()
        if not dist or not elapsed:
            return None
        return elapsed / dist

    def full(self, offt: int = 0) -> bool:
        if self.period is None:
            return False
        dist = self.distance(offt)
        return dist is not None and dist >= self.period


def calc_np(stream: Sequence[float], sample_rate: float = 1, offset: int = 0) -> Optional[float]:
    """
    Normalized power of an evenly sampled watts stream.

    4th root of the mean 4th power of the 30 second rolling average. The
    rolling average is taken over the samples seen so far until the first
    30 seconds have elapsed.

    Args:
        stream: Watts values
        sample_rate: Samples per second
        offset: Index of the first sample to use

    Returns:
        NP in watts, or None for less than 5 minutes of data
    """
    sample_rate = sample_rate or 1
    if not stream:
        return None
    size = len(stream) - offset
    if size / sample_rate < NP_MIN_TIME:
        return None
    rolling_size = round_half_up(NP_ROLL_SECONDS * sample_rate)
    if rolling_size < 2:
        # Sample rate is too low for meaningful data.
        return None
    rolling = [0.0] * rolling_size
    total = 0.0
    count = 0
    rolling_sum = 0.0
    for i in range(offset, len(stream)):
        index = count % rolling_size
        watts = stream[i]
        rolling_sum += watts
        rolling_sum -= rolling[index]
        rolling[index] = watts
        npa = rolling_sum / min(rolling_size, count + 1)
        total += npa * npa * npa * npa  # unrolled for perf
        count += 1
    return (total / count) ** 0.25


def calc_xp(stream: Sequence[float], sample_rate: float = 1, offset: int = 0) -> Optional[float]:
    """
    xPower of an evenly sampled watts stream.

    An exponentially weighted average with a 25 second time constant, which
    better reflects recovery from oxygen debt than NP's flat 30s window.

    Returns:
        xPower in watts, or None for less than 5 minutes of data
    """
    sample_rate = sample_rate or 1
    if not stream:
        return None
    size = len(stream) - offset
    if size / sample_rate < XP_MIN_TIME:
        return None
    sample_interval = 1 / sample_rate
    samples_per_window = XP_WINDOW_SECONDS / sample_interval
    attenuation = samples_per_window / (samples_per_window + sample_interval)
    sample_weight = sample_interval / (samples_per_window + sample_interval)
    prev_time = 0.0
    weighted = 0.0
    total = 0.0
    count = 0
    for i in range(offset, len(stream)):
        time = (i - offset) * sample_interval
        while weighted > XP_NEGLIGIBLE and time > prev_time + sample_interval + XP_EPSILON:
            weighted *= attenuation
            prev_time += sample_interval
            total += weighted * weighted * weighted * weighted  # unrolled for perf
            count += 1
        weighted *= attenuation
        weighted += sample_weight * stream[i]
        prev_time = time
        total += weighted * weighted * weighted * weighted  # unrolled for perf
        count += 1
    return (total / count) ** 0.25 if count else 0

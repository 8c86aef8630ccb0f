"""
Nearest and windowed joins between event instants and a sorted glucose series.

All offsets and tolerances are in minutes; instants are epoch milliseconds.
Window bounds are inclusive unless stated otherwise.
"""

from bisect import bisect_left, bisect_right
from typing import List, Optional, Sequence, Tuple

from .models import Reading

MS_PER_MINUTE = 60 * 1000


class TimeSeries:
    """
    A sorted series of (timestamp_ms, value) samples supporting window joins.

    Timestamps must be sorted ascending; duplicates are allowed.
    """

    def __init__(self, times: Sequence[int], values: Sequence[float]):
        if len(times) != len(values):
            raise ValueError("times and values must have the same length")
        self.times = list(times)
        self.values = list(values)

    @classmethod
    def from_readings(cls, readings: Sequence[Reading]) -> "TimeSeries":
        return cls([r.timestamp_ms for r in readings], [r.value_mg_dl for r in readings])

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[int, float]]) -> "TimeSeries":
        ordered = sorted(pairs, key=lambda p: p[0])
        return cls([p[0] for p in ordered], [p[1] for p in ordered])

    def __len__(self) -> int:
        return len(self.times)

    def nearest(self, target_ms: int, tolerance_minutes: float) -> Optional[float]:
        """
        Value of the sample closest to target, if within tolerance.

        The earliest sample wins exact distance ties. The scan starts at the
        first sample inside the tolerance window and stops once the series
        has moved past it.
        """
        tol = tolerance_minutes * MS_PER_MINUTE
        best = None
        best_dist = None
        i = bisect_left(self.times, target_ms - tol)
        while i < len(self.times):
            t = self.times[i]
            if t > target_ms + tol:
                break
            dist = abs(t - target_ms)
            if best_dist is None or dist < best_dist:
                best = self.values[i]
                best_dist = dist
            i += 1
        return best

    def _bounds(self, target_ms: int, start_offset_minutes: float, end_offset_minutes: float,
                include_start: bool = True) -> Tuple[int, int]:
        start = target_ms + start_offset_minutes * MS_PER_MINUTE
        end = target_ms + end_offset_minutes * MS_PER_MINUTE
        lo = bisect_left(self.times, start) if include_start else bisect_right(self.times, start)
        hi = bisect_right(self.times, end)
        return lo, hi

    def window(self, target_ms: int, start_offset_minutes: float, end_offset_minutes: float,
               include_start: bool = True) -> List[Tuple[int, float]]:
        """
        All samples with timestamps in [target + start, target + end].

        Args:
            target_ms: Anchor instant
            start_offset_minutes: Window start relative to target (negative = before)
            end_offset_minutes: Window end relative to target
            include_start: False makes the window (start, end], used for
                "strictly after the dose" windows

        Returns:
            List of (timestamp_ms, value) in time order
        """
        lo, hi = self._bounds(target_ms, start_offset_minutes, end_offset_minutes, include_start)
        return list(zip(self.times[lo:hi], self.values[lo:hi]))

    def window_values(self, target_ms: int, start_offset_minutes: float, end_offset_minutes: float,
                      include_start: bool = True) -> List[float]:
        lo, hi = self._bounds(target_ms, start_offset_minutes, end_offset_minutes, include_start)
        return self.values[lo:hi]

    def nearest_in_window(self, target_ms: int, start_offset_minutes: float,
                          end_offset_minutes: float) -> Optional[float]:
        """Value of the sample closest to target inside an asymmetric window."""
        best = None
        best_dist = None
        for t, value in self.window(target_ms, start_offset_minutes, end_offset_minutes):
            dist = abs(t - target_ms)
            if best_dist is None or dist < best_dist:
                best = value
                best_dist = dist
        return best


def any_between(instants: Sequence[int], start_ms: float, end_ms: float) -> bool:
    """True if any sorted instant lies in [start_ms, end_ms]."""
    i = bisect_left(instants, start_ms)
    return i < len(instants) and instants[i] <= end_ms


def any_within(instants: Sequence[int], target_ms: int, window_minutes: float) -> bool:
    """True if any sorted instant lies within ± window_minutes of target."""
    w = window_minutes * MS_PER_MINUTE
    return any_between(instants, target_ms - w, target_ms + w)


def last_at_or_before(instants: Sequence[int], target_ms: int, lookback_minutes: float) -> Optional[int]:
    """Latest sorted instant in [target - lookback, target], or None."""
    i = bisect_right(instants, target_ms) - 1
    if i >= 0 and instants[i] >= target_ms - lookback_minutes * MS_PER_MINUTE:
        return instants[i]
    return None


def first_after(instants: Sequence[int], target_ms: int, lookahead_minutes: float) -> Optional[int]:
    """Earliest sorted instant in (target, target + lookahead], or None."""
    i = bisect_right(instants, target_ms)
    if i < len(instants) and instants[i] <= target_ms + lookahead_minutes * MS_PER_MINUTE:
        return instants[i]
    return None


def bolus_lead_minutes(meal_ms: int, bolus_times: Sequence[int],
                       lookback_minutes: float = 60, lookahead_minutes: float = 30) -> Optional[float]:
    """
    Minutes between the bolus associated with a meal and the meal itself.

    Prefers the last bolus at or before the meal within the lookback window,
    then the first bolus after it within the lookahead window.

    Returns:
        Positive minutes for a pre-bolus, negative for a late bolus, or None
        when no bolus falls in the search window
    """
    before = last_at_or_before(bolus_times, meal_ms, lookback_minutes)
    if before is not None:
        return (meal_ms - before) / MS_PER_MINUTE
    after = first_after(bolus_times, meal_ms, lookahead_minutes)
    if after is not None:
        return -(after - meal_ms) / MS_PER_MINUTE
    return None

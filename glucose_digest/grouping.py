"""
Contextual grouping of events into named temporal cells.

Bins are evaluated in local time. A cell is created the first time an event
is assigned to its key and accumulates counts, flags, named sample lists and
start-trend votes for the per-cell summaries.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .data_loader import LocalParts
from .joins import MS_PER_MINUTE, TimeSeries
from .models import AnalysisThresholds
from .stats import interquartile_range, median, percentage, round_half_up

# Time-of-day bins: (label, start_hour, end_hour), end exclusive
TIME_OF_DAY_BINS = [
    ("overnight(0-4)", 0, 4),
    ("morning(6-9)", 6, 9),
    ("midday(11-13)", 11, 13),
    ("evening(17-21)", 17, 21),
]
OTHER_BIN = "other"

# Hour used to look up the scheduled ISF for each time-of-day bin
DAYPART_ANCHOR_HOURS = {
    "overnight(0-4)": 1,
    "morning(6-9)": 6,
    "midday(11-13)": 11,
    "evening(17-21)": 17,
}

IOB_UNKNOWN = "iob:unknown"
IOB_BANDS = ["iob<0.5", "iob 0.5-1.5", "iob>1.5", IOB_UNKNOWN]

LEAD_NONE = "none(-60..+30)"
LEAD_BINS = ["pre>=20", "pre10-19", "pre5-9", "pre0-4", "post0-9", "post10-19", "post>=20", LEAD_NONE]

# Generic meal slots (local hour ranges, end exclusive)
MEAL_SLOT_WINDOWS = {
    "breakfast": (5, 11),
    "lunch": (11, 15),
    "dinner": (17, 21),
}

# Weekday school meal windows in minutes of the local day: (start, end, end_inclusive)
SCHOOL_WINDOWS = {
    "schoolBreakfast": (7 * 60, 8 * 60, False),  # 07:00-08:00
    "schoolLunch": (11 * 60 + 20, 12 * 60 + 10, True),  # 11:20-12:10
}

TREND_LABELS = ("rising", "flat", "falling")


def time_of_day_bin(hour: int) -> str:
    for label, start, end in TIME_OF_DAY_BINS:
        if start <= hour < end:
            return label
    return OTHER_BIN


def iob_bin(iob: Optional[float]) -> str:
    if iob is None:
        return IOB_UNKNOWN
    if iob < 0.5:
        return "iob<0.5"
    if iob < 1.5:
        return "iob 0.5-1.5"
    return "iob>1.5"


def lead_time_bin(minutes: Optional[float]) -> str:
    """Bin a bolus lead time (positive = bolus before the meal)."""
    if minutes is None:
        return LEAD_NONE
    if minutes >= 20:
        return "pre>=20"
    if minutes >= 10:
        return "pre10-19"
    if minutes >= 5:
        return "pre5-9"
    if minutes >= 0:
        return "pre0-4"
    if minutes > -10:
        return "post0-9"
    if minutes > -20:
        return "post10-19"
    return "post>=20"


def meal_slot(hour: int) -> str:
    for slot, (start, end) in MEAL_SLOT_WINDOWS.items():
        if start <= hour < end:
            return slot
    return OTHER_BIN


def school_windows(parts: LocalParts) -> List[str]:
    """Names of the weekday school windows containing the instant."""
    if not parts.is_weekday:
        return []
    t = parts.minute_of_day
    matches = []
    for name, (start, end, end_inclusive) in SCHOOL_WINDOWS.items():
        if start <= t and (t <= end if end_inclusive else t < end):
            matches.append(name)
    return matches


# =============================================================================
# EVENT TRAJECTORY FEATURES
# =============================================================================

def start_trend(series: TimeSeries, event_ms: int, thresholds: AnalysisThresholds = None) -> Optional[str]:
    """
    Direction of glucose over the window before an event.

    Compares the last and first readings in [event - 15 min, event]; a net
    change of at least 10 mg/dL either way is rising/falling.
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()
    points = series.window_values(event_ms, -thresholds.trend_window_minutes, 0)
    if len(points) < 2:
        return None
    delta = points[-1] - points[0]
    if delta >= thresholds.trend_delta_mg_dl:
        return "rising"
    if delta <= -thresholds.trend_delta_mg_dl:
        return "falling"
    return "flat"


def time_to_return(window: Sequence[Tuple[int, float]], event_ms: int, ceiling: float) -> Optional[float]:
    """
    Minutes from the event until glucose first comes back to ``ceiling``
    after having exceeded it. None if it never exceeded or never returned.
    """
    exceeded = False
    for t, value in window:
        if value > ceiling:
            exceeded = True
        elif exceeded:
            return (t - event_ms) / MS_PER_MINUTE
    return None


def post_event_response(series: TimeSeries, event_ms: int,
                        thresholds: AnalysisThresholds = None) -> Dict[str, object]:
    """
    Glucose response to an event over the post-event peak window.

    Returns:
        dict with start (nearest reading within ±5 min, falling back to
        ±10 min), peak, hit_high, time_to_180, delta (peak - start) and trend
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    start = series.nearest(event_ms, 5)
    if start is None:
        start = series.nearest(event_ms, 10)
    trend = start_trend(series, event_ms, thresholds)

    window = series.window(event_ms, 0, thresholds.peak_window_minutes)
    if not window:
        return {"start": start, "peak": None, "hit_high": False, "time_to_180": None,
                "delta": None, "trend": trend}

    peak = max(value for _, value in window)
    return {
        "start": start,
        "peak": peak,
        "hit_high": peak > thresholds.high_mg_dl,
        "time_to_180": time_to_return(window, event_ms, thresholds.high_mg_dl),
        "delta": peak - start if start is not None else None,
        "trend": trend,
    }


# =============================================================================
# CELLS
# =============================================================================

@dataclass
class ContextCell:
    """Accumulated samples for one composite grouping key."""
    key: Tuple[str, ...]
    n: int = 0
    flags: Counter = field(default_factory=Counter)
    samples: Dict[str, List[float]] = field(default_factory=dict)
    trends: Counter = field(default_factory=Counter)

    def record(self) -> None:
        self.n += 1

    def flag(self, name: str) -> None:
        self.flags[name] += 1

    def sample(self, name: str, value: Optional[float]) -> None:
        """Append a sample; None values are skipped, not counted as zero."""
        values = self.samples.setdefault(name, [])
        if value is not None:
            values.append(value)

    def vote(self, trend: Optional[str]) -> None:
        if trend is not None:
            self.trends[trend] += 1

    def values(self, name: str) -> List[float]:
        return self.samples.get(name, [])

    def median(self, name: str) -> Optional[float]:
        return median(self.values(name))

    def iqr(self, name: str) -> Optional[float]:
        return interquartile_range(self.values(name))

    def pct(self, flag_name: str) -> float:
        return percentage(self.flags[flag_name], self.n)

    def majority_trend(self) -> Tuple[Optional[str], Optional[float]]:
        """
        Most common start trend and its share of voting members (percent, 0 dp).

        Ties resolve in the order rising, flat, falling.
        """
        total = sum(self.trends.values())
        if not total:
            return None, None
        label = max(TREND_LABELS, key=lambda t: (self.trends[t], -TREND_LABELS.index(t)))
        return label, round_half_up(100 * self.trends[label] / total)


class CellTable:
    """Cells keyed by composite key, created on first use."""

    def __init__(self):
        self._cells: Dict[Tuple[str, ...], ContextCell] = {}

    def cell(self, *key: str) -> ContextCell:
        if key not in self._cells:
            self._cells[key] = ContextCell(key=key)
        return self._cells[key]

    def __contains__(self, key) -> bool:
        return tuple(key) in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    def __iter__(self) -> Iterator[ContextCell]:
        for key in sorted(self._cells):
            yield self._cells[key]

    def keys(self) -> List[Tuple[str, ...]]:
        return sorted(self._cells)

"""
Correction effectiveness by context.

A correction is an insulin-only dose of at least the minimum size with no
meal and no exercise entry within ±240 minutes. Each qualifying correction is
measured by its 2h and 3h raw drop and its dose-normalized drop at 120
minutes, and grouped by time of day and insulin on board at dose time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .classification import event_times, is_confounded, is_correction_only, is_exercise, is_meal
from .data_loader import LOCAL_TZ, local_parts, sort_cycles_by_time
from .grouping import DAYPART_ANCHOR_HOURS, CellTable, ContextCell, iob_bin, time_of_day_bin
from .joins import MS_PER_MINUTE, TimeSeries
from .models import AnalysisThresholds, DeviceCycleRecord, ProfileSettings, Reading, TreatmentEvent

logger = logging.getLogger(__name__)


@dataclass
class CorrectionOutcome:
    """Measured effect of one qualifying correction dose."""
    timestamp_ms: int
    units: float
    pre_glucose: Optional[float]
    drop_2h: Optional[float]
    drop_3h: Optional[float]
    drop_per_unit_120: Optional[float]
    went_low_4h: bool
    iob: Optional[float]
    time_of_day: str
    iob_band: str

    @property
    def measurable(self) -> bool:
        return any(v is not None for v in (self.drop_2h, self.drop_3h, self.drop_per_unit_120))


def drop_after(series: TimeSeries, dose_ms: int, pre: Optional[float], hours: float) -> Optional[float]:
    """Pre-dose glucose minus the last reading in (dose, dose + hours]."""
    if pre is None:
        return None
    window = series.window_values(dose_ms, 0, hours * 60, include_start=False)
    if not window:
        return None
    return pre - window[-1]


def drop_per_unit(series: TimeSeries, dose_ms: int, pre: Optional[float], units: float,
                  thresholds: AnalysisThresholds) -> Optional[float]:
    """(pre - reading nearest the 120-minute mark within ±10 min) / units."""
    if pre is None or not units:
        return None
    target = dose_ms + thresholds.dose_horizon_minutes * MS_PER_MINUTE
    later = series.nearest(target, thresholds.dose_tolerance_minutes)
    if later is None:
        return None
    return (pre - later) / units


def iob_series(cycles: Sequence[DeviceCycleRecord]) -> TimeSeries:
    """Insulin-on-board samples from loop cycles, sorted by time."""
    ordered = sort_cycles_by_time(cycles)
    return TimeSeries.from_pairs([
        (c.timestamp_ms, c.insulin_on_board_units) for c in ordered if c.insulin_on_board_units is not None
    ])


def collect_corrections(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                        cycles: Sequence[DeviceCycleRecord] = (), thresholds: AnalysisThresholds = None,
                        tz=LOCAL_TZ) -> List[CorrectionOutcome]:
    """
    Measure every unconfounded correction.

    Corrections with a meal (any carbs) or exercise entry within the
    confound window are excluded. Corrections where no drop metric is
    computable are excluded too.

    Returns:
        List of CorrectionOutcome in time order
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    series = TimeSeries.from_readings(readings)
    iob = iob_series(cycles)
    meal_times = event_times(treatments, lambda e: is_meal(e, 0))
    exercise_times = event_times(treatments, is_exercise)

    outcomes = []
    excluded = 0
    for event in treatments:
        if not is_correction_only(event, thresholds.correction_min_units):
            continue
        ms = event.timestamp_ms
        if is_confounded(ms, meal_times, exercise_times, thresholds.confound_window_minutes):
            excluded += 1
            continue

        pre = series.nearest_in_window(ms, thresholds.pre_window_start_minutes, thresholds.pre_window_end_minutes)
        iob_value = iob.nearest(ms, thresholds.iob_tolerance_minutes)
        after_4h = series.window_values(ms, 0, 4 * 60, include_start=False)
        outcome = CorrectionOutcome(
            timestamp_ms=ms,
            units=event.insulin_units,
            pre_glucose=pre,
            drop_2h=drop_after(series, ms, pre, 2),
            drop_3h=drop_after(series, ms, pre, 3),
            drop_per_unit_120=drop_per_unit(series, ms, pre, event.insulin_units, thresholds),
            went_low_4h=any(v < thresholds.low_mg_dl for v in after_4h),
            iob=iob_value,
            time_of_day=time_of_day_bin(local_parts(ms, tz).hour),
            iob_band=iob_bin(iob_value),
        )
        if outcome.measurable:
            outcomes.append(outcome)

    logger.info(f"Corrections: {len(outcomes)} measured, {excluded} excluded by meal/exercise confounds")
    return outcomes


def expected_isf(profile: Optional[ProfileSettings], time_of_day: str) -> Optional[float]:
    """Scheduled ISF at the anchor hour of a time-of-day bin."""
    hour = DAYPART_ANCHOR_HOURS.get(time_of_day)
    if profile is None or hour is None:
        return None
    return profile.isf_at(hour * 3600)


def summarize_correction_cell(cell: ContextCell, profile: Optional[ProfileSettings] = None) -> Dict[str, Any]:
    time_of_day, band = cell.key
    observed = cell.median("perUnit120")
    expected = expected_isf(profile, time_of_day)
    bias = round(observed / expected, 2) if observed is not None and expected else None
    return {
        "group": f"{time_of_day} | {band}",
        "timeOfDay": time_of_day,
        "iobBand": band,
        "n": cell.n,
        "pctIneffective2h": cell.pct("ineffective"),
        "pctLow4h": cell.pct("low4h"),
        "medDrop2h": cell.median("drops2"),
        "medDrop3h": cell.median("drops3"),
        "medDropPerU120": observed,
        "medIob": cell.median("iob"),
        "expectedIsf": expected,
        "isfBias": bias,
    }


def group_corrections(outcomes: Sequence[CorrectionOutcome], thresholds: AnalysisThresholds = None) -> CellTable:
    """Group correction outcomes into time-of-day x IOB band cells."""
    if thresholds is None:
        thresholds = AnalysisThresholds()

    table = CellTable()
    for outcome in outcomes:
        cell = table.cell(outcome.time_of_day, outcome.iob_band)
        cell.record()
        if outcome.drop_2h is not None and outcome.drop_2h < thresholds.ineffective_drop_mg_dl:
            cell.flag("ineffective")
        if outcome.went_low_4h:
            cell.flag("low4h")
        cell.sample("drops2", outcome.drop_2h)
        cell.sample("drops3", outcome.drop_3h)
        cell.sample("perUnit120", outcome.drop_per_unit_120)
        cell.sample("iob", outcome.iob)
    return table


def build_correction_context(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                             cycles: Sequence[DeviceCycleRecord] = (), profile: Optional[ProfileSettings] = None,
                             thresholds: AnalysisThresholds = None, tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Correction effectiveness per time-of-day x IOB band cell.

    Returns:
        dict with meta (window and thresholds) and groups (one summary per
        cell, sorted by group label)
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    outcomes = collect_corrections(readings, treatments, cycles, thresholds, tz)
    table = group_corrections(outcomes, thresholds)
    groups = sorted((summarize_correction_cell(cell, profile) for cell in table), key=lambda g: g["group"])

    return {
        "meta": {
            "window": f"±{thresholds.confound_window_minutes} min meals/exercise excluded",
            "minUnits": thresholds.correction_min_units,
            "ineffectiveDropMgDl": thresholds.ineffective_drop_mg_dl,
            "doseHorizonMin": thresholds.dose_horizon_minutes,
            "corrections": len(outcomes),
        },
        "groups": groups,
    }

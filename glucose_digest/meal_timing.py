"""
Meal response by bolus lead time.

Meals (carbs at or above the meal threshold) are paired with the nearest
bolus in the -60/+30 minute search window and binned by lead time. Each meal
is counted in the overall table, its meal slot, its time-of-day bin and,
on weekdays, any school window it falls in.
"""

import logging
from typing import Any, Dict, Sequence

from .classification import event_times, is_bolus, is_meal
from .data_loader import LOCAL_TZ, local_parts
from .grouping import (
    LEAD_BINS, OTHER_BIN, SCHOOL_WINDOWS, TIME_OF_DAY_BINS, CellTable, ContextCell,
    lead_time_bin, meal_slot, post_event_response, school_windows, time_of_day_bin,
)
from .joins import TimeSeries, bolus_lead_minutes
from .models import AnalysisThresholds, Reading, TreatmentEvent
from .stats import round_half_up

logger = logging.getLogger(__name__)

SLOT_GROUPS = ["breakfast", "lunch", "dinner"]


def summarize_meal_cell(cell: ContextCell) -> Dict[str, Any]:
    """Per-cell meal response statistics."""
    iqr = cell.iqr("starts")
    trend, trend_pct = cell.majority_trend()
    return {
        "n": cell.n,
        "pctHigh": cell.pct("high"),
        "medianPeak": cell.median("peaks"),
        "medianTimeTo180Min": cell.median("t180s"),
        "startBgMed": cell.median("starts"),
        "startBgIQR": round_half_up(iqr) if iqr is not None else None,
        "deltaPeakMed": cell.median("deltas"),
        "startTrend": trend,
        "startTrendPct": trend_pct,
        "leadMinutesMed": cell.median("leads"),
    }


def _summarize(table: CellTable, group: str) -> Dict[str, Any]:
    out = {}
    for lead_bin in LEAD_BINS:
        if (group, lead_bin) in table:
            out[lead_bin] = summarize_meal_cell(table.cell(group, lead_bin))
    return out


def build_meal_timing(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                      thresholds: AnalysisThresholds = None, tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Post-meal response grouped by bolus lead time and meal context.

    Args:
        readings: Sorted readings
        treatments: Sorted treatment events
        thresholds: Meal carb threshold, search windows, peak window
        tz: Reference timezone for slots and school windows

    Returns:
        dict with leadBins, overall, breakfast, lunch, dinner, schoolBreakfast,
        schoolLunch (each lead bin -> summary) and dayparts (time-of-day
        bin -> lead bin -> summary)
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    series = TimeSeries.from_readings(readings)
    bolus_times = event_times(treatments, is_bolus)
    meals = [t for t in treatments if is_meal(t, thresholds.meal_min_carbs)]

    table = CellTable()
    for meal in meals:
        lead = bolus_lead_minutes(meal.timestamp_ms, bolus_times,
                                  thresholds.lead_lookback_minutes, thresholds.lead_lookahead_minutes)
        lead_bin = lead_time_bin(lead)
        response = post_event_response(series, meal.timestamp_ms, thresholds)
        parts = local_parts(meal.timestamp_ms, tz)

        groups = ["overall"]
        slot = meal_slot(parts.hour)
        if slot != OTHER_BIN:
            groups.append(slot)
        groups.extend(school_windows(parts))
        groups.append("daypart:" + time_of_day_bin(parts.hour))

        for group in groups:
            cell = table.cell(group, lead_bin)
            cell.record()
            if response["hit_high"]:
                cell.flag("high")
            cell.sample("peaks", response["peak"])
            cell.sample("t180s", response["time_to_180"])
            cell.sample("starts", response["start"])
            cell.sample("deltas", response["delta"])
            cell.sample("leads", lead)
            cell.vote(response["trend"])

    logger.info(f"Meal timing: {len(meals)} meals, {len(bolus_times)} boluses")

    out: Dict[str, Any] = {"leadBins": list(LEAD_BINS), "mealCount": len(meals)}
    for group in ["overall"] + SLOT_GROUPS + list(SCHOOL_WINDOWS):
        out[group] = _summarize(table, group)

    dayparts = {}
    for label in [b[0] for b in TIME_OF_DAY_BINS] + [OTHER_BIN]:
        summary = _summarize(table, "daypart:" + label)
        if summary:
            dayparts[label] = summary
    out["dayparts"] = dayparts
    return out

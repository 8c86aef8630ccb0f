"""
Snapshot inventory, time-in-range digest and risk breakdowns.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from .classification import event_times, is_bolus, is_meal
from .data_loader import LOCAL_TZ, UTC, local_day_key, readings_frame
from .joins import MS_PER_MINUTE, TimeSeries, any_between
from .models import AnalysisThresholds, Reading, Snapshot, TreatmentEvent
from .stats import coefficient_of_variation, coverage, glycemic_risk, percentage, range_counts

logger = logging.getLogger(__name__)


def _iso(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).isoformat().replace("+00:00", "Z")


def build_basic_summary(snapshot: Snapshot) -> Dict[str, Any]:
    """Record counts, span and coverage of the loaded snapshot."""
    readings = snapshot.readings
    entries: Dict[str, Any] = {"count": snapshot.raw_counts.get("entries", len(readings))}
    if readings:
        cov = coverage(readings)
        entries.update({
            "earliest": _iso(readings[0].timestamp_ms),
            "latest": _iso(readings[-1].timestamp_ms),
            "durationDays": cov["durationDays"],
            "expectedAt5min": round(cov["expected"]),
            "coverage5min": round(cov["coverage"], 3) if cov["coverage"] is not None else None,
        })

    treatments = snapshot.treatments
    return {
        "ok": True,
        "files": dict(snapshot.sources),
        "entries": entries,
        "treatments": {
            "count": snapshot.raw_counts.get("treatments", len(treatments)),
            "carbsCount": sum(1 for t in treatments if is_meal(t, 0)),
            "insulinCount": sum(1 for t in treatments if is_bolus(t)),
        },
        "devicestatus": {"count": snapshot.raw_counts.get("devicestatus", len(snapshot.cycles))},
        "profile": {"present": snapshot.profile is not None},
    }


def count_possible_missed_carbs(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                                thresholds: AnalysisThresholds = None) -> int:
    """
    Count fast rises that have no carb entry near their start.

    A rise is at least 50 mg/dL above a reading within the following 60
    minutes; it is unexplained when no carb entry lies between 15 minutes
    before and 10 minutes after that reading. After a hit the scan skips
    ahead half the rise window so one excursion is counted once.
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    carb_times = event_times(treatments, lambda e: is_meal(e, 0))
    series = TimeSeries.from_readings(readings)

    count = 0
    i = 0
    while i < len(series):
        start_ms = series.times[i]
        start_value = series.values[i]
        window = series.window_values(start_ms, 0, thresholds.missed_carb_lookahead_minutes,
                                      include_start=False)
        if not window:
            break
        max_rise = max(value - start_value for value in window)
        if max_rise >= thresholds.missed_carb_rise_mg_dl:
            explained = any_between(carb_times, start_ms - 15 * MS_PER_MINUTE, start_ms + 10 * MS_PER_MINUTE)
            if not explained:
                count += 1
                i += max(1, len(window) // 2)
        i += 1
    return count


def rounded_risk(risk: Dict[str, Optional[float]]) -> Dict[str, Optional[float]]:
    """Round LBGI/HBGI to 2 places; GRI is the sum of the rounded parts."""
    if risk["LBGI"] is None or risk["HBGI"] is None:
        return {"LBGI": None, "HBGI": None, "GRI": None}
    lbgi = round(risk["LBGI"], 2)
    hbgi = round(risk["HBGI"], 2)
    return {"LBGI": lbgi, "HBGI": hbgi, "GRI": round(lbgi + hbgi, 2)}


def build_metrics_digest(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                         thresholds: AnalysisThresholds = None) -> Dict[str, Any]:
    """
    TIR/TBR/TAR counts, CV, glycemic risk indices and data-quality flags.

    Args:
        readings: Sorted readings
        treatments: Sorted treatment events (used for the missed-carbs flag)
        thresholds: Range limits and flag parameters

    Returns:
        dict with meta, tir, cv, risk and dataFlags sections
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    values = [r.value_mg_dl for r in readings]
    cov = coverage(readings)
    cv = coefficient_of_variation(values)
    risk = glycemic_risk(values)

    return {
        "meta": {"durationDays": cov["durationDays"], "coverage": cov["coverage"], "count": len(values)},
        "tir": range_counts(values, thresholds),
        "cv": round(cv, 1) if cv is not None else None,
        "risk": rounded_risk(risk),
        "dataFlags": {"possibleMissedCarbs": count_possible_missed_carbs(readings, treatments, thresholds)},
    }


def build_daily_tir(readings: Sequence[Reading], day_key: Optional[str] = None,
                    now_ms: Optional[int] = None, thresholds: AnalysisThresholds = None,
                    tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Range counts and percentages for a single local day (today by default).
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()
    if day_key is None:
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        day_key = local_day_key(now_ms, tz)

    values = [r.value_mg_dl for r in readings if local_day_key(r.timestamp_ms, tz) == day_key]
    counts = range_counts(values, thresholds)
    total = len(values)
    return {
        "day": day_key,
        "total": total,
        "counts": {
            "lt54": counts["veryLow"],
            "lt70": counts["low"],
            "inRange": counts["inRange"],
            "gt180": counts["high"],
            "gt250": counts["veryHigh"],
        },
        "pct": {
            "tbr_lt70": percentage(counts["low"], total),
            "tbr_lt54": percentage(counts["veryLow"], total),
            "tir_70_180": percentage(counts["inRange"], total),
            "tar_gt180": percentage(counts["high"], total),
        },
    }


def build_hourly_risk(readings: Sequence[Reading], tz=LOCAL_TZ) -> Dict[str, Any]:
    """LBGI and HBGI per local hour of day; empty hours report n=0 and no risk values."""
    df = readings_frame(readings, tz)
    by_hour = df.groupby("hour")["value"].apply(list).to_dict() if len(df) else {}

    hours = []
    for hour in range(24):
        values = by_hour.get(hour, [])
        risk = rounded_risk(glycemic_risk(values))
        hours.append({
            "hour": hour,
            "n": len(values),
            "LBGI": risk["LBGI"],
            "HBGI": risk["HBGI"],
        })
    return {"tz": str(tz), "hours": hours}


def kpi_values(digest: Dict[str, Any]) -> Dict[str, Optional[float]]:
    """Headline TIR/TBR/TAR percentages, CV and GRI of a metrics digest."""
    tir = digest.get("tir", {})
    total = digest.get("meta", {}).get("count") or 0
    return {
        "TIR": percentage(tir.get("inRange", 0), total) if total else None,
        "TBR": percentage(tir.get("low", 0), total) if total else None,
        "TAR": percentage(tir.get("high", 0), total) if total else None,
        "CV": digest.get("cv"),
        "GRI": digest.get("risk", {}).get("GRI"),
    }


def compare_digests(current: Dict[str, Any], previous: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """
    KPI values of the current window with deltas against the previous one.

    A delta is None when either side has no value.
    """
    now = kpi_values(current)
    before = kpi_values(previous) if previous else {}
    out = {}
    for name, value in now.items():
        prior = before.get(name)
        delta = round(value - prior, 2) if value is not None and prior is not None else None
        out[name] = {"value": value, "previous": prior, "delta": delta}
    return out

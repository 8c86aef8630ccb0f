"""
Daily loop reliability overlay and the last-24-hours safety headline.
"""

import time
from typing import Any, Dict, Optional, Sequence

from .constraints import predicted_below_suspend
from .data_loader import LOCAL_TZ, local_day_key
from .grouping import CellTable
from .models import AnalysisThresholds, DeviceCycleRecord, ProfileSettings, Reading
from .stats import percentage, range_counts

DAY_MS = 24 * 3600 * 1000


def build_daily_overlay(cycles: Sequence[DeviceCycleRecord], profile: Optional[ProfileSettings] = None,
                        tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Per local day: cycle count and the share of cycles that predicted a
    low, enacted a zero basal, enacted an automatic bolus or failed.

    Cycles without a timestamp are skipped.
    """
    suspend = profile.suspend_threshold_mg_dl if profile else None

    table = CellTable()
    for cycle in cycles:
        if cycle.timestamp_ms is None:
            continue
        day = table.cell(local_day_key(cycle.timestamp_ms, tz))
        day.record()
        if cycle.failure_reason:
            day.flag("failures")
        if predicted_below_suspend(cycle, suspend):
            day.flag("predLeSuspend")
        if cycle.enacted_rate_units_per_hour == 0:
            day.flag("zeroBasal")
        if cycle.enacted_bolus_units is not None and cycle.enacted_bolus_units > 0:
            day.flag("abEnacted")

    return {
        "tz": str(tz),
        "suspendThreshold": suspend,
        "days": [
            {
                "day": day.key[0],
                "cycles": day.n,
                "pctPredLeSuspend": day.pct("predLeSuspend"),
                "pctZeroBasal": day.pct("zeroBasal"),
                "pctABcycles": day.pct("abEnacted"),
                "pctFailures": day.pct("failures"),
            }
            for day in table
        ],
    }


def build_mini_alert(readings: Sequence[Reading], cycles: Sequence[DeviceCycleRecord],
                     profile: Optional[ProfileSettings] = None, now_ms: Optional[int] = None,
                     thresholds: AnalysisThresholds = None, tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Lows and loop reliability over the last 24 hours, plus today's TIR headline.

    Args:
        readings: Sorted readings
        cycles: Loop cycles
        profile: Current profile, for the suspend threshold
        now_ms: Reference instant (defaults to the current time)
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    start = now_ms - DAY_MS
    suspend = profile.suspend_threshold_mg_dl if profile else None

    recent = [r.value_mg_dl for r in readings if start <= r.timestamp_ms <= now_ms]
    lt70 = sum(1 for v in recent if v < thresholds.low_mg_dl)
    lt54 = sum(1 for v in recent if v < thresholds.very_low_mg_dl)

    n_cycles = pred_le = failures = 0
    for cycle in cycles:
        if cycle.timestamp_ms is None or not start <= cycle.timestamp_ms <= now_ms:
            continue
        n_cycles += 1
        if cycle.failure_reason:
            failures += 1
        if predicted_below_suspend(cycle, suspend):
            pred_le += 1

    today = local_day_key(now_ms, tz)
    today_values = [r.value_mg_dl for r in readings if local_day_key(r.timestamp_ms, tz) == today]
    counts = range_counts(today_values, thresholds)
    total = len(today_values)

    return {
        "last24": {
            "lt70": lt70,
            "lt54": lt54,
            "predLeSuspendPct": percentage(pred_le, n_cycles),
            "commErrorPct": percentage(failures, n_cycles),
            "cycles": n_cycles,
        },
        "headline": {
            "day": today,
            "total": total,
            "tir_70_180": percentage(counts["inRange"], total),
            "tbr_lt70": percentage(counts["low"], total),
            "tbr_lt54": percentage(counts["veryLow"], total),
        },
    }

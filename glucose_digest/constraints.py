"""
Loop gating and constraint summary from device cycles and the current profile.
"""

from typing import Any, Dict, Optional, Sequence

from .models import DeviceCycleRecord, ProfileSettings
from .stats import median, percentage, quantile

# Rates within this of the max basal count as "at max"
MAX_BASAL_EPSILON = 1e-6


def predicted_below_suspend(cycle: DeviceCycleRecord, suspend: Optional[float]) -> bool:
    min_pred = cycle.min_predicted
    return suspend is not None and min_pred is not None and min_pred <= suspend


def build_constraints_summary(cycles: Sequence[DeviceCycleRecord],
                              profile: Optional[ProfileSettings] = None) -> Dict[str, Any]:
    """
    Count how often loop limits shaped dosing.

    Tallies cycles predicting glucose at or below the suspend threshold,
    zero temp basals (split by whether a low was predicted), temp basals at
    the max basal cap, automatic bolus cadence and volumes, and failures.
    Limits come from the profile; without one the limit-based counts stay 0.
    """
    max_basal = profile.max_basal_rate_per_hour if profile else None
    suspend = profile.suspend_threshold_mg_dl if profile else None

    total = len(cycles)
    with_pred = pred_below = 0
    zero_basal = zero_low_pred = zero_not_low_pred = 0
    at_max_basal = 0
    ab_cycles = ab_enacted = 0
    failures = 0
    ab_volumes, auto_rec_volumes, rec_bolus_volumes = [], [], []

    for cycle in cycles:
        if cycle.failure_reason:
            failures += 1

        if cycle.predicted is not None:
            with_pred += 1
        low_pred = predicted_below_suspend(cycle, suspend)
        if low_pred:
            pred_below += 1

        rate = cycle.enacted_rate_units_per_hour
        if rate == 0:
            zero_basal += 1
            if cycle.min_predicted is not None:
                if low_pred:
                    zero_low_pred += 1
                else:
                    zero_not_low_pred += 1
        if max_basal is not None and rate is not None and rate >= max_basal - MAX_BASAL_EPSILON:
            at_max_basal += 1

        if cycle.automatic_bolus_units is not None:
            ab_cycles += 1
            auto_rec_volumes.append(cycle.automatic_bolus_units)
        bolus = cycle.enacted_bolus_units
        if bolus is not None and bolus > 0:
            ab_enacted += 1
            ab_volumes.append(bolus)
        if cycle.recommended_bolus_units is not None:
            rec_bolus_volumes.append(cycle.recommended_bolus_units)

    return {
        "meta": {
            "totalCycles": total,
            "dosingStrategy": profile.dosing_strategy if profile else None,
            "maxBasal": max_basal,
            "maxBolus": profile.max_bolus_units if profile else None,
            "suspendThreshold": suspend,
        },
        "predictions": {
            "withPred": with_pred,
            "predBelowSuspend": pred_below,
            "pctPredBelowSuspend": percentage(pred_below, with_pred),
        },
        "basal": {
            "zeroBasal": zero_basal,
            "zeroBasal_whenLowPred": zero_low_pred,
            "zeroBasal_whenNotLowPred": zero_not_low_pred,
            "atMaxBasal": at_max_basal,
            "pctAtMaxBasal": percentage(at_max_basal, total),
        },
        "automaticBolus": {
            "abCycles": ab_cycles,
            "abEnacted": ab_enacted,
            "pctCyclesWithAB": percentage(ab_enacted, total),
            "enactedVol": {
                "n": len(ab_volumes),
                "median": median(ab_volumes),
                "p10": quantile(ab_volumes, 0.1),
                "p90": quantile(ab_volumes, 0.9),
            },
            "autoRecVol": {
                "n": len(auto_rec_volumes),
                "median": median(auto_rec_volumes),
                "p90": quantile(auto_rec_volumes, 0.9),
            },
            "recBolusVol": {
                "n": len(rec_bolus_volumes),
                "median": median(rec_bolus_volumes),
                "p90": quantile(rec_bolus_volumes, 0.9),
            },
        },
        "reliability": {"failures": failures},
    }

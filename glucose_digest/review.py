"""
Lightweight review: overnight drift, post-meal response by slot, correction
effectiveness, and directional hypothesis cards.

Cards name a lever (basal, ICR, ISF) and a direction only. They never carry
a numeric setting change.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .classification import is_meal
from .corrections import collect_corrections
from .data_loader import LOCAL_TZ, local_parts, readings_frame
from .grouping import OTHER_BIN, CellTable, meal_slot, post_event_response
from .joins import TimeSeries
from .models import AnalysisThresholds, DeviceCycleRecord, Reading, TreatmentEvent
from .stats import coverage, median, percentage, range_counts

logger = logging.getLogger(__name__)

REVIEW_SLOTS = ["breakfast", "lunch", "dinner", OTHER_BIN]
OVERNIGHT_HOURS = (0, 4)
MIN_OVERNIGHT_POINTS = 6

# Card qualification
MIN_SLOT_MEALS = 5
SLOT_HIGH_PCT = 50
MIN_CORRECTIONS = 10
INEFFECTIVE_SHARE = 0.4
OVERSHOOT_SHARE = 0.15
LOW_BURDEN_PCT = 2


def overnight_drift(readings: Sequence[Reading], thresholds: AnalysisThresholds = None,
                    tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Glucose slope between the first and last overnight reading of each local day.

    Nights with fewer than six readings between 00:00 and 04:00 are skipped.

    Returns:
        dict with n, medianSlope (mg/dL per hour), nightsLow and nightsHigh
        (day keys with any reading below 70 / above 180)
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    df = readings_frame(readings, tz)
    night = df[(df["hour"] >= OVERNIGHT_HOURS[0]) & (df["hour"] < OVERNIGHT_HOURS[1])]

    slopes = []
    nights_low, nights_high = [], []
    for day, group in night.groupby("date", sort=True):
        if len(group) < MIN_OVERNIGHT_POINTS:
            continue
        first, last = group.iloc[0], group.iloc[-1]
        hours = (last["timestamp_ms"] - first["timestamp_ms"]) / 3_600_000
        if hours <= 0:
            continue
        slopes.append(float((last["value"] - first["value"]) / hours))
        if (group["value"] < thresholds.low_mg_dl).any():
            nights_low.append(day)
        if (group["value"] > thresholds.high_mg_dl).any():
            nights_high.append(day)

    return {
        "n": len(slopes),
        "medianSlope": median(slopes),
        "nightsLow": nights_low,
        "nightsHigh": nights_high,
    }


def meal_slot_summary(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                      thresholds: AnalysisThresholds = None, tz=LOCAL_TZ) -> Dict[str, Dict[str, Any]]:
    """Post-meal response per generic meal slot (meals of 10 g or more)."""
    if thresholds is None:
        thresholds = AnalysisThresholds()

    series = TimeSeries.from_readings(readings)
    table = CellTable()
    for meal in treatments:
        if not is_meal(meal, thresholds.meal_min_carbs):
            continue
        response = post_event_response(series, meal.timestamp_ms, thresholds)
        cell = table.cell(meal_slot(local_parts(meal.timestamp_ms, tz).hour))
        cell.record()
        if response["hit_high"]:
            cell.flag("high")
        cell.sample("peaks", response["peak"])
        cell.sample("t180s", response["time_to_180"])

    out = {}
    for slot in REVIEW_SLOTS:
        cell = table.cell(slot)
        out[slot] = {
            "n": cell.n,
            "pctHigh": cell.pct("high"),
            "medianPeak": cell.median("peaks"),
            "medianTimeTo180Min": cell.median("t180s"),
        }
    return out


def correction_summary(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                       cycles: Sequence[DeviceCycleRecord] = (), thresholds: AnalysisThresholds = None,
                       tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Share of ineffective and overshooting corrections.

    Only corrections with a computable 2h drop are counted; the overshoot
    share uses the same denominator.
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    outcomes = [o for o in collect_corrections(readings, treatments, cycles, thresholds, tz)
                if o.drop_2h is not None]
    drops = [o.drop_2h for o in outcomes]
    ineffective = sum(1 for d in drops if d < thresholds.ineffective_drop_mg_dl)
    overshoot = sum(1 for o in outcomes if o.went_low_4h)
    n = len(outcomes)
    return {
        "n": n,
        "ineffective": ineffective,
        "overshoot": overshoot,
        "pctIneffective": percentage(ineffective, n),
        "pctOvershoot": percentage(overshoot, n),
        "medianDrop": median(drops),
    }


def _confidence(medium: bool) -> str:
    return "Medium" if medium else "Low"


def hypothesis_cards(nights: Dict[str, Any], meals: Dict[str, Dict[str, Any]], corrections: Dict[str, Any],
                     low_count: int, total: int, thresholds: AnalysisThresholds = None) -> List[Dict[str, Any]]:
    """
    Directional hypotheses from the review sections.

    A hypoglycemia burden card, when present, always comes first.
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    cards = []
    slope = nights["medianSlope"]
    n_low, n_high = len(nights["nightsLow"]), len(nights["nightsHigh"])
    if slope is not None and slope < -thresholds.drift_slope_mg_dl_per_hour:
        cards.append({
            "title": "Overnight downward drift suggests basal too strong",
            "window": "00:00-04:00 local, fasting",
            "levers": ["basal"],
            "direction": "too strong",
            "evidence": [
                f"Median overnight slope {slope:.1f} mg/dL/hr (negative)",
                f"{n_low} nights with <70",
                f"{n_high} nights >180 (context)",
            ],
            "confidence": _confidence(n_low + nights["n"] > 6),
            "confounders": ["late corrections", "exercise carryover", "sensor compression lows"],
            "safety": "If basal reduced incorrectly, overnight highs may increase.",
            "next": ["Confirm with a 4-6h fasting window near midnight on a quiet night."],
        })
    if slope is not None and slope > thresholds.drift_slope_mg_dl_per_hour:
        cards.append({
            "title": "Overnight upward drift suggests basal too weak",
            "window": "00:00-04:00 local, fasting",
            "levers": ["basal"],
            "direction": "too weak",
            "evidence": [
                f"Median overnight slope +{slope:.1f} mg/dL/hr",
                f"{n_high} nights >180",
                f"{n_low} nights <70 (context)",
            ],
            "confidence": _confidence(nights["n"] > 6),
            "confounders": ["bedtime snacks", "site wearout", "late meal impact"],
            "safety": "If basal increased too much, risk of overnight lows.",
            "next": ["Re-check on a low-activity night; verify rise without carbs or bolus."],
        })

    for slot in ["breakfast", "lunch", "dinner"]:
        s = meals.get(slot)
        if not s or s["n"] < MIN_SLOT_MEALS or s["pctHigh"] < SLOT_HIGH_PCT:
            continue
        peak = f"{s['medianPeak']:.0f}" if s["medianPeak"] is not None else "?"
        t180 = s["medianTimeTo180Min"]
        cards.append({
            "title": f"Post-{slot} highs suggest ICR too weak",
            "window": f"{slot} meals",
            "levers": ["ICR"],
            "direction": "too weak",
            "evidence": [
                f"{s['n']} {slot} meals analyzed",
                f"{s['pctHigh']}% peaked >180",
                f"Median peak ~{peak} mg/dL",
                f"Median return-to-180 {round(t180)} min" if t180 is not None else "Often prolonged return-to-180",
            ],
            "confidence": _confidence(s["n"] >= 10),
            "confounders": ["unannounced carbs", "fat/protein delays", "site absorption"],
            "safety": "Over-tightening ICR risks post-meal lows.",
            "next": [f"Log a few {slot} meals with accurate carbs; watch the 4h curve and correction needs."],
        })

    n = corrections["n"]
    if n >= MIN_CORRECTIONS:
        med = corrections["medianDrop"]
        if corrections["ineffective"] / n >= INEFFECTIVE_SHARE:
            cards.append({
                "title": "Corrections often ineffective: ISF may be too weak",
                "window": "Anytime corrections (no carbs)",
                "levers": ["ISF"],
                "direction": "too weak",
                "evidence": [
                    f"{n} corrections analyzed",
                    f"{corrections['pctIneffective']}% had <{thresholds.ineffective_drop_mg_dl:.0f} mg/dL drop within 2h",
                    f"Median 2h drop {med:.0f} mg/dL" if med is not None else "Median 2h drop ? mg/dL",
                ],
                "confidence": _confidence(n >= 20),
                "confounders": ["insulin on board", "rising meals misclassified", "site issues"],
                "safety": "Strengthening ISF increases hypoglycemia risk if misapplied.",
                "next": ["Tag a few clean corrections (no food/exercise) and re-check 2-3h impact."],
            })
        if corrections["overshoot"] / n >= OVERSHOOT_SHARE:
            cards.append({
                "title": "Corrections sometimes overshoot: ISF may be too strong",
                "window": "Anytime corrections (no carbs)",
                "levers": ["ISF"],
                "direction": "too strong",
                "evidence": [f"{corrections['pctOvershoot']}% had glucose <70 within 4h post-correction"],
                "confidence": "Low",
                "confounders": ["compression lows", "stacked insulin", "exercise"],
                "safety": "Weakening ISF can leave highs untreated; consider context carefully.",
                "next": ["Review a few overshoot cases; check for stacked insulin or activity."],
            })

    low_pct = percentage(low_count, total)
    if low_pct >= LOW_BURDEN_PCT:
        cards.insert(0, {
            "title": "Hypoglycemia burden present: prioritize low prevention",
            "window": "All-day summary",
            "levers": ["basal", "ICR", "ISF", "timing/model"],
            "direction": "risk",
            "evidence": [
                f"{low_count} low readings (<70) out of {total} ({low_pct}%)",
                f"{n_low} nights with lows in 00:00-04:00",
            ],
            "confidence": "Medium",
            "confounders": ["compression", "sensor noise"],
            "safety": "Treat lows promptly; avoid multiple simultaneous tightening changes.",
            "next": ["Focus first on consistent low windows (overnight vs post-meal); test one lever at a time."],
        })
    return cards


def build_review(readings: Sequence[Reading], treatments: Sequence[TreatmentEvent],
                 cycles: Sequence[DeviceCycleRecord] = (), thresholds: AnalysisThresholds = None,
                 tz=LOCAL_TZ) -> Dict[str, Any]:
    """
    Review summary with hypothesis cards.

    Returns:
        dict with meta, meals, corrections, nights and cards
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    values = [r.value_mg_dl for r in readings]
    counts = range_counts(values, thresholds)
    cov = coverage(readings)

    nights = overnight_drift(readings, thresholds, tz)
    meals = meal_slot_summary(readings, treatments, thresholds, tz)
    corrections = correction_summary(readings, treatments, cycles, thresholds, tz)
    cards = hypothesis_cards(nights, meals, corrections, counts["low"], len(values), thresholds)
    logger.info(f"Review: {len(cards)} hypothesis cards")

    slope: Optional[float] = nights["medianSlope"]
    return {
        "meta": {
            "tz": str(tz),
            "totalReadings": len(values),
            "coverage": cov["coverage"],
            "durationDays": cov["durationDays"],
            "tir": counts,
        },
        "meals": meals,
        "corrections": {
            "n": corrections["n"],
            "pctIneffective": corrections["pctIneffective"],
            "pctOvershoot": corrections["pctOvershoot"],
            "medianDrop": corrections["medianDrop"],
        },
        "nights": {
            "n": nights["n"],
            "medianSlope": round(slope, 2) if slope is not None else None,
            "nightsLowCount": len(nights["nightsLow"]),
            "nightsHighCount": len(nights["nightsHigh"]),
        },
        "cards": cards,
    }

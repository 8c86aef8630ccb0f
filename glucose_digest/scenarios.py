"""
Scenario cards: directional what-ifs built on top of the meal timing,
correction context and daily overlay summaries.
"""

from typing import Any, Dict, List, Optional

from .grouping import LEAD_NONE

MIN_CELL_MEALS = 3
MIN_GROUP_CORRECTIONS = 3
FLAT_DELTA_PP = 2
HIGH_SUSPEND_DAY_PCT = 20

# (from bin, label of the shifted timing, to bin)
LUNCH_SHIFTS = [
    ("pre0-4", "+10 to pre10-19", "pre10-19"),
    ("pre0-4", "+20 to pre>=20", "pre>=20"),
    ("post0-9", "+10 to pre0-4", "pre0-4"),
    (LEAD_NONE, "+10 to pre0-4", "pre0-4"),
]


def tar_delta(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    """Change in the share of meals peaking above 180 between two lead bins."""
    d = (after.get("pctHigh") or 0) - (before.get("pctHigh") or 0)
    if abs(d) < FLAT_DELTA_PP:
        return {"dir": "flat", "d": d}
    return {"dir": "decrease TAR" if d < 0 else "increase TAR", "d": d}


def _lead_cell(section: Dict[str, Any], lead_bin: str) -> Optional[Dict[str, Any]]:
    cell = section.get(lead_bin)
    if cell and cell.get("n", 0) >= MIN_CELL_MEALS:
        return cell
    return None


def school_lunch_card(meal_timing: Dict[str, Any], overlay: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Compare post-lunch TAR between lead bins for school lunches.

    Returns None unless at least one pair of bins both have 3+ meals.
    """
    lunch = meal_timing.get("schoolLunch") or {}
    bullets = []
    for from_bin, label, to_bin in LUNCH_SHIFTS:
        before, after = _lead_cell(lunch, from_bin), _lead_cell(lunch, to_bin)
        if before is None or after is None:
            continue
        delta = tar_delta(before, after)
        arrow = "↓" if delta["d"] < 0 else "↑"
        bullets.append(
            f"Shift {label} vs {from_bin}: {arrow}{abs(delta['d']):.1f} pp in lunch TAR (4h >180) "
            f"· samples {before['n']}→{after['n']}"
        )
    if not bullets:
        return None

    high_suspend_days = sum(1 for d in overlay.get("days", [])
                            if (d.get("pctPredLeSuspend") or 0) >= HIGH_SUSPEND_DAY_PCT)
    gating = []
    if high_suspend_days:
        gating.append(f"{high_suspend_days} day(s) with high Loop suspend predictions may blunt pre-bolus effects.")

    return {
        "title": "School lunch: earlier pre-bolus likely reduces post-meal TAR",
        "timeWindow": "Weekdays 11:20-12:10 (school lunch)",
        "levers": ["timing", "ICR"],
        "direction": "timing: earlier likely better; if constrained/late, consider ICR stronger",
        "evidence": bullets,
        "gatingNotes": gating,
        "confidence": "Medium" if len(bullets) >= 2 else "Low",
        "confounders": ["Entree categories not tagged", "Potential missed carb entries", "Activity around lunch"],
        "safety": [
            "Respect Loop suspend and automatic bolus caps; do not stack manual boluses",
            "If frequent lows 2-3 h after lunch, favor timing over ICR changes",
        ],
        "nextStep": "Validate with 2-3 lunches: try a 10 min earlier pre-bolus when feasible; "
                    "track %>180 at +90-180 min and lows <70.",
    }


def gri_direction(group: Dict[str, Any]) -> Dict[str, str]:
    """
    Expected direction of the hyper/hypo risk components for a stronger ISF.
    """
    ineffective = group.get("pctIneffective2h") or 0
    drop_2h = group.get("medDrop2h") or 0
    if drop_2h >= 50:
        return {"hyper": "flat/decrease", "hypo": "increase"}
    if ineffective <= 20 and drop_2h >= 35:
        return {"hyper": "flat", "hypo": "slight increase"}
    return {"hyper": "decrease", "hypo": "increase"}


def _fmt_drop(value: Optional[float]) -> str:
    return f"{value:.0f}" if value is not None else "n/a"


def isf_sweep_card(group: Dict[str, Any], ineffective_drop_mg_dl: float = 20) -> Dict[str, Any]:
    bias = group.get("isfBias")
    evidence = [
        f"n={group['n']}, 2h drop median {_fmt_drop(group.get('medDrop2h'))} mg/dL; "
        f"3h {_fmt_drop(group.get('medDrop3h'))}",
        f"Ineffective at 2h (<{ineffective_drop_mg_dl:.0f} mg/dL drop): {(group.get('pctIneffective2h') or 0):.1f}%",
    ]
    if bias is not None:
        evidence.append(f"Observed/scheduled ISF ratio {bias:.2f}")

    return {
        "title": f"Corrections: ISF ±10-20% ({group['group']})",
        "timeWindow": group["group"],
        "levers": ["ISF"],
        "direction": "ISF stronger: larger drops; weaker: smaller drops",
        "evidence": evidence,
        "confidence": "Medium" if group["n"] >= 8 else "Low",
        "confounders": ["Unlogged carbs or correction-to-meal overlap", "IOB estimation noise from loop sampling"],
        "safety": [
            "Avoid back-to-back corrections within insulin action time",
            "Stronger ISF increases drop magnitude; watch lows 2-3h post-bolus",
        ],
        "nextStep": "Sandbox 1-2 clean corrections in this band and observe 2h/3h drops and lows; "
                    "adjust the hypothesis direction only.",
        "griDelta": gri_direction(group),
    }


def build_scenario_cards(meal_timing: Dict[str, Any], correction_context: Dict[str, Any],
                         overlay: Dict[str, Any]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Scenario cards from already built summaries.

    Args:
        meal_timing: Output of build_meal_timing
        correction_context: Output of build_correction_context
        overlay: Output of build_daily_overlay

    Returns:
        dict with a cards list
    """
    cards = []
    lunch = school_lunch_card(meal_timing or {}, overlay or {})
    if lunch is not None:
        cards.append(lunch)

    meta = (correction_context or {}).get("meta", {})
    threshold = meta.get("ineffectiveDropMgDl", 20)
    for group in (correction_context or {}).get("groups", []):
        if group.get("n", 0) >= MIN_GROUP_CORRECTIONS:
            cards.append(isf_sweep_card(group, threshold))
    return {"cards": cards}

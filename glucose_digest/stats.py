"""
Statistics primitives over numeric sequences.

Every function returns None for an empty sequence (no data), except
``percentage`` which is defined as 0 for a zero denominator.
"""

import math
from typing import Dict, Optional, Sequence

import numpy as np

from .models import AnalysisThresholds, Reading

# Glycemic risk transform constants
RISK_SCALE = 1.509
RISK_EXPONENT = 1.084
RISK_OFFSET = 5.381


def quantile(values: Sequence[float], q: float) -> Optional[float]:
    """
    Linear-interpolation quantile (R type 7).

    Args:
        values: Numeric sequence, any order
        q: Quantile in [0, 1]

    Returns:
        Interpolated value, or None for an empty sequence
    """
    if not len(values):
        return None
    return float(np.quantile(values, q))


def median(values: Sequence[float]) -> Optional[float]:
    if not len(values):
        return None
    return float(np.median(values))


def mean(values: Sequence[float]) -> Optional[float]:
    if not len(values):
        return None
    return float(np.mean(values))


def std_dev(values: Sequence[float]) -> Optional[float]:
    """Population standard deviation (divides by N)."""
    if not len(values):
        return None
    return float(np.std(values))


def coefficient_of_variation(values: Sequence[float]) -> Optional[float]:
    """CV in percent: 100 * stddev / mean; None if empty or mean is zero."""
    m = mean(values)
    if not m:
        return None
    return 100 * std_dev(values) / m


def percentage(numerator: float, denominator: float) -> float:
    """
    Percentage rounded to one decimal.

    A zero denominator gives 0, so callers must check the denominator to
    tell "no data" apart from a real 0%.
    """
    if not denominator:
        return 0
    return round(100 * numerator / denominator, 1)


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up (12.5 -> 13)."""
    return int(math.floor(value + 0.5))


def interquartile_range(values: Sequence[float]) -> Optional[float]:
    q25 = quantile(values, 0.25)
    q75 = quantile(values, 0.75)
    if q25 is None or q75 is None:
        return None
    return q75 - q25


def risk_transform(glucose: float) -> Optional[float]:
    """
    Symmetrized glycemic risk value: 1.509 * (ln(g)^1.084 - 5.381).

    Negative values are hypoglycemic risk, positive hyperglycemic. Returns
    None outside the real domain (g <= 0, or ln(g) < 0).
    """
    if glucose <= 0:
        return None
    log_g = math.log(glucose)
    if log_g < 0:
        return None
    return RISK_SCALE * (math.pow(log_g, RISK_EXPONENT) - RISK_OFFSET)


def glycemic_risk(values: Sequence[float]) -> Dict[str, Optional[float]]:
    """
    Low/High Blood Glucose Index and their sum.

    Each component is 10 * mean(r^2) over the readings on its side of the
    zero crossing, and 0 when that side is empty. All three are None when
    no reading falls inside the risk transform domain.

    Returns:
        dict with LBGI, HBGI and GRI (unrounded)
    """
    risks = [r for r in (risk_transform(g) for g in values) if r is not None]
    if not risks:
        return {"LBGI": None, "HBGI": None, "GRI": None}
    low_sq = [r * r for r in risks if r < 0]
    high_sq = [r * r for r in risks if r > 0]
    lbgi = 10 * mean(low_sq) if low_sq else 0
    hbgi = 10 * mean(high_sq) if high_sq else 0
    return {"LBGI": lbgi, "HBGI": hbgi, "GRI": lbgi + hbgi}


def range_counts(values: Sequence[float], thresholds: AnalysisThresholds = None) -> Dict[str, int]:
    """
    Count readings per glucose range.

    ``low`` includes ``veryLow`` and ``high`` includes ``veryHigh``;
    ``low + inRange + high`` equals the number of readings.
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()

    very_low = low = in_range = high = very_high = 0
    for mg in values:
        if mg < thresholds.very_low_mg_dl:
            very_low += 1
        if mg < thresholds.low_mg_dl:
            low += 1
        elif mg <= thresholds.high_mg_dl:
            in_range += 1
        else:
            high += 1
        if mg > thresholds.very_high_mg_dl:
            very_high += 1
    return {"veryLow": very_low, "low": low, "inRange": in_range, "high": high, "veryHigh": very_high}


def coverage(readings: Sequence[Reading], cadence_minutes: int = 5) -> Dict[str, Optional[float]]:
    """
    Duration and completeness of a sorted reading series.

    Coverage is readings / expected readings at the CGM cadence, capped at 1.
    """
    if not readings:
        return {"durationDays": None, "coverage": None, "expected": None}
    duration_ms = max(0, readings[-1].timestamp_ms - readings[0].timestamp_ms)
    expected = duration_ms / (cadence_minutes * 60 * 1000)
    return {
        "durationDays": round(duration_ms / (24 * 3600 * 1000), 2),
        "coverage": min(1.0, len(readings) / expected) if expected > 0 else None,
        "expected": expected,
    }

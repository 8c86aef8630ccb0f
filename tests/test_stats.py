"""
Tests for the statistics primitives.
"""

import sys
from pathlib import Path

import pytest

# Add the project to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from glucose_digest import (
    AnalysisThresholds,
    Reading,
    coefficient_of_variation,
    glycemic_risk,
    median,
    percentage,
    quantile,
    range_counts,
    risk_transform,
    std_dev,
)
from glucose_digest.stats import coverage, interquartile_range, round_half_up


def test_quantile_interpolates_type_7():
    values = [1, 2, 3, 4]
    assert quantile(values, 0) == 1
    assert quantile(values, 1) == 4
    assert quantile(values, 0.5) == 2.5
    assert quantile(values, 0.25) == pytest.approx(1.75)


def test_quantile_ignores_input_order():
    assert quantile([4, 1, 3, 2], 0.5) == 2.5


def test_quantile_single_and_empty():
    assert quantile([7], 0.05) == 7
    assert quantile([7], 0.95) == 7
    assert quantile([], 0.5) is None


def test_empty_sequences_give_none():
    assert median([]) is None
    assert std_dev([]) is None
    assert coefficient_of_variation([]) is None
    assert interquartile_range([]) is None


def test_std_dev_is_population():
    # Sample stddev would be ~2.138
    assert std_dev([2, 4, 4, 4, 5, 5, 7, 9]) == pytest.approx(2.0)


def test_coefficient_of_variation():
    assert coefficient_of_variation([100, 100, 100]) == 0
    assert coefficient_of_variation([90, 110]) == pytest.approx(10.0)
    assert coefficient_of_variation([0, 0]) is None


def test_percentage_zero_denominator():
    assert percentage(5, 0) == 0
    assert percentage(1, 3) == 33.3


def test_risk_transform_domain():
    assert risk_transform(0) is None
    assert risk_transform(-5) is None
    assert risk_transform(0.5) is None
    assert risk_transform(1) is not None


def test_risk_at_100_is_slightly_low():
    risk = glycemic_risk([100])
    assert risk["HBGI"] == 0
    assert 0 < risk["LBGI"] < 1


def test_risk_hypo_and_hyper_sides():
    low = glycemic_risk([40])
    assert low["HBGI"] == 0
    assert low["LBGI"] > 0

    high = glycemic_risk([300])
    assert high["LBGI"] == 0
    assert high["HBGI"] > 0
    assert high["GRI"] == pytest.approx(high["HBGI"])


def test_risk_skips_non_positive_values():
    assert glycemic_risk([0, -3, 300]) == glycemic_risk([300])
    assert glycemic_risk([]) == {"LBGI": None, "HBGI": None, "GRI": None}
    assert glycemic_risk([0, 0.5]) == {"LBGI": None, "HBGI": None, "GRI": None}


def test_range_counts_partition():
    values = [40, 60, 70, 180, 181, 260]
    counts = range_counts(values, AnalysisThresholds())
    assert counts == {"veryLow": 1, "low": 2, "inRange": 2, "high": 2, "veryHigh": 1}
    assert counts["low"] + counts["inRange"] + counts["high"] == len(values)


def test_coverage_full_and_capped():
    readings = [Reading(i * 300_000, 100.0) for i in range(13)]
    cov = coverage(readings)
    assert cov["expected"] == 12
    assert cov["coverage"] == 1.0
    assert cov["durationDays"] == 0.04


def test_coverage_single_reading():
    cov = coverage([Reading(0, 100.0)])
    assert cov["coverage"] is None
    assert coverage([])["durationDays"] is None


def test_round_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round_half_up(0) == 0

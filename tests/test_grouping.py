"""
Tests for temporal bins, event trajectories and contextual cells.
"""

import sys
from datetime import datetime
from pathlib import Path

# Add the project to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from glucose_digest import (
    CellTable,
    ContextCell,
    LOCAL_TZ,
    Reading,
    TimeSeries,
    TreatmentEvent,
    build_meal_timing,
    iob_bin,
    lead_time_bin,
    local_parts,
    meal_slot,
    post_event_response,
    school_windows,
    time_of_day_bin,
)
from glucose_digest.grouping import start_trend, time_to_return
from glucose_digest.joins import MS_PER_MINUTE

MIN = MS_PER_MINUTE


def local_ms(year, month, day, hour, minute=0) -> int:
    return int(LOCAL_TZ.localize(datetime(year, month, day, hour, minute)).timestamp() * 1000)


# =============================================================================
# BINS
# =============================================================================

def test_time_of_day_bins():
    assert time_of_day_bin(0) == "overnight(0-4)"
    assert time_of_day_bin(3) == "overnight(0-4)"
    assert time_of_day_bin(4) == "other"
    assert time_of_day_bin(6) == "morning(6-9)"
    assert time_of_day_bin(9) == "other"
    assert time_of_day_bin(12) == "midday(11-13)"
    assert time_of_day_bin(13) == "other"
    assert time_of_day_bin(20) == "evening(17-21)"
    assert time_of_day_bin(23) == "other"


def test_iob_bands():
    assert iob_bin(None) == "iob:unknown"
    assert iob_bin(0.49) == "iob<0.5"
    assert iob_bin(0.5) == "iob 0.5-1.5"
    assert iob_bin(1.49) == "iob 0.5-1.5"
    assert iob_bin(1.5) == "iob>1.5"


def test_lead_time_bins():
    expected = {
        25: "pre>=20", 20: "pre>=20", 19.9: "pre10-19", 10: "pre10-19",
        9: "pre5-9", 5: "pre5-9", 4: "pre0-4", 0: "pre0-4",
        -0.5: "post0-9", -9: "post0-9", -10: "post10-19", -19: "post10-19",
        -20: "post>=20", -30: "post>=20",
    }
    for minutes, label in expected.items():
        assert lead_time_bin(minutes) == label, minutes
    assert lead_time_bin(None) == "none(-60..+30)"


def test_meal_slots():
    assert meal_slot(5) == "breakfast"
    assert meal_slot(11) == "lunch"
    assert meal_slot(15) == "other"
    assert meal_slot(20) == "dinner"
    assert meal_slot(21) == "other"


def test_school_windows_weekdays_only():
    # 2024-03-05 is a Tuesday, 2024-03-09 a Saturday
    assert school_windows(local_parts(local_ms(2024, 3, 5, 7, 0))) == ["schoolBreakfast"]
    assert school_windows(local_parts(local_ms(2024, 3, 5, 8, 0))) == []
    assert school_windows(local_parts(local_ms(2024, 3, 5, 11, 20))) == ["schoolLunch"]
    assert school_windows(local_parts(local_ms(2024, 3, 5, 12, 10))) == ["schoolLunch"]
    assert school_windows(local_parts(local_ms(2024, 3, 5, 12, 11))) == []
    assert school_windows(local_parts(local_ms(2024, 3, 9, 11, 30))) == []


# =============================================================================
# TRAJECTORIES
# =============================================================================

def test_time_to_return_requires_excursion():
    t0 = 0
    above_then_back = [(t0, 170.0), (30 * MIN, 200.0), (90 * MIN, 175.0)]
    assert time_to_return(above_then_back, t0, 180) == 90

    # Starting at or below 180 without rising above is not a return
    assert time_to_return([(t0, 150.0), (30 * MIN, 160.0)], t0, 180) is None
    # Never came back
    assert time_to_return([(t0, 190.0), (30 * MIN, 220.0)], t0, 180) is None


def test_start_trend():
    event = 60 * MIN
    rising = TimeSeries([45 * MIN, 50 * MIN, 55 * MIN, 60 * MIN], [100.0, 104.0, 108.0, 112.0])
    flat = TimeSeries([45 * MIN, 60 * MIN], [100.0, 105.0])
    falling = TimeSeries([45 * MIN, 60 * MIN], [120.0, 110.0])
    assert start_trend(rising, event) == "rising"
    assert start_trend(flat, event) == "flat"
    assert start_trend(falling, event) == "falling"
    assert start_trend(TimeSeries([60 * MIN], [100.0]), event) is None


def test_post_event_response():
    meal = 1_000 * MIN
    times = [meal - 15 * MIN, meal + 3 * MIN, meal + 60 * MIN, meal + 120 * MIN, meal + 250 * MIN]
    series = TimeSeries(times, [100.0, 110.0, 220.0, 170.0, 90.0])

    response = post_event_response(series, meal)
    assert response["start"] == 110.0
    assert response["peak"] == 220.0
    assert response["hit_high"]
    assert response["time_to_180"] == 120
    assert response["delta"] == 110.0


def test_post_event_start_falls_back_to_ten_minutes():
    meal = 1_000 * MIN
    series = TimeSeries([meal - 8 * MIN, meal + 30 * MIN], [120.0, 150.0])
    response = post_event_response(series, meal)
    assert response["start"] == 120.0
    assert not response["hit_high"]


# =============================================================================
# CELLS
# =============================================================================

def test_cell_accumulates_samples_and_flags():
    cell = ContextCell(key=("midday(11-13)", "iob<0.5"))
    for value in (10.0, None, 30.0):
        cell.record()
        cell.sample("drops", value)
    cell.flag("ineffective")

    assert cell.n == 3
    assert cell.values("drops") == [10.0, 30.0]
    assert cell.median("drops") == 20.0
    assert cell.pct("ineffective") == 33.3
    assert cell.pct("missing") == 0
    assert cell.median("never") is None


def test_majority_trend_ties():
    cell = ContextCell(key=("x",))
    assert cell.majority_trend() == (None, None)

    cell.vote("falling")
    cell.vote("flat")
    cell.vote(None)
    assert cell.majority_trend() == ("flat", 50)

    cell.vote("rising")
    cell.vote("rising")
    assert cell.majority_trend() == ("rising", 50)


def test_cell_coverage_one_meal_per_bin():
    # One meal in each named time-of-day bin plus one outside all of them
    meals = [local_ms(2024, 3, 5, h) for h in (1, 7, 12, 18, 14)]

    table = CellTable()
    for ms in meals:
        table.cell(time_of_day_bin(local_parts(ms).hour)).record()

    assert len(table) == 5
    assert all(cell.n == 1 for cell in table)
    assert ("other",) in table


def test_meal_timing_dayparts_cover_each_meal_once():
    meals = [local_ms(2024, 3, 5, h) for h in (1, 7, 12, 18, 14)]
    treatments = [TreatmentEvent(ms, carbs_grams=40) for ms in meals]
    readings = [Reading(ms + k * 5 * MIN, 120.0) for ms in meals for k in range(-3, 4)]
    readings.sort(key=lambda r: r.timestamp_ms)

    result = build_meal_timing(readings, treatments)
    dayparts = result["dayparts"]

    assert set(dayparts) == {"overnight(0-4)", "morning(6-9)", "midday(11-13)", "evening(17-21)", "other"}
    for summary in dayparts.values():
        assert list(summary) == ["none(-60..+30)"]
        assert summary["none(-60..+30)"]["n"] == 1
    assert result["overall"]["none(-60..+30)"]["n"] == 5
    assert result["mealCount"] == 5


def test_majority_trend_share_rounds_half_up():
    cell = ContextCell(key=("x",))
    for trend in ["rising"] * 5 + ["flat"] * 3:
        cell.vote(trend)
    assert cell.majority_trend() == ("rising", 63)


# =============================================================================
# MEAL TIMING SUMMARIES
# =============================================================================

def school_lunch_meals():
    """Two weekday 11:30 meals bolused 10 and 12 minutes ahead."""
    first = local_ms(2024, 3, 5, 11, 30)
    second = local_ms(2024, 3, 6, 11, 30)
    treatments = [
        TreatmentEvent(first - 10 * MIN, insulin_units=3.0),
        TreatmentEvent(first, carbs_grams=45),
        TreatmentEvent(second - 12 * MIN, insulin_units=3.0),
        TreatmentEvent(second, carbs_grams=45),
    ]
    # First meal: rising start, peak 210, back to 180 at +120 min
    # Second meal: flat start, peak 170, never high
    curves = [
        (first, [(-15, 100.0), (-10, 105.0), (-5, 108.0), (0, 112.0), (30, 150.0),
                 (60, 210.0), (90, 190.0), (120, 175.0), (180, 140.0)]),
        (second, [(-15, 119.0), (0, 121.0), (60, 170.0), (120, 130.0)]),
    ]
    readings = [Reading(meal + m * MIN, v) for meal, points in curves for m, v in points]
    return readings, treatments


def test_school_lunch_meal_counts_in_lunch_and_school_lunch():
    readings, treatments = school_lunch_meals()
    result = build_meal_timing(readings, treatments)

    assert result["mealCount"] == 2
    assert list(result["lunch"]) == ["pre10-19"]
    assert result["schoolLunch"] == result["lunch"]
    assert result["overall"] == result["lunch"]
    assert result["breakfast"] == {}
    assert result["schoolBreakfast"] == {}
    assert list(result["dayparts"]) == ["midday(11-13)"]


def test_meal_cell_summary_fields():
    readings, treatments = school_lunch_meals()
    summary = build_meal_timing(readings, treatments)["schoolLunch"]["pre10-19"]

    assert summary["n"] == 2
    assert summary["pctHigh"] == 50.0
    assert summary["medianPeak"] == 190.0
    assert summary["medianTimeTo180Min"] == 120.0
    assert summary["startBgMed"] == 116.5
    # IQR of starts [112, 121] is 4.5
    assert summary["startBgIQR"] == 5
    assert summary["deltaPeakMed"] == 73.5
    assert summary["startTrend"] == "rising"
    assert summary["startTrendPct"] == 50
    assert summary["leadMinutesMed"] == 11.0

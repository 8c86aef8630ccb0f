"""
Tests for the report builders, the batch pipeline and the dashboard writer.
"""

import json
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add the project to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from glucose_digest import (
    AnalysisThresholds,
    DeviceCycleRecord,
    LOCAL_TZ,
    ProfileSettings,
    Reading,
    Snapshot,
    TreatmentEvent,
    build_agp,
    build_constraints_summary,
    build_daily_overlay,
    build_daily_tir,
    build_hourly_risk,
    build_metrics_digest,
    build_mini_alert,
    build_review,
    build_scenario_cards,
    compare_digests,
    run_all,
    write_dashboard_html,
    write_outputs,
)
from glucose_digest.corrections import expected_isf
from glucose_digest.joins import MS_PER_MINUTE
from glucose_digest.pipeline import METRICS_PREV_FILE, SCENARIO_FILE
from glucose_digest.scenarios import gri_direction, tar_delta
from glucose_digest.visualization import create_gri_zone_plot, dashboard_figures

MIN = MS_PER_MINUTE


def local_ms(year, month, day, hour, minute=0) -> int:
    return int(LOCAL_TZ.localize(datetime(year, month, day, hour, minute)).timestamp() * 1000)


def series(start_ms, values, step_minutes=5):
    return [Reading(start_ms + i * step_minutes * MIN, float(v)) for i, v in enumerate(values)]


# =============================================================================
# DIGEST
# =============================================================================

def test_metrics_digest_counts_and_flags():
    t0 = local_ms(2024, 3, 5, 9)
    readings = series(t0, [50, 100, 150, 200, 300])

    digest = build_metrics_digest(readings, [])
    assert digest["meta"]["count"] == 5
    assert digest["tir"] == {"veryLow": 1, "low": 1, "inRange": 2, "high": 2, "veryHigh": 1}
    assert digest["cv"] is not None
    assert digest["risk"]["GRI"] == pytest.approx(digest["risk"]["LBGI"] + digest["risk"]["HBGI"])
    assert digest["dataFlags"]["possibleMissedCarbs"] == 2

    explained = build_metrics_digest(readings, [TreatmentEvent(t0, carbs_grams=40)])
    assert explained["dataFlags"]["possibleMissedCarbs"] == 0


def test_metrics_digest_empty():
    digest = build_metrics_digest([], [])
    assert digest["meta"]["count"] == 0
    assert digest["cv"] is None
    assert digest["risk"] == {"LBGI": None, "HBGI": None, "GRI": None}


def test_compare_digests_deltas():
    t0 = local_ms(2024, 3, 5, 9)
    current = build_metrics_digest(series(t0, [100, 120, 140, 200]), [])
    previous = build_metrics_digest(series(t0, [100, 200, 220, 240]), [])

    kpis = compare_digests(current, previous)
    assert kpis["TIR"]["value"] == 75.0
    assert kpis["TIR"]["previous"] == 25.0
    assert kpis["TIR"]["delta"] == 50.0
    assert compare_digests(current, None)["TIR"]["delta"] is None


def test_compare_against_empty_window_has_no_gri_delta():
    current = build_metrics_digest(series(local_ms(2024, 3, 5, 9), [300, 300]), [])
    kpis = compare_digests(current, build_metrics_digest([], []))

    assert kpis["GRI"]["value"] > 0
    assert kpis["GRI"]["previous"] is None
    assert kpis["GRI"]["delta"] is None
    assert kpis["TIR"]["delta"] is None

    figure = create_gri_zone_plot(current, build_metrics_digest([], []))
    assert [trace.name for trace in figure.data] == ["Current"]


def test_daily_tir_selects_local_day():
    late = local_ms(2024, 3, 5, 23, 50)
    readings = series(late, [60, 120, 190, 260])  # 23:50, 23:55, 00:00, 00:05

    day = build_daily_tir(readings, day_key="2024-03-05")
    assert day["total"] == 2
    assert day["counts"]["lt70"] == 1
    assert day["pct"]["tir_70_180"] == 50.0

    next_day = build_daily_tir(readings, now_ms=late + 60 * MIN)
    assert next_day["day"] == "2024-03-06"
    assert next_day["counts"]["gt250"] == 1
    assert next_day["pct"]["tar_gt180"] == 100.0


def test_hourly_risk_has_24_hours():
    readings = series(local_ms(2024, 3, 5, 7), [40, 45, 300])
    hourly = build_hourly_risk(readings)

    assert len(hourly["hours"]) == 24
    seven = hourly["hours"][7]
    assert seven["n"] == 3
    assert seven["LBGI"] > 0 and seven["HBGI"] > 0
    assert hourly["hours"][8] == {"hour": 8, "n": 0, "LBGI": None, "HBGI": None}


def test_agp_bins():
    readings = [Reading(local_ms(2024, 3, 4 + d, 0, 1), v) for d, v in enumerate([100.0, 110.0, 120.0])]
    agp = build_agp(readings)

    assert len(agp["p50"]) == 288
    assert agp["p50"][0] == 110.0
    assert agp["p05"][0] == pytest.approx(101.0)
    assert agp["counts"][0] == 3
    assert agp["p50"][1] is None
    assert agp["stepMin"] == 5


# =============================================================================
# LOOP
# =============================================================================

PROFILE = ProfileSettings(
    max_basal_rate_per_hour=3.0,
    max_bolus_units=5.0,
    suspend_threshold_mg_dl=80.0,
    dosing_strategy="automaticBolus",
    sensitivity_schedule=[(0, 60.0), (6 * 3600, 45.0), (17 * 3600, 50.0)],
)


def loop_cycles():
    day1 = local_ms(2024, 3, 5, 10)
    day2 = local_ms(2024, 3, 6, 10)
    return [
        DeviceCycleRecord(day1, predicted=[100.0, 75.0], enacted_rate_units_per_hour=0.0),
        DeviceCycleRecord(day1 + 5 * MIN, predicted=[120.0], enacted_rate_units_per_hour=0.0),
        DeviceCycleRecord(day2, enacted_rate_units_per_hour=3.0, enacted_bolus_units=0.4,
                          automatic_bolus_units=0.4, recommended_bolus_units=0.6),
        DeviceCycleRecord(None, enacted_rate_units_per_hour=1.0, failure_reason="comm timeout"),
    ]


def test_constraints_summary():
    summary = build_constraints_summary(loop_cycles(), PROFILE)

    assert summary["meta"]["totalCycles"] == 4
    assert summary["meta"]["suspendThreshold"] == 80.0
    assert summary["predictions"] == {"withPred": 2, "predBelowSuspend": 1, "pctPredBelowSuspend": 50.0}
    assert summary["basal"]["zeroBasal"] == 2
    assert summary["basal"]["zeroBasal_whenLowPred"] == 1
    assert summary["basal"]["zeroBasal_whenNotLowPred"] == 1
    assert summary["basal"]["atMaxBasal"] == 1
    assert summary["automaticBolus"]["abEnacted"] == 1
    assert summary["automaticBolus"]["pctCyclesWithAB"] == 25.0
    assert summary["automaticBolus"]["enactedVol"]["median"] == 0.4
    assert summary["reliability"]["failures"] == 1


def test_constraints_without_profile():
    summary = build_constraints_summary(loop_cycles(), None)
    assert summary["predictions"]["predBelowSuspend"] == 0
    assert summary["basal"]["atMaxBasal"] == 0


def test_daily_overlay_skips_untimed_cycles():
    overlay = build_daily_overlay(loop_cycles(), PROFILE)

    assert [d["day"] for d in overlay["days"]] == ["2024-03-05", "2024-03-06"]
    first, second = overlay["days"]
    assert first["cycles"] == 2
    assert first["pctPredLeSuspend"] == 50.0
    assert first["pctZeroBasal"] == 100.0
    assert second["pctABcycles"] == 100.0
    assert sum(d["cycles"] for d in overlay["days"]) == 3


def test_mini_alert_last_24h():
    now = local_ms(2024, 3, 6, 12)
    readings = series(now - 30 * 60 * MIN, [50]) + series(now - 60 * MIN, [60, 50, 120, 150])
    cycles = [
        DeviceCycleRecord(now - 10 * MIN, predicted=[70.0]),
        DeviceCycleRecord(now - 5 * MIN, predicted=[140.0], failure_reason="timeout"),
        DeviceCycleRecord(now - 48 * 60 * MIN, failure_reason="old"),
    ]
    alert = build_mini_alert(readings, cycles, PROFILE, now_ms=now)

    assert alert["last24"]["lt70"] == 2
    assert alert["last24"]["lt54"] == 1
    assert alert["last24"]["cycles"] == 2
    assert alert["last24"]["predLeSuspendPct"] == 50.0
    assert alert["last24"]["commErrorPct"] == 50.0
    assert alert["headline"]["day"] == "2024-03-06"
    assert alert["headline"]["total"] == 4


def test_expected_isf_uses_daypart_anchor():
    assert expected_isf(PROFILE, "overnight(0-4)") == 60.0
    assert expected_isf(PROFILE, "morning(6-9)") == 45.0
    assert expected_isf(PROFILE, "evening(17-21)") == 50.0
    assert expected_isf(PROFILE, "other") is None
    assert expected_isf(None, "morning(6-9)") is None


# =============================================================================
# REVIEW AND SCENARIOS
# =============================================================================

def test_review_overnight_drift_card():
    midnight = local_ms(2024, 3, 5, 0)
    readings = series(midnight, [200 - k for k in range(48)])

    review = build_review(readings, [])
    assert review["nights"]["n"] == 1
    assert review["nights"]["medianSlope"] == pytest.approx(-12.0)
    titles = [card["title"] for card in review["cards"]]
    assert titles == ["Overnight downward drift suggests basal too strong"]


def test_review_low_burden_card_comes_first():
    midnight = local_ms(2024, 3, 5, 0)
    readings = series(midnight, [200 - k for k in range(48)]) + series(local_ms(2024, 3, 5, 15), [60] * 5)

    review = build_review(readings, [])
    assert review["meta"]["tir"]["low"] == 5
    assert review["cards"][0]["title"].startswith("Hypoglycemia burden")
    assert len(review["cards"]) == 2


def test_review_empty_inputs():
    review = build_review([], [])
    assert review["meta"]["totalReadings"] == 0
    assert review["nights"]["n"] == 0
    assert review["corrections"]["n"] == 0
    assert review["meals"]["breakfast"]["n"] == 0
    assert review["cards"] == []


def test_tar_delta_direction():
    assert tar_delta({"pctHigh": 60}, {"pctHigh": 59})["dir"] == "flat"
    assert tar_delta({"pctHigh": 60}, {"pctHigh": 30})["dir"] == "decrease TAR"
    assert tar_delta({"pctHigh": 30}, {"pctHigh": 60})["dir"] == "increase TAR"


def test_gri_direction():
    assert gri_direction({"medDrop2h": 55, "pctIneffective2h": 0}) == {"hyper": "flat/decrease", "hypo": "increase"}
    assert gri_direction({"medDrop2h": 40, "pctIneffective2h": 10}) == {"hyper": "flat", "hypo": "slight increase"}
    assert gri_direction({"medDrop2h": None, "pctIneffective2h": None}) == {"hyper": "decrease", "hypo": "increase"}


def test_scenario_cards():
    meal_timing = {"schoolLunch": {
        "pre0-4": {"n": 3, "pctHigh": 66.7},
        "pre10-19": {"n": 4, "pctHigh": 25.0},
        "post0-9": {"n": 2, "pctHigh": 100.0},
    }}
    corrections = {"meta": {"ineffectiveDropMgDl": 20}, "groups": [
        {"group": "midday(11-13) | iob<0.5", "n": 3, "medDrop2h": 42.0, "medDrop3h": 55.0,
         "pctIneffective2h": 0.0, "isfBias": 0.9},
        {"group": "evening(17-21) | iob>1.5", "n": 2, "medDrop2h": 10.0, "medDrop3h": None,
         "pctIneffective2h": 50.0, "isfBias": None},
    ]}
    overlay = {"days": [{"pctPredLeSuspend": 25.0}, {"pctPredLeSuspend": 5.0}]}

    cards = build_scenario_cards(meal_timing, corrections, overlay)["cards"]
    assert len(cards) == 2

    lunch, isf = cards
    assert len(lunch["evidence"]) == 1
    assert "↓41.7 pp" in lunch["evidence"][0]
    assert lunch["confidence"] == "Low"
    assert len(lunch["gatingNotes"]) == 1
    assert isf["timeWindow"] == "midday(11-13) | iob<0.5"
    assert isf["griDelta"] == {"hyper": "flat", "hypo": "slight increase"}


def test_scenario_cards_without_data():
    assert build_scenario_cards({}, {}, {}) == {"cards": []}


# =============================================================================
# PIPELINE
# =============================================================================

def small_snapshot() -> Snapshot:
    t0 = local_ms(2024, 3, 5, 6)
    readings = series(t0, [110 + (k % 24) * 5 for k in range(24 * 12)])
    treatments = [
        TreatmentEvent(t0 + 60 * MIN, carbs_grams=45),
        TreatmentEvent(t0 + 50 * MIN, insulin_units=4.0),
        TreatmentEvent(t0 + 10 * 60 * MIN, insulin_units=1.5),
    ]
    return Snapshot(
        readings=readings,
        treatments=treatments,
        cycles=loop_cycles(),
        profile=PROFILE,
        raw_counts={"entries": len(readings), "treatments": 3, "devicestatus": 4},
        sources={"entries": "ns_entries_test.json"},
    )


def test_run_all_and_write_outputs(tmp_path):
    snapshot = small_snapshot()
    outputs = run_all(snapshot, previous=snapshot)

    assert METRICS_PREV_FILE in outputs
    assert SCENARIO_FILE in outputs
    assert outputs["analysis_basic.json"]["entries"]["count"] == 24 * 12
    assert outputs["meal_timing_analysis.json"]["overall"]["pre10-19"]["n"] == 1

    paths = write_outputs(outputs, tmp_path / "out")
    assert len(paths) == len(outputs)
    for path in paths:
        with open(path, encoding="utf-8") as f:
            assert json.load(f) == json.loads(json.dumps(outputs[path.name]))


def test_run_all_without_previous_or_data():
    empty = Snapshot(readings=[], treatments=[], cycles=[], profile=None)
    outputs = run_all(empty, thresholds=AnalysisThresholds())

    assert METRICS_PREV_FILE not in outputs
    assert outputs["metrics_digest.json"]["meta"]["count"] == 0
    assert outputs["agp.json"]["counts"] == [0] * 288
    assert outputs["scenario_cards.json"] == {"cards": []}


def test_dashboard_html(tmp_path):
    outputs = run_all(small_snapshot())
    assert len(dashboard_figures(outputs)) >= 4

    path = write_dashboard_html(outputs, tmp_path / "dist" / "index.html")
    html = path.read_text(encoding="utf-8")
    assert html.startswith("<!DOCTYPE html>")
    assert "plotly" in html.lower()

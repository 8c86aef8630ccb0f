"""
Batch orchestration: run every report builder over a snapshot and write
one JSON file per summary.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .agp import build_agp
from .constraints import build_constraints_summary
from .corrections import build_correction_context
from .data_loader import LOCAL_TZ
from .digest import (
    build_basic_summary, build_daily_tir, build_hourly_risk, build_metrics_digest,
)
from .meal_timing import build_meal_timing
from .models import AnalysisThresholds, Snapshot
from .overlay import build_daily_overlay, build_mini_alert
from .review import build_review
from .scenarios import build_scenario_cards

logger = logging.getLogger(__name__)

# Output file names
BASIC_FILE = "analysis_basic.json"
METRICS_FILE = "metrics_digest.json"
METRICS_PREV_FILE = "metrics_digest_prev.json"
DAILY_TIR_FILE = "daily_tir.json"
HOURLY_RISK_FILE = "hourly_risk.json"
AGP_FILE = "agp.json"
MEAL_TIMING_FILE = "meal_timing_analysis.json"
CORRECTION_FILE = "correction_context.json"
CONSTRAINTS_FILE = "constraints_summary.json"
OVERLAY_FILE = "overlay_daily.json"
MINI_ALERT_FILE = "mini_alert.json"
REVIEW_FILE = "review_summary.json"
SCENARIO_FILE = "scenario_cards.json"


def run_all(snapshot: Snapshot, previous: Optional[Snapshot] = None,
            thresholds: AnalysisThresholds = None, now_ms: Optional[int] = None,
            tz=LOCAL_TZ) -> Dict[str, Dict[str, Any]]:
    """
    Run every builder over one snapshot.

    Args:
        snapshot: Current snapshot
        previous: Prior-window snapshot for the comparison digest (optional)
        thresholds: Shared analysis thresholds
        now_ms: Reference instant for "today" and "last 24 h" summaries;
            defaults to the latest reading, then the current time
        tz: Reference timezone

    Returns:
        Mapping of output file name -> summary dict
    """
    if thresholds is None:
        thresholds = AnalysisThresholds()
    if now_ms is None and snapshot.readings:
        now_ms = snapshot.readings[-1].timestamp_ms

    readings, treatments, cycles, profile = (
        snapshot.readings, snapshot.treatments, snapshot.cycles, snapshot.profile)

    outputs: Dict[str, Dict[str, Any]] = {
        BASIC_FILE: build_basic_summary(snapshot),
        METRICS_FILE: build_metrics_digest(readings, treatments, thresholds),
        DAILY_TIR_FILE: build_daily_tir(readings, now_ms=now_ms, thresholds=thresholds, tz=tz),
        HOURLY_RISK_FILE: build_hourly_risk(readings, tz),
        AGP_FILE: build_agp(readings, tz),
        MEAL_TIMING_FILE: build_meal_timing(readings, treatments, thresholds, tz),
        CORRECTION_FILE: build_correction_context(readings, treatments, cycles, profile, thresholds, tz),
        CONSTRAINTS_FILE: build_constraints_summary(cycles, profile),
        OVERLAY_FILE: build_daily_overlay(cycles, profile, tz),
        MINI_ALERT_FILE: build_mini_alert(readings, cycles, profile, now_ms, thresholds, tz),
        REVIEW_FILE: build_review(readings, treatments, cycles, thresholds, tz),
    }
    if previous is not None:
        outputs[METRICS_PREV_FILE] = build_metrics_digest(previous.readings, previous.treatments, thresholds)

    outputs[SCENARIO_FILE] = build_scenario_cards(
        outputs[MEAL_TIMING_FILE], outputs[CORRECTION_FILE], outputs[OVERLAY_FILE])

    logger.info(f"Built {len(outputs)} summaries from {len(readings)} readings")
    return outputs


def write_outputs(outputs: Dict[str, Dict[str, Any]], out_dir: Path) -> List[Path]:
    """Write each summary as indented JSON; returns the written paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for name, summary in outputs.items():
        path = out_dir / name
        with open(path, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
        logger.debug(f"Wrote {path}")
        paths.append(path)
    return paths

"""
Glucose Digest Package

Batch statistical summaries of exported CGM, treatment, loop and profile data.

Modules:
    models: Data classes for readings, treatments, loop cycles and thresholds
    data_loader: Snapshot loading, record normalization and local calendar decomposition
    stats: Quantiles, variability and glycemic risk indices
    joins: Nearest and windowed joins against a sorted glucose series
    classification: Meal, bolus, correction and exercise classification
    grouping: Temporal bins, event trajectories and contextual cells
    digest: Inventory, time-in-range digest, daily TIR and hourly risk
    agp: Ambulatory glucose profile bands
    meal_timing: Meal response by bolus lead time
    corrections: Correction effectiveness by time of day and IOB band
    constraints: Loop gating and constraint counts
    overlay: Daily reliability overlay and 24h mini alert
    review: Overnight drift, meal slots, corrections and hypothesis cards
    scenarios: Timing and ISF what-if cards
    pipeline: Run every builder and write the JSON outputs
    visualization: Plotly figures and the static HTML dashboard
"""

from .models import (
    Reading,
    TreatmentEvent,
    DeviceCycleRecord,
    ProfileSettings,
    Snapshot,
    AnalysisThresholds
)

from .data_loader import (
    SnapshotNotFoundError,
    normalize_readings,
    normalize_treatments,
    normalize_device_cycles,
    parse_profile,
    local_parts,
    local_day_key,
    readings_frame,
    latest_snapshot,
    load_snapshot,
    DATA_PATH,
    LOCAL_TZ,
    UTC
)

from .stats import (
    quantile,
    median,
    mean,
    std_dev,
    coefficient_of_variation,
    percentage,
    risk_transform,
    glycemic_risk,
    range_counts
)

from .joins import (
    TimeSeries,
    any_within,
    bolus_lead_minutes
)

from .classification import (
    is_meal,
    is_bolus,
    is_correction_only,
    is_exercise,
    is_confounded
)

from .grouping import (
    ContextCell,
    CellTable,
    time_of_day_bin,
    iob_bin,
    lead_time_bin,
    meal_slot,
    school_windows,
    post_event_response,
    TIME_OF_DAY_BINS,
    IOB_BANDS,
    LEAD_BINS
)

from .digest import (
    build_basic_summary,
    build_metrics_digest,
    build_daily_tir,
    build_hourly_risk,
    compare_digests
)

from .agp import build_agp
from .meal_timing import build_meal_timing

from .corrections import (
    CorrectionOutcome,
    collect_corrections,
    build_correction_context
)

from .constraints import build_constraints_summary

from .overlay import (
    build_daily_overlay,
    build_mini_alert
)

from .review import build_review
from .scenarios import build_scenario_cards

from .pipeline import (
    run_all,
    write_outputs
)

from .visualization import (
    create_glucose_plot,
    create_agp_plot,
    create_tir_donut,
    create_hourly_risk_plot,
    create_gri_zone_plot,
    create_correction_heatmap,
    write_dashboard_html
)

__all__ = [
    # Models
    'Reading',
    'TreatmentEvent',
    'DeviceCycleRecord',
    'ProfileSettings',
    'Snapshot',
    'AnalysisThresholds',
    # Data loading
    'SnapshotNotFoundError',
    'normalize_readings',
    'normalize_treatments',
    'normalize_device_cycles',
    'parse_profile',
    'local_parts',
    'local_day_key',
    'readings_frame',
    'latest_snapshot',
    'load_snapshot',
    'DATA_PATH',
    'LOCAL_TZ',
    'UTC',
    # Statistics
    'quantile',
    'median',
    'mean',
    'std_dev',
    'coefficient_of_variation',
    'percentage',
    'risk_transform',
    'glycemic_risk',
    'range_counts',
    # Joins
    'TimeSeries',
    'any_within',
    'bolus_lead_minutes',
    # Classification
    'is_meal',
    'is_bolus',
    'is_correction_only',
    'is_exercise',
    'is_confounded',
    # Grouping
    'ContextCell',
    'CellTable',
    'time_of_day_bin',
    'iob_bin',
    'lead_time_bin',
    'meal_slot',
    'school_windows',
    'post_event_response',
    'TIME_OF_DAY_BINS',
    'IOB_BANDS',
    'LEAD_BINS',
    # Report builders
    'build_basic_summary',
    'build_metrics_digest',
    'build_daily_tir',
    'build_hourly_risk',
    'compare_digests',
    'build_agp',
    'build_meal_timing',
    'CorrectionOutcome',
    'collect_corrections',
    'build_correction_context',
    'build_constraints_summary',
    'build_daily_overlay',
    'build_mini_alert',
    'build_review',
    'build_scenario_cards',
    # Pipeline
    'run_all',
    'write_outputs',
    # Visualization
    'create_glucose_plot',
    'create_agp_plot',
    'create_tir_donut',
    'create_hourly_risk_plot',
    'create_gri_zone_plot',
    'create_correction_heatmap',
    'write_dashboard_html',
]

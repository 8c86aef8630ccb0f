"""
Data classes for glucose readings, treatments, loop cycles and analysis configuration.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


@dataclass
class Reading:
    """A single CGM glucose measurement."""
    timestamp_ms: int  # Epoch milliseconds (UTC)
    value_mg_dl: float  # Glucose value in mg/dL, not clamped


@dataclass
class TreatmentEvent:
    """A logged dosing or meal record."""
    timestamp_ms: int
    carbs_grams: Optional[float] = None  # > 0 flags a meal
    insulin_units: Optional[float] = None  # > 0 flags a bolus
    event_type: Optional[str] = None  # Free text, used for exercise detection only
    notes: Optional[str] = None


@dataclass
class DeviceCycleRecord:
    """
    One automated-dosing loop decision cycle.

    A cycle without a timestamp still counts toward whole-snapshot totals
    but cannot be placed on a local day.
    """
    timestamp_ms: Optional[int]
    predicted: Optional[List[float]] = None  # Future glucose trajectory, None if not uploaded
    enacted_rate_units_per_hour: Optional[float] = None
    enacted_bolus_units: Optional[float] = None
    insulin_on_board_units: Optional[float] = None
    failure_reason: Optional[str] = None  # Presence flags a communication/dosing failure
    automatic_bolus_units: Optional[float] = None  # automaticDoseRecommendation.bolusVolume
    recommended_bolus_units: Optional[float] = None

    @property
    def min_predicted(self) -> Optional[float]:
        """Lowest predicted glucose of the cycle, or None without a usable prediction."""
        if not self.predicted:
            return None
        return min(self.predicted)


@dataclass
class ProfileSettings:
    """Most recent pump/loop configuration snapshot."""
    max_basal_rate_per_hour: Optional[float] = None
    max_bolus_units: Optional[float] = None
    suspend_threshold_mg_dl: Optional[float] = None  # Glucose floor below which dosing is suspended
    dosing_strategy: Optional[str] = None
    # (seconds since local midnight, ISF mg/dL per U), effective until superseded
    sensitivity_schedule: List[Tuple[int, float]] = field(default_factory=list)

    def isf_at(self, seconds_since_midnight: int) -> Optional[float]:
        """Return the sensitivity factor in effect at the given time of day."""
        value = None
        best = -1
        for start, isf in self.sensitivity_schedule:
            if best < start <= seconds_since_midnight:
                best = start
                value = isf
        return value


@dataclass
class Snapshot:
    """The chosen input bundle for one batch run."""
    readings: List[Reading]
    treatments: List[TreatmentEvent]
    cycles: List[DeviceCycleRecord]
    profile: Optional[ProfileSettings]
    # Raw record counts before malformed rows were dropped
    raw_counts: Dict[str, int] = field(default_factory=dict)
    sources: Dict[str, Optional[str]] = field(default_factory=dict)


@dataclass
class AnalysisThresholds:
    """Configuration thresholds shared by the report builders."""
    very_low_mg_dl: float = 54.0
    low_mg_dl: float = 70.0  # Time-in-range lower bound
    high_mg_dl: float = 180.0  # Time-in-range upper bound
    very_high_mg_dl: float = 250.0
    # Meals and corrections
    meal_min_carbs: float = 10.0  # Peak/response analyses only
    correction_min_units: float = 0.3  # Excludes micro-boluses
    confound_window_minutes: int = 240  # Meals or exercise within ± this window exclude a correction
    iob_tolerance_minutes: int = 5
    ineffective_drop_mg_dl: float = 20.0  # 2h drop below this is "ineffective"
    peak_window_minutes: int = 240
    # Pre-event glucose window, minutes relative to the event
    pre_window_start_minutes: int = -10
    pre_window_end_minutes: int = 5
    # Bolus lead-time search window
    lead_lookback_minutes: int = 60
    lead_lookahead_minutes: int = 30
    # Start trend
    trend_window_minutes: int = 15
    trend_delta_mg_dl: float = 10.0
    # Dose-normalized drop
    dose_horizon_minutes: int = 120
    dose_tolerance_minutes: int = 10
    # Possible missed carbs flag
    missed_carb_rise_mg_dl: float = 50.0
    missed_carb_lookahead_minutes: int = 60
    # Review overnight drift
    drift_slope_mg_dl_per_hour: float = 5.0

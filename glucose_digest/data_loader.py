"""
Loading and normalization of exported Nightscout/Loop records.

Raw records are plain dicts as found in the exported JSON files. Each field
that has more than one encoding in the wild is read through an ordered parser
chain: a tuple of small extractor functions tried in sequence, the first
non-None result wins. Records missing a usable value or timestamp are dropped.
"""

import json
import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import pandas as pd
import pytz

from .models import DeviceCycleRecord, ProfileSettings, Reading, Snapshot, TreatmentEvent

logger = logging.getLogger(__name__)

# Constants
DATA_PATH = Path(os.environ.get("GLUCOSE_DIGEST_DATA", "data"))
LOCAL_TZ = pytz.timezone("America/Chicago")
UTC = pytz.UTC

ENTRIES_PREFIX = "ns_entries_"
TREATMENTS_PREFIX = "ns_treatments_"
DEVICESTATUS_PREFIX = "ns_devicestatus_"
PROFILE_FILENAME = "ns_profile_latest.json"

BINS_PER_DAY = 288  # 5-minute bins
MS_PER_DAY = 24 * 60 * 60 * 1000

Extractor = Callable[[Dict[str, Any]], Any]


class SnapshotNotFoundError(FileNotFoundError):
    """Raised when no CGM entries snapshot exists in the data directory."""
    pass


# =============================================================================
# PARSER CHAINS
# =============================================================================

def _lookup(record: Dict[str, Any], path: Sequence[str]) -> Any:
    node: Any = record
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def as_number(value: Any) -> Optional[float]:
    """Return the value if it is a finite JSON number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def parse_timestamp_ms(value: Any) -> Optional[int]:
    """Parse an ISO-8601 date string into epoch milliseconds."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        ts = pd.to_datetime(value, utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return int(ts.value // 1_000_000)


def number_field(*path: str) -> Extractor:
    def extract(record):
        return as_number(_lookup(record, path))
    return extract


def epoch_field(*path: str) -> Extractor:
    def extract(record):
        value = as_number(_lookup(record, path))
        return int(value) if value is not None else None
    return extract


def iso_field(*path: str) -> Extractor:
    def extract(record):
        return parse_timestamp_ms(_lookup(record, path))
    return extract


def first_of(chain: Sequence[Extractor], record: Dict[str, Any]) -> Any:
    """Run a parser chain over a record, returning the first non-None result."""
    for extract in chain:
        value = extract(record)
        if value is not None:
            return value
    return None


GLUCOSE_VALUE_CHAIN = (number_field("sgv"), number_field("mgdl"), number_field("mgdL"))
READING_TIMESTAMP_CHAIN = (epoch_field("date"), iso_field("dateString"))
TREATMENT_TIMESTAMP_CHAIN = (epoch_field("mills"), iso_field("created_at"), iso_field("createdAt"))
CYCLE_TIMESTAMP_CHAIN = (iso_field("created_at"), iso_field("loop", "timestamp"))


# =============================================================================
# NORMALIZATION
# =============================================================================

def normalize_readings(records: Sequence[Any]) -> List[Reading]:
    """
    Convert raw CGM entries into a time-sorted list of readings.

    Entries without a numeric glucose value or a parseable timestamp are
    dropped. Duplicates are preserved; the sort is stable.

    Args:
        records: Raw entry dicts (sgv/mgdl/mgdL value, date or dateString timestamp)

    Returns:
        List of Reading sorted ascending by timestamp
    """
    readings = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        value = first_of(GLUCOSE_VALUE_CHAIN, record)
        timestamp_ms = first_of(READING_TIMESTAMP_CHAIN, record)
        if value is None or timestamp_ms is None:
            continue
        readings.append(Reading(timestamp_ms=timestamp_ms, value_mg_dl=float(value)))

    dropped = len(records or []) - len(readings)
    if dropped:
        logger.debug(f"Dropped {dropped} malformed CGM entries")

    readings.sort(key=lambda r: r.timestamp_ms)
    return readings


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_treatments(records: Sequence[Any]) -> List[TreatmentEvent]:
    """Convert raw treatment records into a time-sorted list of events."""
    events = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        timestamp_ms = first_of(TREATMENT_TIMESTAMP_CHAIN, record)
        if timestamp_ms is None:
            continue
        events.append(TreatmentEvent(
            timestamp_ms=timestamp_ms,
            carbs_grams=as_number(record.get("carbs")),
            insulin_units=as_number(record.get("insulin")),
            event_type=_text(record.get("eventType")),
            notes=_text(record.get("notes")),
        ))

    dropped = len(records or []) - len(events)
    if dropped:
        logger.debug(f"Dropped {dropped} treatments without a timestamp")

    events.sort(key=lambda e: e.timestamp_ms)
    return events


def normalize_device_cycles(records: Sequence[Any]) -> List[DeviceCycleRecord]:
    """
    Convert raw devicestatus records into loop cycles.

    Records without a loop payload are not cycles and are skipped. The
    result keeps input order; use sort_cycles_by_time for time-based joins.
    """
    cycles = []
    for record in records or []:
        if not isinstance(record, dict):
            continue
        loop = record.get("loop")
        if not isinstance(loop, dict) or not loop:
            continue

        predicted = None
        predicted_values = _lookup(loop, ("predicted", "values"))
        if isinstance(predicted_values, list):
            predicted = [v for v in predicted_values if as_number(v) is not None]

        failure = loop.get("failureReason")
        cycles.append(DeviceCycleRecord(
            timestamp_ms=first_of(CYCLE_TIMESTAMP_CHAIN, record),
            predicted=predicted,
            enacted_rate_units_per_hour=as_number(_lookup(loop, ("enacted", "rate"))),
            enacted_bolus_units=as_number(_lookup(loop, ("enacted", "bolusVolume"))),
            insulin_on_board_units=as_number(_lookup(loop, ("iob", "iob"))),
            failure_reason=str(failure) if failure else None,
            automatic_bolus_units=as_number(_lookup(loop, ("automaticDoseRecommendation", "bolusVolume"))),
            recommended_bolus_units=as_number(loop.get("recommendedBolus")),
        ))
    return cycles


def sort_cycles_by_time(cycles: Sequence[DeviceCycleRecord]) -> List[DeviceCycleRecord]:
    """Return the cycles that carry a timestamp, sorted ascending."""
    return sorted((c for c in cycles if c.timestamp_ms is not None), key=lambda c: c.timestamp_ms)


def _schedule_seconds(entry: Dict[str, Any]) -> Optional[int]:
    seconds = as_number(entry.get("timeAsSeconds"))
    if seconds is not None:
        return int(seconds)
    time_str = entry.get("time")
    if isinstance(time_str, str) and ":" in time_str:
        try:
            hours, minutes = time_str.split(":")[:2]
            return int(hours) * 3600 + int(minutes) * 60
        except ValueError:
            return None
    return None


def parse_profile(raw: Any) -> Optional[ProfileSettings]:
    """
    Extract loop limits and the ISF schedule from a profile export.

    Exports are a list with the most recent profile first, or a single
    profile dict. Loop settings may sit under ``loopSettings`` or at the
    root of the profile.

    Returns:
        ProfileSettings, or None when no profile is present
    """
    if isinstance(raw, list):
        latest = raw[0] if raw else None
    else:
        latest = raw
    if not isinstance(latest, dict):
        return None

    settings = latest.get("loopSettings") if isinstance(latest.get("loopSettings"), dict) else latest

    store = latest.get("store") if isinstance(latest.get("store"), dict) else {}
    default_name = latest.get("defaultProfile") if isinstance(latest.get("defaultProfile"), str) else "Default"
    store_profile = store.get(default_name) or store.get("Default") or {}

    schedule = []
    for entry in store_profile.get("sens") or []:
        if not isinstance(entry, dict):
            continue
        seconds = _schedule_seconds(entry)
        value = entry.get("value")
        if isinstance(value, str):
            try:
                value = float(value)
            except ValueError:
                value = None
        value = as_number(value)
        if seconds is not None and value is not None:
            schedule.append((seconds, float(value)))
    schedule.sort()

    strategy = settings.get("dosingStrategy")
    return ProfileSettings(
        max_basal_rate_per_hour=as_number(settings.get("maximumBasalRatePerHour")),
        max_bolus_units=as_number(settings.get("maximumBolus")),
        suspend_threshold_mg_dl=as_number(settings.get("minimumBGGuard")),
        dosing_strategy=strategy if isinstance(strategy, str) else None,
        sensitivity_schedule=schedule,
    )


# =============================================================================
# CALENDAR DECOMPOSITION
# =============================================================================

@dataclass(frozen=True)
class LocalParts:
    """Calendar components of an instant in the reference timezone."""
    year: int
    month: int
    day: int
    hour: int
    minute: int
    weekday: int  # Monday == 0

    @property
    def day_key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @property
    def minute_of_day(self) -> int:
        return self.hour * 60 + self.minute

    @property
    def is_weekday(self) -> bool:
        return self.weekday < 5


def to_local_datetime(timestamp_ms: int, tz=LOCAL_TZ) -> datetime:
    """Convert epoch milliseconds to an aware datetime in the given timezone."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=UTC).astimezone(tz)


def local_parts(timestamp_ms: int, tz=LOCAL_TZ) -> LocalParts:
    dt = to_local_datetime(timestamp_ms, tz)
    return LocalParts(dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.weekday())


def local_day_key(timestamp_ms: int, tz=LOCAL_TZ) -> str:
    return local_parts(timestamp_ms, tz).day_key


def readings_frame(readings: Sequence[Reading], tz=LOCAL_TZ) -> pd.DataFrame:
    """
    Build a DataFrame of readings with local calendar columns.

    Columns: timestamp_ms, value, datetime_local, date (YYYY-MM-DD),
    hour, minute, bin (5-minute-of-day index).
    """
    df = pd.DataFrame({
        "timestamp_ms": pd.Series([r.timestamp_ms for r in readings], dtype="int64"),
        "value": pd.Series([r.value_mg_dl for r in readings], dtype="float64"),
    })
    df["datetime"] = pd.to_datetime(df["timestamp_ms"], unit="ms", utc=True)
    df["datetime_local"] = df["datetime"].dt.tz_convert(tz)
    df["date"] = df["datetime_local"].dt.strftime("%Y-%m-%d")
    df["hour"] = df["datetime_local"].dt.hour
    df["minute"] = df["datetime_local"].dt.minute
    df["bin"] = ((df["hour"] * 60 + df["minute"]) // 5).clip(0, BINS_PER_DAY - 1)
    return df


# =============================================================================
# SNAPSHOT FILES
# =============================================================================

def load_json(path: Optional[Path]) -> Any:
    """Read a JSON file, returning None when it is missing or unreadable."""
    if path is None:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning(f"Could not read {path}: {exc}")
        return None


def list_snapshot_files(data_dir: Path, prefix: str) -> List[Path]:
    """Snapshot files with the given prefix, oldest first by file name."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    return sorted(p for p in data_dir.iterdir() if p.is_file() and p.name.startswith(prefix))


def pick_snapshot_file(files: Sequence[Path], previous: bool = False) -> Optional[Path]:
    """
    Pick the newest file, or the second newest when ``previous`` is set.

    With a single candidate the previous window falls back to it.
    """
    if not files:
        return None
    if previous and len(files) >= 2:
        return files[-2]
    return files[-1]


def find_snapshot_paths(data_dir: Path = DATA_PATH, previous: bool = False) -> Dict[str, Optional[Path]]:
    data_dir = Path(data_dir)
    profile_path = data_dir / PROFILE_FILENAME
    return {
        "entries": pick_snapshot_file(list_snapshot_files(data_dir, ENTRIES_PREFIX), previous),
        "treatments": pick_snapshot_file(list_snapshot_files(data_dir, TREATMENTS_PREFIX), previous),
        "devicestatus": pick_snapshot_file(list_snapshot_files(data_dir, DEVICESTATUS_PREFIX), previous),
        "profile": profile_path if profile_path.exists() else None,
    }


def _as_list(payload: Any) -> List[Any]:
    return payload if isinstance(payload, list) else []


def latest_snapshot(data_dir: Path = DATA_PATH, previous: bool = False) -> Optional[Snapshot]:
    """
    Load the most recent snapshot from the data directory.

    Missing treatments, devicestatus or profile files yield empty inputs.

    Returns:
        Snapshot, or None if there is no CGM entries file at all
    """
    paths = find_snapshot_paths(data_dir, previous)
    if paths["entries"] is None:
        return None

    entries = _as_list(load_json(paths["entries"]))
    treatments = _as_list(load_json(paths["treatments"]))
    devicestatus = _as_list(load_json(paths["devicestatus"]))
    profile = parse_profile(load_json(paths["profile"]))

    logger.info(
        f"Loaded snapshot {paths['entries'].name}: {len(entries)} entries, "
        f"{len(treatments)} treatments, {len(devicestatus)} devicestatus records"
    )

    return Snapshot(
        readings=normalize_readings(entries),
        treatments=normalize_treatments(treatments),
        cycles=normalize_device_cycles(devicestatus),
        profile=profile,
        raw_counts={
            "entries": len(entries),
            "treatments": len(treatments),
            "devicestatus": len(devicestatus),
        },
        sources={name: str(path) if path else None for name, path in paths.items()},
    )


def load_snapshot(data_dir: Path = DATA_PATH, previous: bool = False) -> Snapshot:
    """Like latest_snapshot, but a missing entries file is fatal."""
    snapshot = latest_snapshot(data_dir, previous)
    if snapshot is None:
        raise SnapshotNotFoundError(f"No {ENTRIES_PREFIX}* files found in {data_dir}")
    return snapshot

"""
Classification of treatment records into meals, corrections and exercise.

Thresholds are passed explicitly by each analysis, since the peak/response
analyses count only meals of 10 g or more while general meal detection
counts any positive carb entry.
"""

from typing import Callable, List, Sequence

from .joins import any_within
from .models import TreatmentEvent

EXERCISE_KEYWORDS = ("exercise", "activity")


def is_meal(event: TreatmentEvent, min_carbs: float) -> bool:
    """Carbs present, positive and at least ``min_carbs`` grams (pass 0 for any carbs)."""
    carbs = event.carbs_grams
    return carbs is not None and carbs > 0 and carbs >= min_carbs


def is_bolus(event: TreatmentEvent, min_units: float = 0) -> bool:
    units = event.insulin_units
    return units is not None and units > 0 and units >= min_units


def is_correction_only(event: TreatmentEvent, min_units: float) -> bool:
    """Insulin without concurrent carbs; ``min_units`` excludes micro-boluses."""
    return is_bolus(event, min_units) and not is_meal(event, 0)


def is_exercise(event: TreatmentEvent) -> bool:
    """Case-insensitive keyword match on the event type or notes."""
    for text in (event.event_type, event.notes):
        if text and any(keyword in text.lower() for keyword in EXERCISE_KEYWORDS):
            return True
    return False


def event_times(events: Sequence[TreatmentEvent], predicate: Callable[[TreatmentEvent], bool]) -> List[int]:
    """Sorted instants of the events matching the predicate."""
    return sorted(e.timestamp_ms for e in events if predicate(e))


def is_confounded(instant_ms: int, meal_times: Sequence[int], exercise_times: Sequence[int],
                  window_minutes: float = 240) -> bool:
    """
    True if a meal or an exercise entry lies within ± window_minutes.

    Confounded corrections are excluded from correction-effect grouping.
    """
    return (any_within(meal_times, instant_ms, window_minutes)
            or any_within(exercise_times, instant_ms, window_minutes))

"""
Reference-range interpretation

Maps a numeric result plus patient context to a clinical interpretation.
Catalog range entries may be written with camelCase keys (``ageMin``,
``criticalMax``) or snake_case keys; both are accepted.

Boundary semantics are exclusive and critical bounds are checked first:
  value < critical_min -> CRITICAL_LOW
  value > critical_max -> CRITICAL_HIGH
  value < min          -> LOW
  value > max          -> HIGH
  otherwise            -> NORMAL
"""

from typing import Optional, List, Any
from pydantic import BaseModel, ConfigDict, Field

from app.domain.diagnostics.models import Interpretation

DEFAULT_PATIENT_AGE = 30
CRITICAL_INTERPRETATIONS = frozenset({Interpretation.CRITICAL_LOW, Interpretation.CRITICAL_HIGH})


class ReferenceRange(BaseModel):
    """One catalog range entry, scoped by gender and age bracket"""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    gender: Optional[str] = "all"
    age_min: Optional[float] = Field(default=None, alias="ageMin")
    age_max: Optional[float] = Field(default=None, alias="ageMax")
    min: Optional[float] = None
    max: Optional[float] = None
    critical_min: Optional[float] = Field(default=None, alias="criticalMin")
    critical_max: Optional[float] = Field(default=None, alias="criticalMax")
    text: Optional[str] = None

    def matches(self, gender: str, age: float) -> bool:
        range_gender = (self.gender or "all").lower()
        if range_gender not in ("all", gender):
            return False
        lower = self.age_min if self.age_min is not None else 0
        upper = self.age_max if self.age_max is not None else 150
        return lower <= age <= upper

    def describe(self, unit: Optional[str] = None) -> Optional[str]:
        """Human-readable range, e.g. ``70 - 110 mg/dL``"""
        if self.text:
            return self.text
        if self.min is None and self.max is None:
            return None
        if self.min is None:
            bounds = f"< {_fmt(self.max)}"
        elif self.max is None:
            bounds = f"> {_fmt(self.min)}"
        else:
            bounds = f"{_fmt(self.min)} - {_fmt(self.max)}"
        return f"{bounds} {unit}" if unit else bounds


def _fmt(value: float) -> str:
    return f"{value:g}"


def parse_reference_ranges(raw: Any) -> List[ReferenceRange]:
    """Catalog entries as ranges. Anything other than a list of objects yields none."""
    if not isinstance(raw, list):
        return []
    return [ReferenceRange.model_validate(entry) for entry in raw if isinstance(entry, dict)]


def select_reference_range(
    reference_ranges: Any,
    patient_gender: Optional[str] = None,
    patient_age: Optional[float] = None,
) -> Optional[ReferenceRange]:
    """Pick the range for this patient, falling back to the first entry.

    Returns None when the catalog carries no ranges.
    """
    ranges = parse_reference_ranges(reference_ranges)
    if not ranges:
        return None

    gender = (patient_gender or "all").lower()
    age = DEFAULT_PATIENT_AGE if patient_age is None else patient_age

    for candidate in ranges:
        if candidate.matches(gender, age):
            return candidate
    return ranges[0]


def compute_interpretation(value: float, reference_range: Optional[ReferenceRange]) -> Interpretation:
    if reference_range is None:
        return Interpretation.NORMAL

    if reference_range.critical_min is not None and value < reference_range.critical_min:
        return Interpretation.CRITICAL_LOW
    if reference_range.critical_max is not None and value > reference_range.critical_max:
        return Interpretation.CRITICAL_HIGH
    if reference_range.min is not None and value < reference_range.min:
        return Interpretation.LOW
    if reference_range.max is not None and value > reference_range.max:
        return Interpretation.HIGH
    return Interpretation.NORMAL


def calculate_interpretation(
    value: float,
    reference_ranges: Any,
    patient_gender: Optional[str] = None,
    patient_age: Optional[float] = None,
) -> Interpretation:
    """Interpret ``value`` against the catalog ranges for this patient."""
    selected = select_reference_range(reference_ranges, patient_gender, patient_age)
    return compute_interpretation(value, selected)


def is_critical_interpretation(interpretation: Optional[Interpretation]) -> bool:
    return interpretation in CRITICAL_INTERPRETATIONS

"""
Value shapes

Each test category captures its result in one shape: tabular (a value, a
number or a sub-panel), narrative (free-text report) or generic. The shape
is resolved once when the result is created and stored on the row, so the
lifecycle engine asks the shape object what it accepts and what it needs
instead of branching on category strings.
"""

from typing import Dict, FrozenSet, List, Iterable

from app.domain.diagnostics.models import ValueShape

TABULAR_FIELDS = frozenset({"result_value", "result_numeric", "result_unit", "component_results"})
NARRATIVE_FIELDS = frozenset({"report_text", "impressions", "recommendations"})
SHARED_FIELDS = frozenset({"technician_notes", "attachments", "image_urls"})


class ResultShape:
    kind: ValueShape = ValueShape.GENERIC
    value_fields: FrozenSet[str] = TABULAR_FIELDS | NARRATIVE_FIELDS
    supports_interpretation = True

    def accepted_fields(self) -> FrozenSet[str]:
        return self.value_fields | SHARED_FIELDS

    def foreign_fields(self, fields: Iterable[str]) -> List[str]:
        """Fields in ``fields`` that belong to another shape"""
        accepted = self.accepted_fields()
        return sorted(f for f in fields if f not in accepted)

    def missing_for_submission(self, result) -> List[str]:
        return []


class TabularShape(ResultShape):
    kind = ValueShape.TABULAR
    value_fields = TABULAR_FIELDS

    def missing_for_submission(self, result) -> List[str]:
        if result.result_value or result.result_numeric is not None or result.component_results:
            return []
        return ["Result value is required"]


class NarrativeShape(ResultShape):
    kind = ValueShape.NARRATIVE
    value_fields = NARRATIVE_FIELDS
    supports_interpretation = False

    def missing_for_submission(self, result) -> List[str]:
        if result.report_text or result.impressions:
            return []
        return ["Report text or impressions required"]


class GenericShape(ResultShape):
    kind = ValueShape.GENERIC


SHAPES: Dict[ValueShape, ResultShape] = {
    ValueShape.TABULAR: TabularShape(),
    ValueShape.NARRATIVE: NarrativeShape(),
    ValueShape.GENERIC: GenericShape(),
}

CATEGORY_SHAPES: Dict[str, ValueShape] = {
    "BLOOD_TEST": ValueShape.TABULAR,
    "URINE": ValueShape.TABULAR,
    "HORMONES": ValueShape.TABULAR,
    "IMAGING": ValueShape.NARRATIVE,
    "PATHOLOGY": ValueShape.NARRATIVE,
}


def shape_kind_for_category(category: str) -> ValueShape:
    return CATEGORY_SHAPES.get(category, ValueShape.GENERIC)


def get_shape(kind: ValueShape) -> ResultShape:
    return SHAPES[ValueShape(kind)]

"""
Entry-form templates

The workboard asks a template service for the form used to enter a result.
Deployments with a template catalog plug in their own implementation; the
built-in one hands back a default form per value shape.
"""

from typing import Dict, Any, List, Optional
import copy

from app.domain.diagnostics.models import ValueShape
from app.domain.diagnostics.shapes import shape_kind_for_category


class TemplateService:
    """Resolves the entry form for a test"""

    async def get_entry_form_config(
        self,
        test_code: str,
        test_category: str,
        hospital_id: str,
    ) -> Dict[str, Any]:
        raise NotImplementedError


GENERIC_ENTRY_FORM: Dict[str, Any] = {
    "template_type": "GENERIC",
    "fields": [
        {"id": "result_value", "label": "Result", "type": "text", "required": False},
        {"id": "technician_notes", "label": "Notes", "type": "textarea", "required": False},
    ],
    "sections": [],
}

TABULAR_ENTRY_FORM: Dict[str, Any] = {
    "template_type": "TABULAR",
    "fields": [
        {"id": "result_value", "label": "Result", "type": "text", "required": False},
        {"id": "result_numeric", "label": "Numeric Value", "type": "number", "required": False},
        {"id": "result_unit", "label": "Unit", "type": "text", "required": False},
        {"id": "component_results", "label": "Components", "type": "table", "required": False},
        {"id": "technician_notes", "label": "Notes", "type": "textarea", "required": False},
    ],
    "sections": [],
}

NARRATIVE_ENTRY_FORM: Dict[str, Any] = {
    "template_type": "NARRATIVE",
    "fields": [
        {"id": "report_text", "label": "Findings", "type": "richtext", "required": False},
        {"id": "impressions", "label": "Impression", "type": "textarea", "required": False},
        {"id": "recommendations", "label": "Recommendations", "type": "textarea", "required": False},
        {"id": "image_urls", "label": "Images", "type": "images", "required": False},
    ],
    "sections": ["Findings", "Impression", "Recommendations"],
}

DEFAULT_FORMS: Dict[ValueShape, Dict[str, Any]] = {
    ValueShape.TABULAR: TABULAR_ENTRY_FORM,
    ValueShape.NARRATIVE: NARRATIVE_ENTRY_FORM,
    ValueShape.GENERIC: GENERIC_ENTRY_FORM,
}


class DefaultTemplateService(TemplateService):
    """Category-default forms, optionally overridden per test code"""

    def __init__(self, overrides: Optional[Dict[str, Dict[str, Any]]] = None):
        self.overrides = overrides or {}

    async def get_entry_form_config(
        self,
        test_code: str,
        test_category: str,
        hospital_id: str,
    ) -> Dict[str, Any]:
        if test_code in self.overrides:
            form = copy.deepcopy(self.overrides[test_code])
            form.setdefault("template_code", test_code)
            return form

        kind = shape_kind_for_category(test_category)
        form = copy.deepcopy(DEFAULT_FORMS[kind])
        form["template_code"] = f"{test_category}_DEFAULT" if kind != ValueShape.GENERIC else None
        return form

    def required_fields(self, form: Dict[str, Any]) -> List[str]:
        return [field["id"] for field in form.get("fields", []) if field.get("required")]

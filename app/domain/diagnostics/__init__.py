# Diagnostics workboard domain module
from app.domain.diagnostics.models import (
    DiagnosticTest,
    DiagnosticOrder,
    DiagnosticResult,
    ResultStatus,
    Interpretation,
    Urgency,
    ValueShape,
)

__all__ = [
    "DiagnosticTest",
    "DiagnosticOrder",
    "DiagnosticResult",
    "ResultStatus",
    "Interpretation",
    "Urgency",
    "ValueShape",
]

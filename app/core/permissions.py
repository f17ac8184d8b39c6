from typing import Dict, Any, Optional, Iterable, FrozenSet, Mapping
from fastapi import Request
from pydantic import BaseModel

from app.core.security import verify_token, missing_claims
from app.core.tenant import get_tenant_id
from app.core.exceptions import AuthenticationError, AuthorizationError


class DiagnosticRoles:
    """Employee roles that work on the diagnostics workboard"""

    XRAY = "XRAY"
    MRI = "MRI"
    CT_SCAN = "CT_SCAN"
    ULTRASOUND = "ULTRASOUND"
    PATHOLOGY = "PATHOLOGY"
    LAB_TECHNICIAN = "LAB_TECHNICIAN"
    ECG = "ECG"
    ENDOSCOPY = "ENDOSCOPY"
    RADIOLOGIST = "RADIOLOGIST"


# Roles allowed to take each advisory workflow action
QC_ROLES: FrozenSet[str] = frozenset({DiagnosticRoles.LAB_TECHNICIAN, DiagnosticRoles.PATHOLOGY})
REVIEW_ROLES: FrozenSet[str] = frozenset({DiagnosticRoles.PATHOLOGY, DiagnosticRoles.RADIOLOGIST})
AMEND_ROLES: FrozenSet[str] = frozenset({DiagnosticRoles.PATHOLOGY})


DIAGNOSTIC_ROLE_CATEGORIES: Dict[str, FrozenSet[str]] = {
    DiagnosticRoles.XRAY: frozenset({"IMAGING"}),
    DiagnosticRoles.MRI: frozenset({"IMAGING"}),
    DiagnosticRoles.CT_SCAN: frozenset({"IMAGING"}),
    DiagnosticRoles.ULTRASOUND: frozenset({"IMAGING"}),
    DiagnosticRoles.PATHOLOGY: frozenset({"PATHOLOGY", "BLOOD_TEST", "URINE", "STOOL"}),
    DiagnosticRoles.LAB_TECHNICIAN: frozenset(
        {"BLOOD_TEST", "URINE", "STOOL", "HORMONES", "SEROLOGY", "MICROBIOLOGY"}
    ),
    DiagnosticRoles.ECG: frozenset({"CARDIAC"}),
    DiagnosticRoles.ENDOSCOPY: frozenset({"ENDOSCOPY"}),
}


class Caller(BaseModel):
    """Authenticated actor issuing a workboard request"""
    user_id: str
    role: str
    hospital_id: str


class CategoryAccessPolicy:
    """Maps a caller's role to the test categories it may act on.

    The table is injected so deployments (and tests) can swap it without
    touching the lifecycle engine. Unknown roles get an empty set.
    """

    def __init__(self, table: Optional[Mapping[str, Iterable[str]]] = None):
        source = DIAGNOSTIC_ROLE_CATEGORIES if table is None else table
        self._table: Dict[str, FrozenSet[str]] = {
            role: frozenset(categories) for role, categories in source.items()
        }

    def allowed_categories(self, role: str) -> FrozenSet[str]:
        return self._table.get(role, frozenset())

    def is_allowed(self, role: str, category: str) -> bool:
        return category in self.allowed_categories(role)

    def ensure_allowed(self, role: str, category: str, message: Optional[str] = None) -> None:
        if not self.is_allowed(role, category):
            raise AuthorizationError(
                message=message or f"Access denied. Your role does not have permission for category: {category}",
                details={"role": role, "category": category},
            )


default_category_policy = CategoryAccessPolicy()


def get_current_user(request: Request) -> Dict[str, Any]:
    """Extract and validate token payload from request"""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise AuthenticationError(message="Authentication required")

    token = auth_header.split(" ", 1)[1]
    payload = verify_token(token, "access")

    if not payload:
        raise AuthenticationError(message="Invalid or expired token")

    return payload


def get_caller(request: Request) -> Caller:
    """Resolve the workboard caller from the bearer token and tenant header"""
    payload = get_current_user(request)
    request.state.user = payload

    missing = missing_claims(payload)
    if missing:
        raise AuthenticationError(message="Token is missing workboard claims", details={"missing": missing})
    user_id, role, hospital_id = payload["sub"], payload["role"], payload["hospital_id"]

    tenant_id = get_tenant_id() or request.headers.get("X-Tenant-ID")
    if tenant_id and tenant_id != hospital_id:
        raise AuthorizationError(
            message="Token does not belong to the requested hospital",
            details={"tenant_id": tenant_id},
        )

    return Caller(user_id=str(user_id), role=str(role), hospital_id=str(hospital_id))

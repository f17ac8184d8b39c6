from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime

from app.domain.diagnostics.models import ResultStatus, Interpretation, Urgency, ValueShape
from app.domain.diagnostics.workflow import WorkflowOptions


# ==================== REQUESTS ====================

class ResultEntryUpdate(BaseModel):
    """Partial result entry. Only the fields sent are applied."""
    model_config = ConfigDict(extra="forbid")

    result_value: Optional[str] = None
    result_numeric: Optional[float] = None
    result_unit: Optional[str] = Field(None, max_length=32)
    component_results: Optional[List[Dict[str, Any]]] = None
    report_text: Optional[str] = None
    impressions: Optional[str] = None
    recommendations: Optional[str] = None
    technician_notes: Optional[str] = None
    attachments: Optional[List[Dict[str, Any]]] = None
    image_urls: Optional[List[str]] = None


class SubmitRequest(BaseModel):
    technician_notes: Optional[str] = None


class QCApproveRequest(BaseModel):
    qc_notes: Optional[str] = None


class QCRejectRequest(BaseModel):
    reason: Optional[str] = None


class ReviewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reviewer_notes: Optional[str] = None
    impressions: Optional[str] = None
    recommendations: Optional[str] = None
    interpretation: Optional[Interpretation] = None


class AmendRequest(BaseModel):
    """New clinical values plus the mandatory reason for the amendment"""
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = None
    result_value: Optional[str] = None
    result_numeric: Optional[float] = None
    report_text: Optional[str] = None
    impressions: Optional[str] = None
    recommendations: Optional[str] = None
    interpretation: Optional[Interpretation] = None


# ==================== PROJECTIONS ====================

class PatientInfo(BaseModel):
    id: str
    patient_number: Optional[str] = None
    name: Optional[str] = None
    age: Optional[int] = None
    gender: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    phone: Optional[str] = None
    blood_group: Optional[str] = None


class ReferringDoctor(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    specialization: Optional[str] = None


class OrderInfo(BaseModel):
    id: str
    order_number: str
    urgency: Urgency
    clinical_indication: Optional[str] = None
    special_instructions: Optional[str] = None
    referring_doctor: Optional[ReferringDoctor] = None


class TestInfo(BaseModel):
    id: str
    test_code: str
    test_name: str
    short_name: Optional[str] = None
    category: str
    sub_category: Optional[str] = None
    department: Optional[str] = None
    reference_ranges: List[Dict[str, Any]] = []
    unit: Optional[str] = None


class ResultDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    test_id: str
    status: ResultStatus
    value_shape: ValueShape
    version: int

    result_value: Optional[str] = None
    result_numeric: Optional[float] = None
    result_unit: Optional[str] = None
    component_results: List[Dict[str, Any]] = []
    report_text: Optional[str] = None
    impressions: Optional[str] = None
    recommendations: Optional[str] = None

    interpretation: Optional[Interpretation] = None
    is_critical: bool = False
    reference_min: Optional[float] = None
    reference_max: Optional[float] = None
    reference_text: Optional[str] = None

    technician_notes: Optional[str] = None
    reviewer_notes: Optional[str] = None
    qc_notes: Optional[str] = None
    qc_rejection_reason: Optional[str] = None
    amendment_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    attachments: List[Dict[str, Any]] = []
    image_urls: List[str] = []

    sample_collected_at: Optional[datetime] = None
    entered_by: Optional[str] = None
    entered_at: Optional[datetime] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    qc_approved_by: Optional[str] = None
    qc_approved_at: Optional[datetime] = None
    qc_rejected_by: Optional[str] = None
    qc_rejected_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    released_by: Optional[str] = None
    released_at: Optional[datetime] = None
    amended_by: Optional[str] = None
    amended_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    amendment_count: int = 0
    visible_to_patient: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("component_results", "attachments", "image_urls", mode="before")
    @classmethod
    def null_to_empty(cls, v):
        return v or []


class WorklistItem(BaseModel):
    id: str
    status: ResultStatus
    urgency: Urgency
    order_id: str
    order_number: str
    test_id: str
    test_code: str
    test_name: str
    category: str
    patient: PatientInfo
    is_critical: bool = False
    sample_collected_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class WorklistFilters(BaseModel):
    status: List[ResultStatus] = []
    urgency: Optional[Urgency] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class WorklistResponse(BaseModel):
    items: List[WorklistItem] = []
    total: int
    page: int
    limit: int
    pages: int
    category: Optional[str] = None
    filters: WorklistFilters


class EntryFormResponse(BaseModel):
    result: ResultDetail
    patient: PatientInfo
    order: OrderInfo
    test: TestInfo
    template: Dict[str, Any] = {}
    workflow: WorkflowOptions


class ResultActionResponse(BaseModel):
    result: ResultDetail
    message: str
    next_step: Optional[str] = None


class AmendmentEntry(BaseModel):
    result_value: Optional[str] = None
    result_numeric: Optional[float] = None
    report_text: Optional[str] = None
    impressions: Optional[str] = None
    recommendations: Optional[str] = None
    interpretation: Optional[Interpretation] = None
    amended_at: Optional[datetime] = None
    amended_by: Optional[str] = None


class AmendmentHistoryResponse(BaseModel):
    result_id: str
    status: ResultStatus
    amendments: List[AmendmentEntry] = []

"""
Diagnostics Domain Models

Database models for the result workboard:
- Test catalog entries (owned by the catalog service, joined here)
- Diagnostic orders with the patient identity snapshot (owned by ordering)
- Diagnostic results, one per ordered test, carrying the lifecycle state
"""

from sqlalchemy import (
    Column, String, Text, DateTime, Integer, ForeignKey, Float, Boolean, JSON, Enum, func
)
from sqlalchemy.orm import relationship
import uuid
import enum

from app.infrastructure.database import Base


def gen_uuid():
    return str(uuid.uuid4())


class ResultStatus(str, enum.Enum):
    """Lifecycle status of a diagnostic result"""
    PENDING_SAMPLE = "PENDING_SAMPLE"
    SAMPLE_COLLECTED = "SAMPLE_COLLECTED"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_QC = "PENDING_QC"
    QC_APPROVED = "QC_APPROVED"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    RELEASED = "RELEASED"
    AMENDED = "AMENDED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class Interpretation(str, enum.Enum):
    """Clinical interpretation of a numeric result"""
    NORMAL = "NORMAL"
    LOW = "LOW"
    HIGH = "HIGH"
    CRITICAL_LOW = "CRITICAL_LOW"
    CRITICAL_HIGH = "CRITICAL_HIGH"


class Urgency(str, enum.Enum):
    """Order urgency"""
    ROUTINE = "ROUTINE"
    URGENT = "URGENT"
    STAT = "STAT"


class ValueShape(str, enum.Enum):
    """How a result's value is captured, fixed by test category at creation"""
    TABULAR = "TABULAR"
    NARRATIVE = "NARRATIVE"
    GENERIC = "GENERIC"


class DiagnosticTest(Base):
    """Test catalog entry"""
    __tablename__ = "diagnostic_tests"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    hospital_id = Column(String(50), nullable=False, index=True)
    test_code = Column(String(64), nullable=False)
    test_name = Column(String(255), nullable=False)
    short_name = Column(String(64))
    category = Column(String(32), nullable=False, index=True)
    sub_category = Column(String(64))
    department = Column(String(64))
    reference_ranges = Column(JSON)  # List of range entries scoped by gender/age
    unit = Column(String(32))
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())


class DiagnosticOrder(Base):
    """Diagnostic order with a snapshot of the patient it was placed for"""
    __tablename__ = "diagnostic_orders"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    hospital_id = Column(String(50), nullable=False, index=True)
    order_number = Column(String(50), nullable=False, index=True)
    urgency = Column(Enum(Urgency), nullable=False, default=Urgency.ROUTINE)
    status = Column(String(32), nullable=False, default="CREATED")
    clinical_indication = Column(Text)
    special_instructions = Column(Text)

    # Referring clinician
    referring_doctor_id = Column(String(36))
    referring_doctor_name = Column(String(200))
    referring_doctor_specialization = Column(String(100))

    # Patient identity
    patient_id = Column(String(36), nullable=False, index=True)
    patient_number = Column(String(50))
    patient_name = Column(String(200))
    patient_age = Column(Integer)
    patient_gender = Column(String(20))
    patient_date_of_birth = Column(DateTime)
    patient_phone = Column(String(20))
    patient_blood_group = Column(String(10))

    created_at = Column(DateTime, default=func.now())

    results = relationship("DiagnosticResult", back_populates="order")


class DiagnosticResult(Base):
    """Result of one ordered test, driven through the workboard lifecycle"""
    __tablename__ = "diagnostic_results"

    id = Column(String(36), primary_key=True, default=gen_uuid)
    hospital_id = Column(String(50), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("diagnostic_orders.id"), nullable=False, index=True)
    test_id = Column(String(36), ForeignKey("diagnostic_tests.id"), nullable=False)

    status = Column(Enum(ResultStatus), nullable=False, default=ResultStatus.PENDING_SAMPLE, index=True)
    value_shape = Column(Enum(ValueShape), nullable=False)
    version = Column(Integer, nullable=False, default=1)

    # Tabular values
    result_value = Column(Text)
    result_numeric = Column(Float)
    result_unit = Column(String(32))
    component_results = Column(JSON)

    # Narrative values
    report_text = Column(Text)
    impressions = Column(Text)
    recommendations = Column(Text)

    # Derived clinical flags
    interpretation = Column(Enum(Interpretation))
    is_critical = Column(Boolean, nullable=False, default=False)

    # Reference context captured at entry time
    reference_min = Column(Float)
    reference_max = Column(Float)
    reference_text = Column(String(255))

    # Annotations
    technician_notes = Column(Text)
    reviewer_notes = Column(Text)
    qc_notes = Column(Text)
    qc_rejection_reason = Column(Text)
    amendment_reason = Column(Text)
    cancellation_reason = Column(Text)

    attachments = Column(JSON)
    image_urls = Column(JSON)

    # Actor / timestamp pairs
    sample_collected_at = Column(DateTime, index=True)
    entered_by = Column(String(36))
    entered_at = Column(DateTime)
    submitted_by = Column(String(36))
    submitted_at = Column(DateTime)
    qc_approved_by = Column(String(36))
    qc_approved_at = Column(DateTime)
    qc_rejected_by = Column(String(36))
    qc_rejected_at = Column(DateTime)
    reviewed_by = Column(String(36))
    reviewed_at = Column(DateTime)
    released_by = Column(String(36))
    released_at = Column(DateTime)
    amended_by = Column(String(36))
    amended_at = Column(DateTime)
    cancelled_by = Column(String(36))
    cancelled_at = Column(DateTime)

    amendment_history = Column(JSON)  # Append-only list of pre-amendment snapshots
    visible_to_patient = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    test = relationship("DiagnosticTest")
    order = relationship("DiagnosticOrder", back_populates="results")

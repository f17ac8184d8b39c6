"""Projections of workboard records into response schemas"""

from typing import Optional, List, Dict, Any

from app.domain.diagnostics.models import DiagnosticResult, DiagnosticOrder, DiagnosticTest
from app.api.v1.workboard.schemas import (
    ResultDetail,
    PatientInfo,
    OrderInfo,
    ReferringDoctor,
    TestInfo,
    WorklistItem,
    AmendmentEntry,
)


def _list(value: Optional[List[Any]]) -> List[Any]:
    return list(value) if value else []


def format_result(result: DiagnosticResult) -> ResultDetail:
    detail = ResultDetail.model_validate(result)
    detail.amendment_count = len(result.amendment_history or [])
    return detail


def format_patient(order: DiagnosticOrder) -> PatientInfo:
    return PatientInfo(
        id=order.patient_id,
        patient_number=order.patient_number,
        name=order.patient_name,
        age=order.patient_age,
        gender=order.patient_gender,
        date_of_birth=order.patient_date_of_birth,
        phone=order.patient_phone,
        blood_group=order.patient_blood_group,
    )


def format_order(order: DiagnosticOrder) -> OrderInfo:
    doctor = None
    if order.referring_doctor_id or order.referring_doctor_name:
        doctor = ReferringDoctor(
            id=order.referring_doctor_id,
            name=order.referring_doctor_name,
            specialization=order.referring_doctor_specialization,
        )

    return OrderInfo(
        id=order.id,
        order_number=order.order_number,
        urgency=order.urgency,
        clinical_indication=order.clinical_indication,
        special_instructions=order.special_instructions,
        referring_doctor=doctor,
    )


def format_test(test: DiagnosticTest) -> TestInfo:
    return TestInfo(
        id=test.id,
        test_code=test.test_code,
        test_name=test.test_name,
        short_name=test.short_name,
        category=test.category,
        sub_category=test.sub_category,
        department=test.department,
        reference_ranges=_list(test.reference_ranges),
        unit=test.unit,
    )


def format_worklist_item(result: DiagnosticResult) -> WorklistItem:
    return WorklistItem(
        id=result.id,
        status=result.status,
        urgency=result.order.urgency,
        order_id=result.order_id,
        order_number=result.order.order_number,
        test_id=result.test_id,
        test_code=result.test.test_code,
        test_name=result.test.test_name,
        category=result.test.category,
        patient=format_patient(result.order),
        is_critical=bool(result.is_critical),
        sample_collected_at=result.sample_collected_at,
        created_at=result.created_at,
    )


def format_amendments(history: Optional[List[Dict[str, Any]]]) -> List[AmendmentEntry]:
    return [AmendmentEntry.model_validate(entry) for entry in _list(history)]

from typing import Optional, List, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime, timezone
import logging
import math

from app.core.config import settings
from app.core.exceptions import NotFoundError, ValidationError, ConflictError, handle_external_service_error
from app.core.permissions import Caller, CategoryAccessPolicy, default_category_policy
from app.domain.diagnostics.models import DiagnosticResult, ResultStatus, Urgency
from app.domain.diagnostics.repository import (
    DiagnosticResultRepository,
    DiagnosticTestRepository,
    DiagnosticOrderRepository,
)
from app.domain.diagnostics.interpretation import (
    select_reference_range,
    compute_interpretation,
    is_critical_interpretation,
)
from app.domain.diagnostics.shapes import get_shape, shape_kind_for_category
from app.domain.diagnostics.templates import TemplateService, DefaultTemplateService
from app.domain.diagnostics.workflow import (
    WorkflowAction,
    ACTIONABLE_STATUSES,
    TERMINAL_STATUSES,
    allowed_from,
    can_perform,
    target_of,
    get_workflow_options,
)
from app.domain.diagnostics.formatters import (
    format_result,
    format_patient,
    format_order,
    format_test,
    format_worklist_item,
    format_amendments,
)
from app.api.v1.workboard.schemas import (
    ResultEntryUpdate,
    ReviewRequest,
    AmendRequest,
    WorklistResponse,
    WorklistFilters,
    EntryFormResponse,
    ResultActionResponse,
    ResultDetail,
    AmendmentHistoryResponse,
)
from app.infrastructure.notifications import ResultReleaseNotifier, NullResultReleaseNotifier

logger = logging.getLogger(__name__)

AMENDABLE_FIELDS = ("result_value", "result_numeric", "report_text", "impressions", "recommendations")


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class WorkboardService:
    """Service layer for the diagnostic result lifecycle.

    Every mutating operation follows the same order of checks: load the
    result within the caller's hospital, check the test category against the
    caller's role, validate the input, check the status precondition, then
    issue one conditional write. Nothing is written until all checks pass.
    """

    def __init__(
        self,
        db: AsyncSession,
        policy: Optional[CategoryAccessPolicy] = None,
        template_service: Optional[TemplateService] = None,
        notifier: Optional[ResultReleaseNotifier] = None,
    ):
        self.db = db
        self.result_repo = DiagnosticResultRepository(db)
        self.test_repo = DiagnosticTestRepository(db)
        self.order_repo = DiagnosticOrderRepository(db)
        self.policy = policy or default_category_policy
        self.template_service = template_service or DefaultTemplateService()
        self.notifier = notifier or NullResultReleaseNotifier()

    # ==================== HELPERS ====================

    async def _load_result(self, result_id: str, hospital_id: str) -> DiagnosticResult:
        result = await self.result_repo.get_by_id(result_id, hospital_id)
        if not result:
            raise NotFoundError(message="Result not found", details={"result_id": result_id})
        return result

    async def _load_authorized(self, result_id: str, caller: Caller) -> DiagnosticResult:
        result = await self._load_result(result_id, caller.hospital_id)
        self.policy.ensure_allowed(
            caller.role,
            result.test.category,
            message="Access denied for this test category",
        )
        return result

    async def _write(
        self,
        result: DiagnosticResult,
        action: WorkflowAction,
        values: Dict[str, Any],
        actor: str,
        expected_version: Optional[int] = None,
    ) -> DiagnosticResult:
        previous = ResultStatus(result.status)
        updated = await self.result_repo.conditional_update(
            result.id,
            result.hospital_id,
            allowed_from(action),
            values,
            expected_version=expected_version,
        )
        if not updated:
            raise ConflictError(
                message="Result is no longer in the expected state",
                details={"result_id": result.id, "action": action.value},
            )

        refreshed = await self._load_result(result.id, result.hospital_id)
        logger.info(
            f"Result {refreshed.id} {previous.value} -> {ResultStatus(refreshed.status).value} "
            f"({action.value} by {actor})"
        )
        return refreshed

    def _interpretation_values(self, result: DiagnosticResult, numeric: Optional[float]) -> Dict[str, Any]:
        """Derived clinical fields for a newly entered numeric value"""
        if numeric is None:
            return {"interpretation": None, "is_critical": False}

        order = result.order
        selected = select_reference_range(result.test.reference_ranges, order.patient_gender, order.patient_age)
        if selected is None:
            return {}

        interpretation = compute_interpretation(numeric, selected)
        return {
            "interpretation": interpretation,
            "is_critical": is_critical_interpretation(interpretation),
            "reference_min": selected.min,
            "reference_max": selected.max,
            "reference_text": selected.describe(result.test.unit),
        }

    def _ensure_shape_accepts(self, result: DiagnosticResult, fields: List[str]) -> None:
        shape = get_shape(result.value_shape)
        foreign = shape.foreign_fields(fields)
        if foreign:
            raise ValidationError(
                message=f"Fields not accepted for {shape.kind.value.lower()} results: {', '.join(foreign)}",
                details={"fields": foreign, "value_shape": shape.kind.value},
            )

    def _ensure_interpretation_supported(self, result: DiagnosticResult) -> None:
        shape = get_shape(result.value_shape)
        if not shape.supports_interpretation:
            raise ValidationError(
                message="Interpretation cannot be set on narrative results",
                details={"value_shape": shape.kind.value},
            )

    # ==================== WORKLIST ====================

    async def get_worklist(
        self,
        caller: Caller,
        category: Optional[str] = None,
        status: Optional[List[ResultStatus]] = None,
        urgency: Optional[Urgency] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> WorklistResponse:
        """Get the caller's actionable results, most urgent first"""
        if category:
            self.policy.ensure_allowed(caller.role, category)
            categories = {category}
        else:
            categories = self.policy.allowed_categories(caller.role)

        if limit is None:
            limit = settings.WORKLIST_DEFAULT_PAGE_SIZE
        if page < 1:
            raise ValidationError(message="Page must be at least 1", details={"page": page})
        if limit < 1 or limit > settings.WORKLIST_MAX_PAGE_SIZE:
            raise ValidationError(
                message=f"Limit must be between 1 and {settings.WORKLIST_MAX_PAGE_SIZE}",
                details={"limit": limit},
            )

        statuses = list(status) if status else sorted(ACTIONABLE_STATUSES, key=lambda s: s.value)
        date_from, date_to = _naive_utc(date_from), _naive_utc(date_to)
        query = dict(
            hospital_id=caller.hospital_id,
            categories=categories,
            statuses=statuses,
            urgency=urgency,
            date_from=date_from,
            date_to=date_to,
        )

        total = await self.result_repo.count_worklist(**query)
        results = await self.result_repo.get_worklist(**query, skip=(page - 1) * limit, limit=limit)

        return WorklistResponse(
            items=[format_worklist_item(r) for r in results],
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
            category=category,
            filters=WorklistFilters(status=statuses, urgency=urgency, date_from=date_from, date_to=date_to),
        )

    # ==================== ENTRY FORM ====================

    async def get_entry_form(self, result_id: str, caller: Caller) -> EntryFormResponse:
        """Everything the entry UI needs for one result"""
        result = await self._load_authorized(result_id, caller)

        try:
            template = await self.template_service.get_entry_form_config(
                test_code=result.test.test_code,
                test_category=result.test.category,
                hospital_id=caller.hospital_id,
            )
        except (ConnectionError, TimeoutError) as e:
            raise handle_external_service_error(e, "template_service", "get_entry_form_config")

        return EntryFormResponse(
            result=format_result(result),
            patient=format_patient(result.order),
            order=format_order(result.order),
            test=format_test(result.test),
            template=template or {},
            workflow=get_workflow_options(result.status, caller.role),
        )

    # ==================== RESULT ENTRY ====================

    async def save_entry(self, result_id: str, data: ResultEntryUpdate, caller: Caller) -> ResultActionResponse:
        """Save a draft or partial result entry"""
        result = await self._load_authorized(result_id, caller)

        fields = data.model_dump(exclude_unset=True)
        self._ensure_shape_accepts(result, list(fields))

        if not can_perform(WorkflowAction.SAVE_ENTRY, result.status):
            raise ValidationError(
                message=f"Cannot enter results. Current status: {ResultStatus(result.status).value}",
                details={"status": ResultStatus(result.status).value},
            )

        values = dict(fields)
        if "result_numeric" in fields:
            values.update(self._interpretation_values(result, fields["result_numeric"]))
        values.update(
            status=target_of(WorkflowAction.SAVE_ENTRY),
            entered_by=caller.user_id,
            entered_at=datetime.utcnow(),
        )

        result = await self._write(result, WorkflowAction.SAVE_ENTRY, values, caller.user_id)
        return ResultActionResponse(
            result=format_result(result),
            message="Result saved successfully",
            next_step="Submit for QC",
        )

    async def submit_for_review(
        self,
        result_id: str,
        caller: Caller,
        technician_notes: Optional[str] = None,
    ) -> ResultActionResponse:
        """Submit an entered result for QC"""
        result = await self._load_authorized(result_id, caller)

        if not can_perform(WorkflowAction.SUBMIT, result.status):
            raise ConflictError(
                message=f"Cannot submit result. Current status: {ResultStatus(result.status).value}",
                details={"status": ResultStatus(result.status).value},
            )

        missing = get_shape(result.value_shape).missing_for_submission(result)
        if missing:
            raise ValidationError(message=f"Cannot submit: {', '.join(missing)}", details={"missing": missing})

        values = {
            "status": target_of(WorkflowAction.SUBMIT),
            "submitted_by": caller.user_id,
            "submitted_at": datetime.utcnow(),
        }
        if technician_notes:
            values["technician_notes"] = technician_notes

        result = await self._write(
            result, WorkflowAction.SUBMIT, values, caller.user_id, expected_version=result.version
        )
        return ResultActionResponse(
            result=format_result(result),
            message="Result submitted for QC review",
            next_step="Approve QC",
        )

    # ==================== QUALITY CONTROL ====================

    async def approve_qc(self, result_id: str, caller: Caller, qc_notes: Optional[str] = None) -> ResultActionResponse:
        result = await self._load_authorized(result_id, caller)

        if not can_perform(WorkflowAction.QC_APPROVE, result.status):
            raise ConflictError(
                message="Result is not pending QC",
                details={"status": ResultStatus(result.status).value},
            )

        values = {
            "status": target_of(WorkflowAction.QC_APPROVE),
            "qc_approved_by": caller.user_id,
            "qc_approved_at": datetime.utcnow(),
        }
        if qc_notes is not None:
            values["qc_notes"] = qc_notes

        result = await self._write(result, WorkflowAction.QC_APPROVE, values, caller.user_id)
        return ResultActionResponse(
            result=format_result(result),
            message="QC approved. Awaiting specialist review.",
            next_step="Review & Approve",
        )

    async def reject_qc(self, result_id: str, caller: Caller, reason: Optional[str]) -> ResultActionResponse:
        """Return a result to the technician; entered values are kept"""
        result = await self._load_authorized(result_id, caller)

        if not reason or not reason.strip():
            raise ValidationError(message="Rejection reason is required")

        if not can_perform(WorkflowAction.QC_REJECT, result.status):
            raise ConflictError(
                message="Result is not pending QC",
                details={"status": ResultStatus(result.status).value},
            )

        values = {
            "status": target_of(WorkflowAction.QC_REJECT),
            "qc_rejected_by": caller.user_id,
            "qc_rejected_at": datetime.utcnow(),
            "qc_rejection_reason": reason.strip(),
        }

        result = await self._write(result, WorkflowAction.QC_REJECT, values, caller.user_id)
        return ResultActionResponse(
            result=format_result(result),
            message="Result returned to technician for correction",
            next_step="Submit for QC",
        )

    # ==================== REVIEW & RELEASE ====================

    async def review_and_approve(self, result_id: str, data: ReviewRequest, caller: Caller) -> ResultActionResponse:
        result = await self._load_authorized(result_id, caller)

        if data.interpretation is not None:
            self._ensure_interpretation_supported(result)

        if not can_perform(WorkflowAction.REVIEW_APPROVE, result.status):
            raise ConflictError(
                message="Result is not pending review",
                details={"status": ResultStatus(result.status).value},
            )

        values = {
            "status": target_of(WorkflowAction.REVIEW_APPROVE),
            "reviewed_by": caller.user_id,
            "reviewed_at": datetime.utcnow(),
        }
        for field in ("reviewer_notes", "impressions", "recommendations"):
            value = getattr(data, field)
            if value is not None:
                values[field] = value
        if data.interpretation is not None:
            values["interpretation"] = data.interpretation
            values["is_critical"] = is_critical_interpretation(data.interpretation)

        result = await self._write(result, WorkflowAction.REVIEW_APPROVE, values, caller.user_id)
        return ResultActionResponse(
            result=format_result(result),
            message="Result reviewed and approved. Ready for release.",
            next_step="Release to Patient",
        )

    async def release(self, result_id: str, caller: Caller) -> ResultActionResponse:
        """Release an approved result to the patient"""
        result = await self._load_authorized(result_id, caller)

        if not can_perform(WorkflowAction.RELEASE, result.status):
            raise ConflictError(
                message="Result must be approved before release",
                details={"status": ResultStatus(result.status).value},
            )

        values = {
            "status": target_of(WorkflowAction.RELEASE),
            "visible_to_patient": True,
            "released_by": caller.user_id,
            "released_at": datetime.utcnow(),
        }

        result = await self._write(result, WorkflowAction.RELEASE, values, caller.user_id)
        self._signal_release(result)

        return ResultActionResponse(
            result=format_result(result),
            message="Result released to patient",
        )

    def _signal_release(self, result: DiagnosticResult) -> None:
        payload = {
            "result_id": result.id,
            "hospital_id": result.hospital_id,
            "order_id": result.order_id,
            "order_number": result.order.order_number,
            "patient_id": result.order.patient_id,
            "patient_phone": result.order.patient_phone,
            "test_code": result.test.test_code,
            "test_name": result.test.test_name,
            "is_critical": bool(result.is_critical),
            "released_at": result.released_at.isoformat() if result.released_at else None,
        }
        try:
            self.notifier.notify_result_released(payload)
        except Exception as e:
            logger.error(f"Failed to queue release notification for result {result.id}: {e}")

    # ==================== AMENDMENT ====================

    async def amend(self, result_id: str, data: AmendRequest, caller: Caller) -> ResultActionResponse:
        """Amend a released result, keeping the prior values in its history"""
        result = await self._load_authorized(result_id, caller)

        fields = data.model_dump(exclude_unset=True)
        reason = fields.pop("reason", None)
        interpretation = fields.pop("interpretation", None)

        if not reason or not reason.strip():
            raise ValidationError(message="Amendment reason is required")
        self._ensure_shape_accepts(result, list(fields))
        if interpretation is not None:
            self._ensure_interpretation_supported(result)

        if not can_perform(WorkflowAction.AMEND, result.status):
            raise ConflictError(
                message="Only released results can be amended",
                details={"status": ResultStatus(result.status).value},
            )

        now = datetime.utcnow()
        snapshot = {
            "result_value": result.result_value,
            "result_numeric": result.result_numeric,
            "report_text": result.report_text,
            "impressions": result.impressions,
            "recommendations": result.recommendations,
            "interpretation": result.interpretation.value if result.interpretation else None,
            "amended_at": now.isoformat(),
            "amended_by": caller.user_id,
        }

        values = {field: value for field, value in fields.items() if field in AMENDABLE_FIELDS}
        if interpretation is not None:
            values["interpretation"] = interpretation
            values["is_critical"] = is_critical_interpretation(interpretation)
        elif "result_numeric" in fields:
            values.update(self._interpretation_values(result, fields["result_numeric"]))

        values.update(
            status=target_of(WorkflowAction.AMEND),
            amendment_reason=reason.strip(),
            amended_by=caller.user_id,
            amended_at=now,
            amendment_history=list(result.amendment_history or []) + [snapshot],
        )

        result = await self._write(
            result, WorkflowAction.AMEND, values, caller.user_id, expected_version=result.version
        )
        return ResultActionResponse(
            result=format_result(result),
            message="Result amended successfully",
        )

    async def get_amendment_history(self, result_id: str, caller: Caller) -> AmendmentHistoryResponse:
        result = await self._load_authorized(result_id, caller)
        return AmendmentHistoryResponse(
            result_id=result.id,
            status=result.status,
            amendments=format_amendments(result.amendment_history),
        )

    # ==================== ORDER HOOKS ====================

    async def create_result(
        self,
        hospital_id: str,
        order_id: str,
        test_id: str,
        sample_collected_at: Optional[datetime] = None,
    ) -> ResultDetail:
        """Create the result row for one ordered test"""
        order = await self.order_repo.get_by_id(order_id, hospital_id)
        if not order:
            raise NotFoundError(message="Order not found", details={"order_id": order_id})

        test = await self.test_repo.get_by_id(test_id)
        if not test:
            raise NotFoundError(message="Test not found", details={"test_id": test_id})

        status = ResultStatus.SAMPLE_COLLECTED if sample_collected_at else ResultStatus.PENDING_SAMPLE
        result = await self.result_repo.create({
            "hospital_id": hospital_id,
            "order_id": order.id,
            "test_id": test.id,
            "status": status,
            "value_shape": shape_kind_for_category(test.category),
            "result_unit": test.unit,
            "sample_collected_at": sample_collected_at,
            "amendment_history": [],
        })

        logger.info(f"Result {result.id} created for order {order.order_number} in status {status.value}")
        return format_result(result)

    async def record_sample_collection(
        self,
        result_id: str,
        hospital_id: str,
        collected_by: str,
        collected_at: Optional[datetime] = None,
    ) -> ResultDetail:
        result = await self._load_result(result_id, hospital_id)

        if not can_perform(WorkflowAction.RECORD_SAMPLE, result.status):
            raise ConflictError(
                message="Sample already recorded for this result",
                details={"status": ResultStatus(result.status).value},
            )

        values = {
            "status": target_of(WorkflowAction.RECORD_SAMPLE),
            "sample_collected_at": collected_at or datetime.utcnow(),
        }

        result = await self._write(result, WorkflowAction.RECORD_SAMPLE, values, collected_by)
        return format_result(result)

    async def cancel_order_results(
        self,
        order_id: str,
        hospital_id: str,
        cancelled_by: str,
        reason: str,
        terminal_status: ResultStatus = ResultStatus.CANCELLED,
    ) -> int:
        """Move every active result of an order to CANCELLED or REJECTED"""
        if terminal_status not in TERMINAL_STATUSES:
            raise ValidationError(
                message=f"Results can only be closed as {', '.join(sorted(s.value for s in TERMINAL_STATUSES))}",
                details={"status": str(terminal_status)},
            )
        if not reason or not reason.strip():
            raise ValidationError(message="Cancellation reason is required")

        order = await self.order_repo.get_by_id(order_id, hospital_id)
        if not order:
            raise NotFoundError(message="Order not found", details={"order_id": order_id})

        count = await self.result_repo.cancel_for_order(
            order_id,
            hospital_id,
            allowed_from(WorkflowAction.CANCEL),
            {
                "status": terminal_status,
                "cancellation_reason": reason.strip(),
                "cancelled_by": cancelled_by,
                "cancelled_at": datetime.utcnow(),
            },
        )

        logger.info(f"Order {order.order_number}: {count} result(s) moved to {terminal_status.value} by {cancelled_by}")
        return count

from typing import Optional, List
from datetime import datetime
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_caller, get_workboard_service
from app.core.permissions import Caller
from app.domain.diagnostics.models import ResultStatus, Urgency
from app.domain.diagnostics.service import WorkboardService
from app.api.v1.workboard.schemas import (
    ResultEntryUpdate,
    SubmitRequest,
    QCApproveRequest,
    QCRejectRequest,
    ReviewRequest,
    AmendRequest,
    WorklistResponse,
    EntryFormResponse,
    ResultActionResponse,
    AmendmentHistoryResponse,
)

router = APIRouter(tags=["Workboard"])


@router.get("/worklist", response_model=WorklistResponse)
async def get_worklist(
    category: Optional[str] = Query(None, description="Test category, defaults to every category the role may see"),
    status: Optional[List[ResultStatus]] = Query(None),
    urgency: Optional[Urgency] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.get_worklist(
        caller,
        category=category,
        status=status,
        urgency=urgency,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@router.get("/results/{result_id}/entry-form", response_model=EntryFormResponse)
async def get_entry_form(
    result_id: str,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.get_entry_form(result_id, caller)


@router.put("/results/{result_id}", response_model=ResultActionResponse)
async def save_result_entry(
    result_id: str,
    entry_in: ResultEntryUpdate,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.save_entry(result_id, entry_in, caller)


@router.post("/results/{result_id}/submit", response_model=ResultActionResponse)
async def submit_result(
    result_id: str,
    submit_in: Optional[SubmitRequest] = None,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    notes = submit_in.technician_notes if submit_in else None
    return await service.submit_for_review(result_id, caller, technician_notes=notes)


@router.post("/results/{result_id}/qc-approve", response_model=ResultActionResponse)
async def approve_qc(
    result_id: str,
    approve_in: Optional[QCApproveRequest] = None,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    notes = approve_in.qc_notes if approve_in else None
    return await service.approve_qc(result_id, caller, qc_notes=notes)


@router.post("/results/{result_id}/qc-reject", response_model=ResultActionResponse)
async def reject_qc(
    result_id: str,
    reject_in: Optional[QCRejectRequest] = None,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    reason = reject_in.reason if reject_in else None
    return await service.reject_qc(result_id, caller, reason)


@router.post("/results/{result_id}/review-approve", response_model=ResultActionResponse)
async def review_and_approve(
    result_id: str,
    review_in: Optional[ReviewRequest] = None,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.review_and_approve(result_id, review_in or ReviewRequest(), caller)


@router.post("/results/{result_id}/release", response_model=ResultActionResponse)
async def release_result(
    result_id: str,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.release(result_id, caller)


@router.post("/results/{result_id}/amend", response_model=ResultActionResponse)
async def amend_result(
    result_id: str,
    amend_in: AmendRequest,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.amend(result_id, amend_in, caller)


@router.get("/results/{result_id}/amendments", response_model=AmendmentHistoryResponse)
async def get_amendments(
    result_id: str,
    caller: Caller = Depends(get_current_caller),
    service: WorkboardService = Depends(get_workboard_service),
):
    return await service.get_amendment_history(result_id, caller)

"""
Result lifecycle state machine

The transition graph is data: each workflow action names the statuses it may
start from and the status it moves the result to. The lifecycle service
reads these tables for its preconditions and the conditional write, and the
entry form reads them to tell the UI which actions are on offer.
"""

from typing import Dict, FrozenSet, List, Optional
from pydantic import BaseModel
import enum

from app.domain.diagnostics.models import ResultStatus
from app.core.permissions import QC_ROLES, REVIEW_ROLES, AMEND_ROLES


class WorkflowAction(str, enum.Enum):
    RECORD_SAMPLE = "RECORD_SAMPLE"
    SAVE_ENTRY = "SAVE_ENTRY"
    SUBMIT = "SUBMIT"
    QC_APPROVE = "QC_APPROVE"
    QC_REJECT = "QC_REJECT"
    REVIEW_APPROVE = "REVIEW_APPROVE"
    RELEASE = "RELEASE"
    AMEND = "AMEND"
    CANCEL = "CANCEL"


ACTIVE_STATUSES: FrozenSet[ResultStatus] = frozenset({
    ResultStatus.PENDING_SAMPLE,
    ResultStatus.SAMPLE_COLLECTED,
    ResultStatus.IN_PROGRESS,
    ResultStatus.PENDING_QC,
    ResultStatus.QC_APPROVED,
    ResultStatus.PENDING_REVIEW,
    ResultStatus.APPROVED,
})

TERMINAL_STATUSES: FrozenSet[ResultStatus] = frozenset({
    ResultStatus.CANCELLED,
    ResultStatus.REJECTED,
})

# Statuses shown on the worklist when the caller does not filter
ACTIONABLE_STATUSES: FrozenSet[ResultStatus] = frozenset({
    ResultStatus.SAMPLE_COLLECTED,
    ResultStatus.IN_PROGRESS,
    ResultStatus.PENDING_QC,
})

ENTRY_STATUSES: FrozenSet[ResultStatus] = frozenset({
    ResultStatus.SAMPLE_COLLECTED,
    ResultStatus.IN_PROGRESS,
})

REVIEW_STATUSES: FrozenSet[ResultStatus] = frozenset({
    ResultStatus.PENDING_REVIEW,
    ResultStatus.QC_APPROVED,
})

PRECONDITIONS: Dict[WorkflowAction, FrozenSet[ResultStatus]] = {
    WorkflowAction.RECORD_SAMPLE: frozenset({ResultStatus.PENDING_SAMPLE}),
    WorkflowAction.SAVE_ENTRY: ENTRY_STATUSES,
    WorkflowAction.SUBMIT: ENTRY_STATUSES,
    WorkflowAction.QC_APPROVE: frozenset({ResultStatus.PENDING_QC}),
    WorkflowAction.QC_REJECT: frozenset({ResultStatus.PENDING_QC}),
    WorkflowAction.REVIEW_APPROVE: REVIEW_STATUSES,
    WorkflowAction.RELEASE: frozenset({ResultStatus.APPROVED}),
    WorkflowAction.AMEND: frozenset({ResultStatus.RELEASED}),
    WorkflowAction.CANCEL: ACTIVE_STATUSES,
}

TARGETS: Dict[WorkflowAction, ResultStatus] = {
    WorkflowAction.RECORD_SAMPLE: ResultStatus.SAMPLE_COLLECTED,
    WorkflowAction.SAVE_ENTRY: ResultStatus.IN_PROGRESS,
    WorkflowAction.SUBMIT: ResultStatus.PENDING_QC,
    WorkflowAction.QC_APPROVE: ResultStatus.PENDING_REVIEW,
    WorkflowAction.QC_REJECT: ResultStatus.IN_PROGRESS,
    WorkflowAction.REVIEW_APPROVE: ResultStatus.APPROVED,
    WorkflowAction.RELEASE: ResultStatus.RELEASED,
    WorkflowAction.AMEND: ResultStatus.AMENDED,
}


def allowed_from(action: WorkflowAction) -> FrozenSet[ResultStatus]:
    return PRECONDITIONS[action]


def can_perform(action: WorkflowAction, current: ResultStatus) -> bool:
    return ResultStatus(current) in PRECONDITIONS[action]


def target_of(action: WorkflowAction) -> ResultStatus:
    return TARGETS[action]


def next_statuses(current: ResultStatus) -> FrozenSet[ResultStatus]:
    """Every status reachable in one step from ``current``"""
    current = ResultStatus(current)
    reachable = {
        TARGETS[action]
        for action, sources in PRECONDITIONS.items()
        if action in TARGETS and current in sources
    }
    if current in ACTIVE_STATUSES:
        reachable |= TERMINAL_STATUSES
    return frozenset(reachable)


class WorkflowOptions(BaseModel):
    """Advisory description of what the UI may offer for a result"""
    can_edit: bool = False
    can_submit: bool = False
    can_approve_qc: bool = False
    can_reject_qc: bool = False
    can_review: bool = False
    can_release: bool = False
    can_amend: bool = False
    next_actions: List[str] = []


def get_workflow_options(status: ResultStatus, role: Optional[str]) -> WorkflowOptions:
    options = WorkflowOptions()
    status = ResultStatus(status)

    if status in ENTRY_STATUSES:
        options.can_edit = True
        options.can_submit = True
        options.next_actions = ["Save Draft", "Submit for QC"]

    elif status == ResultStatus.PENDING_QC:
        options.can_approve_qc = role in QC_ROLES
        options.can_reject_qc = role in QC_ROLES
        options.next_actions = ["Approve QC", "Reject (Return to Technician)"]

    elif status in REVIEW_STATUSES:
        options.can_review = role in REVIEW_ROLES
        options.next_actions = ["Review & Approve"]

    elif status == ResultStatus.APPROVED:
        options.can_release = True
        options.next_actions = ["Release to Patient"]

    elif status == ResultStatus.RELEASED:
        options.can_amend = role in AMEND_ROLES
        options.next_actions = ["Amend Report"] if options.can_amend else []

    return options

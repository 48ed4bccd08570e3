"""Stage activation: decide whether the next approval stage opens.

``activate_next_stage`` is re-derived from the ledger each time it runs, so
calling it twice on the same state opens nothing the second time. It never
skips a stage: when a stage resolves to nobody the pass stops there and the
workflow is reported as stalled until an operator fixes the rules or the
user directory.
"""
import logging
from dataclasses import dataclass, field
from typing import Collection, Optional, Sequence

from approval_engine import models
from approval_engine.ledger import ApprovalLedger
from approval_engine.resolver import resolve_approvers
from approval_engine.workflow import WorkflowStage

logger = logging.getLogger(__name__)


@dataclass
class ActivationResult:
    opened: list[models.ApprovalRecord] = field(default_factory=list)
    opened_stage: Optional[int] = None
    stalled_stage: Optional[int] = None


@dataclass(frozen=True)
class WorkflowHealth:
    expense_id: int
    status: models.ExpenseStatus
    total_stages: int
    current_stage: Optional[int]
    stalled: bool
    stalled_stage: Optional[int] = None
    reason: Optional[str] = None


def _next_unstarted(stages: Sequence[WorkflowStage], ledger: ApprovalLedger) -> Optional[WorkflowStage]:
    """First stage without records, provided every earlier stage is complete."""
    for stage in stages:
        if not ledger.has_stage(stage.order):
            return stage
        if not ledger.is_stage_complete(stage.order):
            return None
    return None


def activate_next_stage(
    stages: Sequence[WorkflowStage],
    ledger: ApprovalLedger,
    submitter_id: int,
    directory: Collection[int],
) -> ActivationResult:
    if ledger.has_rejection():
        return ActivationResult()

    stage = _next_unstarted(stages, ledger)
    if stage is None:
        return ActivationResult()

    approvers = resolve_approvers(stage.approver_ids, submitter_id, directory, ledger)
    if not approvers:
        logger.warning(
            "Expense %s stalled: stage %s has no eligible approvers (candidates %s)",
            ledger.expense_id, stage.order, sorted(stage.approver_ids),
        )
        return ActivationResult(stalled_stage=stage.order)

    opened = []
    for approver_id in approvers:
        record = models.ApprovalRecord(
            expense_id=ledger.expense_id,
            approver_id=approver_id,
            sequence_order=stage.order,
            status=models.ApprovalStatus.pending,
        )
        ledger.append(record)
        opened.append(record)
    logger.info("Expense %s: opened stage %s for approvers %s", ledger.expense_id, stage.order, list(approvers))
    return ActivationResult(opened=opened, opened_stage=stage.order)


def workflow_health(
    expense: models.Expense,
    ledger: ApprovalLedger,
    stages: Sequence[WorkflowStage],
    directory: Collection[int],
) -> WorkflowHealth:
    """Operator view of a workflow; a pending expense nobody can act on is stalled.

    ``stalled_stage`` is only set when the next stage really resolves to
    nobody. A stage that still has eligible approvers but was never opened
    is reported as ready to open with a resume.
    """
    pending = ledger.pending()
    current_stage = min((r.sequence_order for r in pending), default=None)
    stalled = expense.status == models.ExpenseStatus.pending and not pending

    stalled_stage = None
    reason = None
    if stalled:
        stage = _next_unstarted(stages, ledger)
        if not stages:
            reason = "no approval rules and no managers or admins to fall back on"
        elif stage is None:
            reason = "no open stage and no remaining stage to open"
        elif resolve_approvers(stage.approver_ids, expense.submitter_id, directory, ledger):
            reason = f"stage {stage.order} has eligible approvers but was never opened; resume the workflow"
        else:
            stalled_stage = stage.order
            reason = f"stage {stage.order} has no eligible approvers"

    return WorkflowHealth(
        expense_id=expense.id,
        status=expense.status,
        total_stages=len(stages),
        current_stage=current_stage,
        stalled=stalled,
        stalled_stage=stalled_stage,
        reason=reason,
    )

"""Transactional entry points of the approval workflow.

``submit_expense`` starts a workflow and ``record_decision`` applies one
approve/reject action. Both lock the expense row and its approval records,
re-derive stages from the company's current rules, open the next stage when
allowed, re-evaluate the expense status and emit notification and audit
events, all in one transaction.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from approval_engine import events, models
from approval_engine.activation import ActivationResult, WorkflowHealth, activate_next_stage, workflow_health
from approval_engine.exceptions import ConflictError, NotFoundError, ValidationError
from approval_engine.ledger import ApprovalLedger
from approval_engine.outcome import evaluate
from approval_engine.resolver import company_directory, fallback_approvers
from approval_engine.rules import Rule, load_company_rules
from approval_engine.workflow import WorkflowStage, build_stages

logger = logging.getLogger(__name__)

DECISIONS = (models.ApprovalStatus.approved, models.ApprovalStatus.rejected)


def company_workflow(db: Session, company_id: int) -> tuple[list[Rule], tuple[WorkflowStage, ...]]:
    rules = load_company_rules(db, company_id)
    return rules, build_stages(rules, fallback_approvers(db, company_id))


def _lock_expense(db: Session, expense_id: int) -> models.Expense:
    """Take the expense's write lock before anything reads its ledger.

    SQLite ignores FOR UPDATE, so the lock is an UPDATE on the expense row:
    it holds the database write lock on SQLite and the row lock elsewhere
    until the transaction ends. A second decision on the same expense waits
    here and then reads the first one's committed records.
    """
    touched = db.execute(
        update(models.Expense)
        .where(models.Expense.id == expense_id)
        .values(updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    ).rowcount
    if not touched:
        raise NotFoundError("Expense not found")
    return (
        db.query(models.Expense)
        .filter(models.Expense.id == expense_id)
        .populate_existing()
        .with_for_update()
        .one()
    )


def _lock_ledger(db: Session, expense_id: int) -> ApprovalLedger:
    records = (
        db.query(models.ApprovalRecord)
        .filter(models.ApprovalRecord.expense_id == expense_id)
        .populate_existing()
        .with_for_update()
        .all()
    )
    return ApprovalLedger(expense_id, records)


def load_ledger(db: Session, expense_id: int) -> ApprovalLedger:
    records = db.query(models.ApprovalRecord).filter(models.ApprovalRecord.expense_id == expense_id).all()
    return ApprovalLedger(expense_id, records)


def advance_workflow(db: Session, expense: models.Expense, ledger: ApprovalLedger) -> ActivationResult:
    """Open the next stage if allowed, then settle the expense status.

    Must run inside the caller's transaction with the expense locked. The
    stage opens before the status is evaluated, but its approvers are only
    asked once the expense is known to still be pending.
    """
    rules, stages = company_workflow(db, expense.company_id)
    directory = company_directory(db, expense.company_id)

    result = activate_next_stage(stages, ledger, expense.submitter_id, directory)
    db.add_all(result.opened)
    db.flush()

    status = evaluate(rules, ledger)
    if status != expense.status:
        logger.info("Expense %s: %s -> %s", expense.id, expense.status.value, status.value)
        expense.status = status
        events.announce_outcome(db, expense)
    if expense.status == models.ExpenseStatus.pending:
        for record in result.opened:
            events.request_approval(db, record, expense)
    return result


def submit_expense(
    db: Session,
    submitter: models.User,
    amount: float,
    currency: str,
    description: Optional[str] = None,
) -> models.Expense:
    try:
        expense = models.Expense(
            company_id=submitter.company_id,
            submitter_id=submitter.id,
            amount=amount,
            currency=currency.upper(),
            description=description,
            status=models.ExpenseStatus.pending,
        )
        db.add(expense)
        db.flush()
        events.audit(
            db, submitter.id, submitter.company_id, "EXPENSE_SUBMITTED",
            models.EntityType.expense, expense.id,
            {"amount": amount, "currency": expense.currency},
        )
        advance_workflow(db, expense, ApprovalLedger(expense.id))
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(expense)
    return expense


def record_decision(
    db: Session,
    record_id: int,
    actor: models.User,
    decision: models.ApprovalStatus,
    comments: Optional[str] = None,
) -> models.Expense:
    """Apply one approver's decision and return the (possibly settled) expense."""
    if decision not in DECISIONS:
        raise ValidationError("Decision must be 'approved' or 'rejected'")

    try:
        record = db.get(models.ApprovalRecord, record_id)
        if record is None:
            raise NotFoundError("Approval record not found")

        expense = _lock_expense(db, record.expense_id)
        ledger = _lock_ledger(db, expense.id)

        if record.approver_id != actor.id:
            raise ConflictError("Approval record belongs to another approver")
        if expense.status in models.TERMINAL_STATUSES:
            raise ConflictError(f"Expense is already {expense.status.value}")
        if record.status != models.ApprovalStatus.pending:
            raise ConflictError(f"Approval record is already {record.status.value}")

        record.status = decision
        record.comments = comments
        record.approved_at = datetime.utcnow()

        advance_workflow(db, expense, ledger)
        events.audit(
            db, actor.id, expense.company_id, f"APPROVAL_{decision.value.upper()}",
            models.EntityType.approval, record.id,
            {
                "expense_id": expense.id,
                "stage": record.sequence_order,
                "comments": comments,
                "expense_status": expense.status.value,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(expense)
    return expense


def resume_workflow(db: Session, expense_id: int, actor: models.User) -> ActivationResult:
    """Re-run a stage activation pass, e.g. after fixing a stalled workflow."""
    try:
        expense = _lock_expense(db, expense_id)
        if expense.company_id != actor.company_id:
            raise NotFoundError("Expense not found")
        ledger = _lock_ledger(db, expense.id)
        result = ActivationResult()
        if expense.status == models.ExpenseStatus.pending:
            result = advance_workflow(db, expense, ledger)
        events.audit(
            db, actor.id, expense.company_id, "WORKFLOW_RESUMED",
            models.EntityType.expense, expense.id,
            {"opened_stage": result.opened_stage, "stalled_stage": result.stalled_stage},
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return result


def expense_health(db: Session, expense: models.Expense) -> tuple[tuple[WorkflowStage, ...], WorkflowHealth]:
    _, stages = company_workflow(db, expense.company_id)
    directory = company_directory(db, expense.company_id)
    return stages, workflow_health(expense, load_ledger(db, expense.id), stages, directory)


def stalled_workflows(db: Session, company_id: int) -> list[WorkflowHealth]:
    """Pending expenses of a company that nobody is currently able to act on."""
    _, stages = company_workflow(db, company_id)
    directory = company_directory(db, company_id)
    expenses = (
        db.query(models.Expense)
        .filter(models.Expense.company_id == company_id, models.Expense.status == models.ExpenseStatus.pending)
        .order_by(models.Expense.id)
        .all()
    )
    report = []
    for expense in expenses:
        health = workflow_health(expense, load_ledger(db, expense.id), stages, directory)
        if health.stalled:
            report.append(health)
    return report

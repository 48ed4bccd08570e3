import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from approval_engine import models

logger = logging.getLogger(__name__)


def notify(
    db: Session,
    recipient_id: int,
    title: str,
    message: str,
    kind: models.NotificationType = models.NotificationType.info,
    expense_id: Optional[int] = None,
) -> models.Notification:
    notification = models.Notification(
        user_id=recipient_id,
        title=title,
        message=message,
        type=kind,
        read=False,
        related_expense_id=expense_id,
    )
    db.add(notification)
    logger.info("Notify user %s (%s): %s", recipient_id, kind.value, title)
    return notification


def audit(
    db: Session,
    actor_id: int,
    company_id: int,
    action: str,
    entity_type: models.EntityType,
    entity_id: int,
    details: Optional[dict[str, Any]] = None,
) -> models.AuditLog:
    """Record who did what to which entity. Written in the caller's transaction."""
    entry = models.AuditLog(
        company_id=company_id,
        user_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details or {},
    )
    db.add(entry)
    logger.info("User %s performed %s on %s %s", actor_id, action, entity_type.value, entity_id)
    return entry


def request_approval(db: Session, record: models.ApprovalRecord, expense: models.Expense) -> models.Notification:
    return notify(
        db,
        record.approver_id,
        title="Approval requested",
        message=f"Expense #{expense.id} ({expense.amount:.2f} {expense.currency}) is waiting for your approval (stage {record.sequence_order}).",
        kind=models.NotificationType.approval,
        expense_id=expense.id,
    )


def announce_outcome(db: Session, expense: models.Expense) -> models.Notification:
    if expense.status == models.ExpenseStatus.approved:
        title, kind = "Expense approved", models.NotificationType.approval
    else:
        title, kind = "Expense rejected", models.NotificationType.rejection
    return notify(
        db,
        expense.submitter_id,
        title=title,
        message=f"Your expense #{expense.id} ({expense.amount:.2f} {expense.currency}) was {expense.status.value}.",
        kind=kind,
        expense_id=expense.id,
    )

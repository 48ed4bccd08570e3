from typing import Collection, Iterable

from sqlalchemy.orm import Session

from approval_engine import models
from approval_engine.ledger import ApprovalLedger


def company_directory(db: Session, company_id: int) -> frozenset[int]:
    """Ids of the users currently in the company."""
    rows = db.query(models.User.id).filter(models.User.company_id == company_id).all()
    return frozenset(row[0] for row in rows)


def fallback_approvers(db: Session, company_id: int) -> list[int]:
    """Managers and admins of the company, used when no rule yields a stage."""
    rows = (
        db.query(models.User.id)
        .filter(
            models.User.company_id == company_id,
            models.User.role.in_([models.Role.manager, models.Role.admin]),
        )
        .order_by(models.User.id)
        .all()
    )
    return [row[0] for row in rows]


def resolve_approvers(
    candidates: Iterable[int],
    submitter_id: int,
    directory: Collection[int],
    ledger: ApprovalLedger,
) -> tuple[int, ...]:
    """Narrow a stage's candidates to the users who should actually be asked.

    The submitter never approves their own expense, users who left the
    company are dropped without error, and anyone already holding a record
    on this expense is not assigned again.
    """
    assigned = ledger.approver_ids
    return tuple(sorted(
        approver_id
        for approver_id in set(candidates)
        if approver_id != submitter_id and approver_id in directory and approver_id not in assigned
    ))

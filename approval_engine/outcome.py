import math
from decimal import Decimal
from typing import Iterable, Sequence

from approval_engine import models
from approval_engine.rules import Rule

APPROVED = models.ApprovalStatus.approved
REJECTED = models.ApprovalStatus.rejected


def required_approvals(min_percentage: float, candidates: int) -> int:
    """ceil(min_percentage / 100 * candidates), computed without float drift."""
    return math.ceil(Decimal(str(min_percentage)) / 100 * candidates)


def _specific_met(rule: Rule, records: Sequence) -> bool:
    required = rule.required_approver
    return required is not None and any(
        r.approver_id == required and r.status == APPROVED for r in records
    )


def _quorum_met(rule: Rule, records: Sequence) -> bool:
    candidates = set(rule.approvers) or {r.approver_id for r in records}
    approved = {r.approver_id for r in records if r.status == APPROVED and r.approver_id in candidates}
    required = required_approvals(rule.min_approval_percentage, len(candidates))
    return (required == 0 and len(approved) > 0) or len(approved) >= required


def evaluate(rules: Sequence[Rule], records: Iterable) -> models.ExpenseStatus:
    """Derive an expense's status from its rules and approval records.

    Pure: the result depends only on the arguments. Any rejection wins;
    otherwise the first rule that is satisfied approves; otherwise the expense
    is approved only once every record is approved.
    """
    records = list(records)
    if not records:
        return models.ExpenseStatus.pending

    if any(r.status == REJECTED for r in records):
        return models.ExpenseStatus.rejected

    for rule in rules:
        if rule.rule_type in ("specific", "hybrid") and _specific_met(rule, records):
            return models.ExpenseStatus.approved
        if rule.rule_type in ("percentage", "hybrid") and _quorum_met(rule, records):
            return models.ExpenseStatus.approved

    if all(r.status == APPROVED for r in records):
        return models.ExpenseStatus.approved
    return models.ExpenseStatus.pending

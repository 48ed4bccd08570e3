import pytest

from approval_engine.models import ApprovalRecord, ApprovalStatus, ExpenseStatus
from approval_engine.outcome import evaluate, required_approvals
from approval_engine.rules import parse_rule

A, B, C, X = 1, 2, 3, 9


def rec(approver_id, status=ApprovalStatus.pending, order=1):
    return ApprovalRecord(expense_id=1, approver_id=approver_id, sequence_order=order, status=status)


def approved(approver_id, order=1):
    return rec(approver_id, ApprovalStatus.approved, order)


def rejected(approver_id, order=1):
    return rec(approver_id, ApprovalStatus.rejected, order)


def percentage(approvers, pct):
    return parse_rule({"rule_type": "percentage", "approvers": approvers, "min_approval_percentage": pct})


def test_no_records_is_pending():
    assert evaluate([percentage([A], 50)], []) == ExpenseStatus.pending
    assert evaluate([], []) == ExpenseStatus.pending


@pytest.mark.parametrize("records, expected", [
    ([approved(A), approved(B)], ExpenseStatus.approved),
    ([approved(A), rec(B)], ExpenseStatus.pending),
    ([approved(A), rejected(B)], ExpenseStatus.rejected),
])
def test_without_rules_every_record_must_approve(records, expected):
    assert evaluate([], records) == expected


@pytest.mark.parametrize("pct, candidates, expected", [
    (50, 3, 2),
    (34, 3, 2),
    (33, 3, 1),
    (100, 3, 3),
    (50, 2, 1),
    (60, 5, 3),
])
def test_required_approvals(pct, candidates, expected):
    assert required_approvals(pct, candidates) == expected


def test_percentage_two_of_three_satisfies_half():
    rule = percentage([A, B, C], 50)
    assert evaluate([rule], [approved(A), approved(B), rec(C)]) == ExpenseStatus.approved


def test_percentage_one_of_three_does_not_satisfy_half():
    rule = percentage([A, B, C], 50)
    assert evaluate([rule], [approved(A), rec(B), rec(C)]) == ExpenseStatus.pending


def test_quorum_counts_only_candidate_approvers():
    rule = percentage([A, B, C], 50)
    assert evaluate([rule], [approved(A), approved(X), rec(B)]) == ExpenseStatus.pending


def test_specific_approver_short_circuits():
    rule = parse_rule({"rule_type": "specific", "specific_approver_required": X})
    records = [rec(A), rec(B), approved(X, order=2)]
    assert evaluate([rule], records) == ExpenseStatus.approved


def test_specific_rule_waits_for_its_approver():
    rule = parse_rule({"rule_type": "specific", "specific_approver_required": X})
    assert evaluate([rule], [approved(A), rec(X, order=2)]) == ExpenseStatus.pending


@pytest.mark.parametrize("records", [
    [rec(A), rec(B), approved(X)],
    [approved(A), rec(B), rec(X)],
    [rec(A), approved(B), rec(X)],
])
def test_hybrid_is_percentage_or_specific(records):
    rule = parse_rule({
        "rule_type": "hybrid", "approvers": [A, B], "min_approval_percentage": 50, "specific_approver_required": X,
    })
    assert evaluate([rule], records) == ExpenseStatus.approved


def test_rejection_wins_over_earlier_approvals():
    rule = parse_rule({"rule_type": "specific", "specific_approver_required": X})
    assert evaluate([rule], [approved(X), approved(A), rejected(B)]) == ExpenseStatus.rejected


def test_first_rule_with_a_verdict_wins_over_unsatisfied_ones():
    strict = percentage([A, B, C], 100)
    lenient = parse_rule({"rule_type": "specific", "specific_approver_required": A})
    assert evaluate([strict, lenient], [approved(A), rec(B), rec(C)]) == ExpenseStatus.approved


def test_all_approved_fallback_when_no_rule_fires():
    rule = percentage([A, B, C], 100)
    assert evaluate([rule], [approved(A), approved(B)]) == ExpenseStatus.approved


def test_escalated_record_keeps_expense_pending():
    rule = percentage([A, B], 100)
    assert evaluate([rule], [approved(A), rec(B, ApprovalStatus.escalated)]) == ExpenseStatus.pending


def test_scenario_b_thresholds():
    rule = percentage([A, B, C], 34)
    assert evaluate([rule], [approved(A), rec(B, order=2)]) == ExpenseStatus.pending
    assert evaluate([rule], [approved(A), approved(B, order=2), rec(C, order=3)]) == ExpenseStatus.approved


def test_evaluate_is_pure():
    rules = [percentage([A, B, C], 50)]
    records = [approved(A), rec(B), rec(C)]
    snapshot = [(r.approver_id, r.status) for r in records]
    assert evaluate(rules, records) == evaluate(rules, records) == ExpenseStatus.pending
    assert [(r.approver_id, r.status) for r in records] == snapshot

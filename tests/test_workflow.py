from approval_engine.rules import parse_rule
from approval_engine.workflow import WorkflowStage, build_stages


def percentage(approvers, pct=50, **extra):
    return parse_rule({"rule_type": "percentage", "approvers": approvers, "min_approval_percentage": pct, **extra})


def specific(approver, **extra):
    return parse_rule({"rule_type": "specific", "specific_approver_required": approver, **extra})


def orders(stages):
    return [(s.order, sorted(s.approver_ids)) for s in stages]


def test_single_rule_gives_one_stage_per_approver():
    stages = build_stages([percentage([10, 20, 30])])
    assert orders(stages) == [(1, [10]), (2, [20]), (3, [30])]


def test_rules_sharing_an_order_are_merged():
    stages = build_stages([percentage([10, 20]), percentage([30, 40])])
    assert orders(stages) == [(1, [10, 30]), (2, [20, 40])]


def test_approver_kept_only_at_first_stage():
    stages = build_stages([percentage([10, 20]), percentage([20, 30])])
    assert orders(stages) == [(1, [10, 20]), (2, [30])]


def test_emptied_stages_are_dropped_and_renumbered():
    later = percentage([20, 30], approver_sequence=[
        {"approver_id": 20, "order": 1},
        {"approver_id": 30, "order": 3},
    ])
    stages = build_stages([percentage([10, 20]), later])
    assert orders(stages) == [(1, [10, 20]), (2, [30])]


def test_specific_approver_is_last_step_of_its_rule():
    hybrid = parse_rule({
        "rule_type": "hybrid", "approvers": [10, 20], "min_approval_percentage": 50, "specific_approver_required": 99,
    })
    assert orders(build_stages([hybrid])) == [(1, [10]), (2, [20]), (3, [99])]


def test_fallback_stage_when_no_rules():
    assert build_stages([], fallback_approvers=[3, 1]) == (WorkflowStage(order=1, approver_ids=frozenset({1, 3})),)


def test_no_rules_and_no_fallback_gives_no_stages():
    assert build_stages([]) == ()


def test_fallback_ignored_when_rules_yield_stages():
    assert orders(build_stages([specific(7)], fallback_approvers=[1, 2])) == [(1, [7])]


def test_builder_is_pure():
    rules = [percentage([10, 20]), specific(30)]
    first = build_stages(rules)
    second = build_stages(rules)
    assert first == second
    assert isinstance(first, tuple)
    assert rules[0].approvers == (10, 20)

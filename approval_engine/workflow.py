from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Sequence

from approval_engine.rules import Rule


@dataclass(frozen=True)
class WorkflowStage:
    order: int
    approver_ids: frozenset[int]


def build_stages(rules: Sequence[Rule], fallback_approvers: Iterable[int] = ()) -> tuple[WorkflowStage, ...]:
    """Merge a company's rules into ordered, contiguous approval stages.

    Every rule contributes ``(order, approver)`` steps; steps sharing an order
    land in the same stage. An approver is kept only at the first stage it
    appears in, so nobody is asked twice. Stages left empty by that are
    dropped and the rest renumbered from 1.

    When the rules yield nothing, a single stage made of ``fallback_approvers``
    (the company's managers and admins) is returned instead.
    """
    stage_map: dict[int, set[int]] = defaultdict(set)
    for rule in rules:
        for order, approver_id in rule.ordered_steps():
            stage_map[order].add(approver_id)

    seen: set[int] = set()
    stages: list[WorkflowStage] = []
    for order in sorted(stage_map):
        fresh = stage_map[order] - seen
        seen |= fresh
        if fresh:
            stages.append(WorkflowStage(order=len(stages) + 1, approver_ids=frozenset(fresh)))

    if not stages:
        fallback = frozenset(fallback_approvers)
        if fallback:
            stages.append(WorkflowStage(order=1, approver_ids=fallback))
    return tuple(stages)

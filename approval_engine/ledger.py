from typing import Iterable, Iterator

from approval_engine import models


class ApprovalLedger:
    """Append-only approval records of one expense, indexed by stage.

    Records live in a flat list; ``_by_order`` maps a sequence_order to the
    positions of its records. Records never point at each other, only at
    their stage, so nothing more is needed.
    """

    def __init__(self, expense_id: int, records: Iterable[models.ApprovalRecord] = ()):
        self.expense_id = expense_id
        self._records: list[models.ApprovalRecord] = []
        self._by_order: dict[int, list[int]] = {}
        self._approvers: set[int] = set()
        for record in sorted(records, key=lambda r: (r.sequence_order, r.id or 0)):
            self.append(record)

    @classmethod
    def for_expense(cls, expense: models.Expense) -> "ApprovalLedger":
        return cls(expense.id, expense.approvals)

    def append(self, record: models.ApprovalRecord) -> None:
        if record.approver_id in self._approvers:
            raise ValueError(f"approver {record.approver_id} already has a record for expense {self.expense_id}")
        self._by_order.setdefault(record.sequence_order, []).append(len(self._records))
        self._records.append(record)
        self._approvers.add(record.approver_id)

    def __iter__(self) -> Iterator[models.ApprovalRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[models.ApprovalRecord, ...]:
        return tuple(self._records)

    @property
    def approver_ids(self) -> frozenset[int]:
        return frozenset(self._approvers)

    def stage(self, order: int) -> tuple[models.ApprovalRecord, ...]:
        return tuple(self._records[i] for i in self._by_order.get(order, ()))

    def has_stage(self, order: int) -> bool:
        return order in self._by_order

    def is_stage_complete(self, order: int) -> bool:
        records = self.stage(order)
        return bool(records) and all(r.status == models.ApprovalStatus.approved for r in records)

    def has_rejection(self) -> bool:
        return any(r.status == models.ApprovalStatus.rejected for r in self._records)

    def pending(self) -> tuple[models.ApprovalRecord, ...]:
        return tuple(r for r in self._records if r.status == models.ApprovalStatus.pending)

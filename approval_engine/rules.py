"""Typed approval rules.

Rule payloads arrive as loosely-typed JSON (from the admin API or from the
``approval_rules`` table). They are parsed once, here, into one of three frozen
models and never travel further as plain dicts.
"""
import logging
from typing import Annotated, Any, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from approval_engine import models
from approval_engine.exceptions import ValidationError

logger = logging.getLogger(__name__)


class RuleStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    approver_id: int
    order: int = Field(ge=1)


class _RuleBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    rule_name: str = ""
    description: str = ""
    approver_sequence: Tuple[RuleStep, ...] = ()

    @property
    def required_approver(self) -> Optional[int]:
        return None

    def ordered_steps(self) -> list[tuple[int, int]]:
        """Return ``(order, approver_id)`` pairs for this rule alone.

        ``approver_sequence`` wins over ``approvers``; a required approver not
        already listed is appended as one extra step after the last order.
        """
        if self.approver_sequence:
            steps = [(step.order, step.approver_id) for step in self.approver_sequence]
        else:
            steps = [(index + 1, approver_id) for index, approver_id in enumerate(self.approvers)]

        required = self.required_approver
        if required is not None and required not in {approver_id for _, approver_id in steps}:
            last = max((order for order, _ in steps), default=0)
            steps.append((last + 1, required))
        return steps


class PercentageRule(_RuleBase):
    rule_type: Literal["percentage"]
    approvers: Tuple[int, ...] = Field(min_length=1)
    min_approval_percentage: float = Field(gt=0, le=100)


class SpecificRule(_RuleBase):
    rule_type: Literal["specific"]
    approvers: Tuple[int, ...] = ()
    min_approval_percentage: float = Field(default=0, ge=0, le=100)
    specific_approver_required: int

    @property
    def required_approver(self) -> Optional[int]:
        return self.specific_approver_required


class HybridRule(_RuleBase):
    """Percentage quorum OR specific approver, whichever is met first."""

    rule_type: Literal["hybrid"]
    approvers: Tuple[int, ...] = Field(min_length=1)
    min_approval_percentage: float = Field(gt=0, le=100)
    specific_approver_required: int

    @property
    def required_approver(self) -> Optional[int]:
        return self.specific_approver_required


Rule = Annotated[Union[PercentageRule, SpecificRule, HybridRule], Field(discriminator="rule_type")]

_rule_adapter = TypeAdapter(Rule)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error["loc"]) or "rule"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def parse_rule(payload: Mapping[str, Any]) -> Rule:
    """Validate a raw rule payload, raising ``ValidationError`` when malformed."""
    data = dict(payload)
    rule_type = data.get("rule_type")
    if isinstance(rule_type, models.RuleType):
        data["rule_type"] = rule_type.value
    # Drop explicit nulls so field defaults apply.
    data = {key: value for key, value in data.items() if value is not None}
    try:
        return _rule_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(detail=f"Invalid approval rule: {_describe(exc)}") from exc


def rule_from_model(row: models.ApprovalRule) -> Rule:
    return parse_rule({
        "id": row.id,
        "rule_name": row.rule_name,
        "description": row.description or "",
        "rule_type": row.rule_type,
        "approvers": row.approvers or [],
        "approver_sequence": row.approver_sequence or [],
        "min_approval_percentage": row.min_approval_percentage,
        "specific_approver_required": row.specific_approver_required,
    })


def load_company_rules(db, company_id: int) -> list[Rule]:
    """Rules of a company in configured (creation) order.

    Stored rows that no longer validate are logged and left out of the
    workflow rather than aborting every expense of the company.
    """
    rows = (
        db.query(models.ApprovalRule)
        .filter(models.ApprovalRule.company_id == company_id)
        .order_by(models.ApprovalRule.id)
        .all()
    )
    rules = []
    for row in rows:
        try:
            rules.append(rule_from_model(row))
        except ValidationError as exc:
            logger.error("Skipping malformed approval rule %s of company %s: %s", row.id, company_id, exc.detail)
    return rules

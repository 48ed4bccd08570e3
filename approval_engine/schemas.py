from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

class Role(str, Enum):
    admin = "admin"
    manager = "manager"
    employee = "employee"

class UserOut(BaseModel):
    id: int
    email: EmailStr
    full_name: str
    role: Role
    company_id: int
    manager_id: Optional[int] = None

    class Config:
        from_attributes = True

class ExpenseCreate(BaseModel):
    amount: float = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    description: Optional[str] = None

class ExpenseOut(BaseModel):
    id: int
    company_id: int
    submitter_id: int
    amount: float
    currency: str
    description: Optional[str]
    status: str
    created_at: datetime

    class Config:
        from_attributes = True

class Decision(str, Enum):
    approved = "approved"
    rejected = "rejected"

class DecisionRequest(BaseModel):
    decision: Decision
    comments: Optional[str] = None

class ApprovalRecordOut(BaseModel):
    id: int
    expense_id: int
    approver_id: int
    sequence_order: int
    status: str
    comments: Optional[str]
    approved_at: Optional[datetime]

    class Config:
        from_attributes = True

class RuleStepIn(BaseModel):
    approver_id: int
    order: int

# Deliberately loose: the typed checks live in approval_engine.rules.parse_rule
class ApprovalRuleCreate(BaseModel):
    rule_name: str
    description: str = ""
    rule_type: str
    approvers: List[int] = []
    approver_sequence: List[RuleStepIn] = []
    min_approval_percentage: float = 0
    specific_approver_required: Optional[int] = None

class ApprovalRuleOut(BaseModel):
    id: int
    rule_name: str
    description: Optional[str]
    rule_type: str
    approvers: List[int]
    approver_sequence: List[RuleStepIn]
    min_approval_percentage: float
    specific_approver_required: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True

class WorkflowStageOut(BaseModel):
    order: int
    approver_ids: List[int]

class WorkflowHealthOut(BaseModel):
    expense_id: int
    status: str
    total_stages: int
    current_stage: Optional[int]
    stalled: bool
    stalled_stage: Optional[int] = None
    reason: Optional[str] = None

    class Config:
        from_attributes = True

class WorkflowOut(BaseModel):
    stages: List[WorkflowStageOut]
    health: WorkflowHealthOut

class ActivationOut(BaseModel):
    opened_stage: Optional[int]
    stalled_stage: Optional[int]
    opened_approvers: List[int]

class NotificationOut(BaseModel):
    id: int
    title: str
    message: str
    type: str
    read: bool
    related_expense_id: Optional[int]
    created_at: datetime

    class Config:
        from_attributes = True

class AuditLogOut(BaseModel):
    id: int
    user_id: int
    action: str
    entity_type: str
    entity_id: int
    details: dict
    created_at: datetime

    class Config:
        from_attributes = True

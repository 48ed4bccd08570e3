from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from datetime import datetime
from typing import List

from approval_engine.config import settings
from approval_engine.logging_config import configure_logging
from approval_engine.database import Base, engine, get_db
from approval_engine import models
from approval_engine import schemas
from approval_engine import events
from approval_engine.auth import get_current_user, require_role
from approval_engine.engine import submit_expense, record_decision, resume_workflow, expense_health, stalled_workflows, load_ledger
from approval_engine.exceptions import NotFoundError, PermissionDeniedError
from approval_engine.rules import parse_rule

configure_logging(settings.LOG_LEVEL)

app = FastAPI(title=settings.PROJECT_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

@app.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.utcnow().isoformat()}

@app.get("/auth/me", response_model=schemas.UserOut)
def me(user: models.User = Depends(get_current_user)):
    return user

# ---- Admin: Rules ----

@app.post("/admin/rules", response_model=schemas.ApprovalRuleOut)
def create_rule(payload: schemas.ApprovalRuleCreate, admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    rule = parse_rule(payload.model_dump())
    row = models.ApprovalRule(
        company_id=admin.company_id,
        rule_name=rule.rule_name,
        description=rule.description,
        rule_type=models.RuleType(rule.rule_type),
        approvers=list(rule.approvers),
        approver_sequence=[step.model_dump() for step in rule.approver_sequence],
        min_approval_percentage=rule.min_approval_percentage,
        specific_approver_required=rule.required_approver,
    )
    db.add(row)
    db.flush()
    events.audit(db, admin.id, admin.company_id, "APPROVAL_RULE_CREATED", models.EntityType.approval_rule, row.id,
                 {"rule_name": row.rule_name, "rule_type": rule.rule_type})
    db.commit()
    db.refresh(row)
    return row

@app.get("/admin/rules", response_model=List[schemas.ApprovalRuleOut])
def list_rules(admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    return db.query(models.ApprovalRule).filter(models.ApprovalRule.company_id == admin.company_id).order_by(models.ApprovalRule.id).all()

@app.delete("/admin/rules/{rule_id}", status_code=204)
def delete_rule(rule_id: int, admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    row = db.get(models.ApprovalRule, rule_id)
    if not row or row.company_id != admin.company_id:
        raise NotFoundError("Approval rule not found")
    events.audit(db, admin.id, admin.company_id, "APPROVAL_RULE_DELETED", models.EntityType.approval_rule, row.id,
                 {"rule_name": row.rule_name})
    db.delete(row)
    db.commit()

# ---- Admin: Workflow health & audit ----

@app.get("/admin/workflows/stalled", response_model=List[schemas.WorkflowHealthOut])
def list_stalled(admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    return stalled_workflows(db, admin.company_id)

@app.post("/admin/workflows/{expense_id}/resume", response_model=schemas.ActivationOut)
def resume(expense_id: int, admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    result = resume_workflow(db, expense_id, admin)
    return schemas.ActivationOut(
        opened_stage=result.opened_stage,
        stalled_stage=result.stalled_stage,
        opened_approvers=[r.approver_id for r in result.opened],
    )

@app.get("/admin/audit-logs", response_model=List[schemas.AuditLogOut])
def list_audit_logs(limit: int = 100, admin: models.User = Depends(require_role(models.Role.admin)), db: Session = Depends(get_db)):
    return (
        db.query(models.AuditLog)
        .filter(models.AuditLog.company_id == admin.company_id)
        .order_by(models.AuditLog.id.desc())
        .limit(limit)
        .all()
    )

# ---- Employee: Submit & View ----

def _visible_expense(db: Session, expense_id: int, user: models.User) -> models.Expense:
    exp = db.get(models.Expense, expense_id)
    if not exp:
        raise NotFoundError("Expense not found")
    if user.company_id != exp.company_id:
        raise PermissionDeniedError()
    return exp

@app.post("/expenses", response_model=schemas.ExpenseOut)
def create_expense(payload: schemas.ExpenseCreate, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return submit_expense(db, user, payload.amount, payload.currency, payload.description)

@app.get("/expenses/my", response_model=List[schemas.ExpenseOut])
def my_expenses(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(models.Expense).filter(models.Expense.submitter_id == user.id).order_by(models.Expense.created_at.desc()).all()

@app.get("/expenses/{expense_id}/approvals", response_model=List[schemas.ApprovalRecordOut])
def list_approvals(expense_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    exp = _visible_expense(db, expense_id, user)
    return list(load_ledger(db, exp.id))

@app.get("/expenses/{expense_id}/workflow", response_model=schemas.WorkflowOut)
def get_workflow(expense_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    exp = _visible_expense(db, expense_id, user)
    stages, health = expense_health(db, exp)
    return schemas.WorkflowOut(
        stages=[schemas.WorkflowStageOut(order=s.order, approver_ids=sorted(s.approver_ids)) for s in stages],
        health=schemas.WorkflowHealthOut.model_validate(health),
    )

# ---- Approvals ----

@app.get("/approvals/pending", response_model=List[schemas.ApprovalRecordOut])
def pending_for_me(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return (
        db.query(models.ApprovalRecord)
        .join(models.Expense, models.Expense.id == models.ApprovalRecord.expense_id)
        .filter(
            models.ApprovalRecord.approver_id == user.id,
            models.ApprovalRecord.status == models.ApprovalStatus.pending,
            models.Expense.status == models.ExpenseStatus.pending,
        )
        .order_by(models.ApprovalRecord.id)
        .all()
    )

@app.post("/approvals/{record_id}/decision", response_model=schemas.ExpenseOut)
def decide(record_id: int, payload: schemas.DecisionRequest, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    return record_decision(db, record_id, user, models.ApprovalStatus(payload.decision.value), payload.comments)

# ---- Notifications ----

@app.get("/notifications", response_model=List[schemas.NotificationOut])
def my_notifications(unread_only: bool = False, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    q = db.query(models.Notification).filter(models.Notification.user_id == user.id)
    if unread_only:
        q = q.filter(models.Notification.read.is_(False))
    return q.order_by(models.Notification.id.desc()).all()

@app.post("/notifications/{notification_id}/read", response_model=schemas.NotificationOut)
def mark_read(notification_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    n = db.get(models.Notification, notification_id)
    if not n or n.user_id != user.id:
        raise NotFoundError("Notification not found")
    n.read = True
    db.commit()
    db.refresh(n)
    return n

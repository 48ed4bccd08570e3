import itertools
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from approval_engine import models
from approval_engine.auth import create_access_token
from approval_engine.database import Base, get_db
from approval_engine.main import app
from approval_engine.rules import parse_rule

test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def db():
    Base.metadata.create_all(bind=test_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def company(db):
    c = models.Company(name="Acme Inc", currency_code="USD")
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def other_company(db):
    c = models.Company(name="Globex", currency_code="EUR")
    db.add(c)
    db.commit()
    return c


@pytest.fixture
def make_user(db, company):
    counter = itertools.count(1)

    def _make(role=models.Role.manager, name=None):
        n = next(counter)
        name = name or f"{role.value}{n}"
        user = models.User(email=f"{name}@example.com", full_name=name.title(), role=role, company_id=company.id)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_rule(db, company):
    def _make(**payload):
        payload.setdefault("rule_name", f"{payload['rule_type']} rule")
        rule = parse_rule(payload)
        row = models.ApprovalRule(
            company_id=company.id,
            rule_name=rule.rule_name,
            description=rule.description,
            rule_type=models.RuleType(rule.rule_type),
            approvers=list(rule.approvers),
            approver_sequence=[step.model_dump() for step in rule.approver_sequence],
            min_approval_percentage=rule.min_approval_percentage,
            specific_approver_required=rule.required_approver,
        )
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def auth():
    def _headers(user):
        return {"Authorization": "Bearer " + create_access_token({"sub": str(user.id)})}

    return _headers

# tests/conftest.py

from __future__ import annotations

import os
import tempfile
from decimal import Decimal

# Settings are read at import time, so the environment is fixed before the package loads.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DOCUMENT_STORAGE_PATH"] = tempfile.mkdtemp(prefix="lawpractice-docs-")
os.environ["SEED_DEFAULT_ADMIN"] = "false"
os.environ["OCR_ENABLED"] = "false"
os.environ["DEBUG"] = "true"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient

from lawpractice.auth import auth_rate_limiter, create_user_token, registration_rate_limiter
from lawpractice.database import SessionLocal, create_tables, drop_tables
from lawpractice.main import app
from lawpractice.models.database import Client
from lawpractice.models.enums import CaseType, UserRole
from lawpractice.services.case_service import case_service
from lawpractice.services.tenancy_service import tenancy_service


@pytest.fixture()
def db():
    """Fresh schema per test on the shared in-memory database."""
    drop_tables()
    create_tables()
    auth_rate_limiter.clear()
    registration_rate_limiter.clear()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def firm_and_admin(db):
    return tenancy_service.register_firm(
        db,
        firm_name="Zhang & Partners",
        username="admin",
        email="admin@lawfirm.cn",
        password="password123",
        firm_tax_id="91310000MA1FL0000X",
    )


@pytest.fixture()
def firm(firm_and_admin):
    return firm_and_admin[0]


@pytest.fixture()
def admin(firm_and_admin):
    return firm_and_admin[1]


@pytest.fixture()
def lawyer(db, firm):
    return tenancy_service.create_user(
        db, firm.id, "lawyer", "lawyer@lawfirm.cn", "password123", role=UserRole.LAWYER,
        first_name="Li", last_name="Wei",
    )


@pytest.fixture()
def paralegal(db, firm):
    return tenancy_service.create_user(
        db, firm.id, "paralegal", "paralegal@lawfirm.cn", "password123", role=UserRole.PARALEGAL,
    )


@pytest.fixture()
def client_record(db, firm) -> Client:
    client = Client(
        firm_id=firm.id,
        first_name="Chen",
        last_name="Jing",
        email="chen.jing@example.com",
        company="Shanghai Trading Co.",
        tax_id="91310115MA1K4XXXXX",
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


@pytest.fixture()
def case(db, lawyer, client_record):
    created, _ = case_service.create_case(db, lawyer, {
        "title": "Chen v. Shanghai Logistics",
        "case_type": CaseType.CONTRACT_DISPUTE,
        "client_id": client_record.id,
        "claim_amount": Decimal("250000"),
        "details": {"clientInformation": "Chen Jing", "caseDescription": "Unpaid shipping invoices"},
    })
    return created


@pytest.fixture()
def api(db) -> TestClient:
    return TestClient(app)


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_user_token(user)}"}


@pytest.fixture()
def admin_headers(admin) -> dict:
    return bearer(admin)


@pytest.fixture()
def lawyer_headers(lawyer) -> dict:
    return bearer(lawyer)

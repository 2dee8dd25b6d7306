# tests/test_billing_service.py

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from lawpractice.exceptions import ConflictError, NotFoundError, ValidationError
from lawpractice.models.database import Client, Notification, TimeEntry
from lawpractice.models.enums import CasePhase, InvoiceStatus, NotificationType, PaymentMethod
from lawpractice.services.billing_service import billing_service, fapiao_check_code, round_hours

MARCH = datetime(2024, 3, 15, 10, 0)


def _invoice(db, lawyer, case, client_record, now=MARCH):
    entry = billing_service.record_time(db, lawyer, {
        "case_id": case.id, "description": "Review shipping contract", "hours": 1.23, "rate": 150,
    })
    invoice = billing_service.create_invoice(db, lawyer, {
        "client_id": client_record.id,
        "case_id": case.id,
        "items": [{"description": "Court filing fee", "unit_price": 1000}],
        "time_entry_ids": [entry.id],
    }, now=now)
    return invoice, entry


def test_round_hours_to_next_increment() -> None:
    assert round_hours(1.23) == Decimal("1.30")
    assert round_hours(2) == Decimal("2.00")
    assert round_hours("0.01") == Decimal("0.10")


def test_time_entry_rate_raised_to_minimum(db, case, lawyer) -> None:
    entry = billing_service.record_time(db, lawyer, {
        "case_id": case.id, "description": "Call with client", "hours": 0.25, "rate": 100,
    })
    assert entry.hours == Decimal("0.30")
    assert entry.rate == Decimal("200.00")


def test_invoice_totals_and_numbering(db, case, lawyer, client_record) -> None:
    invoice, entry = _invoice(db, lawyer, case, client_record)

    assert invoice.invoice_number == "INV2024030001"
    assert invoice.status == InvoiceStatus.DRAFT.value
    assert invoice.subtotal == Decimal("1260.00")
    assert invoice.tax_amount == Decimal("75.60")
    assert invoice.total == Decimal("1335.60")
    assert invoice.due_date == datetime(2024, 4, 14, 10, 0)
    assert len(invoice.items) == 2

    db.refresh(entry)
    assert entry.invoice_id == invoice.id

    with pytest.raises(ConflictError):
        billing_service.create_invoice(db, lawyer, {"client_id": client_record.id, "time_entry_ids": [entry.id]})

    second = billing_service.create_invoice(db, lawyer, {
        "client_id": client_record.id, "items": [{"description": "Copies", "unit_price": 50, "quantity": 2}],
    }, now=MARCH)
    assert second.invoice_number == "INV2024030002"


def test_client_without_tax_number_cannot_be_invoiced(db, firm, lawyer) -> None:
    client = Client(firm_id=firm.id, first_name="Liu", last_name="Yang")
    db.add(client)
    db.commit()

    with pytest.raises(ValidationError):
        billing_service.create_invoice(db, lawyer, {
            "client_id": client.id, "items": [{"description": "Consultation", "unit_price": 800}],
        })


def test_issue_assigns_fapiao(db, case, lawyer, client_record) -> None:
    invoice, _ = _invoice(db, lawyer, case, client_record)

    issued = billing_service.issue_invoice(db, lawyer, invoice.id)

    assert issued.status == InvoiceStatus.ISSUED.value
    assert issued.fapiao_number == "00000001"
    assert issued.fapiao_check_code == fapiao_check_code(issued.invoice_number, "00000001", issued.total)
    assert len(issued.fapiao_check_code) == 20 and issued.fapiao_check_code.isdigit()

    with pytest.raises(ConflictError):
        billing_service.issue_invoice(db, lawyer, invoice.id)


def test_payments_move_invoice_to_paid(db, case, lawyer, client_record) -> None:
    invoice, _ = _invoice(db, lawyer, case, client_record)

    with pytest.raises(ConflictError):
        billing_service.record_payment(db, lawyer, invoice.id, 100, PaymentMethod.ALIPAY)

    billing_service.issue_invoice(db, lawyer, invoice.id)
    partial = billing_service.record_payment(db, lawyer, invoice.id, "335.60", PaymentMethod.BANK_TRANSFER)
    assert partial.status == InvoiceStatus.PARTIALLY_PAID.value
    assert partial.outstanding == Decimal("1000.00")

    with pytest.raises(ValidationError):
        billing_service.record_payment(db, lawyer, invoice.id, 2000, PaymentMethod.CASH)

    paid = billing_service.record_payment(db, lawyer, invoice.id, 1000, PaymentMethod.WECHAT_PAY)
    assert paid.status == InvoiceStatus.PAID.value
    assert paid.paid_at is not None
    assert len(paid.payments) == 2

    notices = db.query(Notification).filter(
        Notification.user_id == lawyer.id,
        Notification.notification_type == NotificationType.BILLING.value
    ).all()
    assert [n.title for n in notices] == [f"Invoice {invoice.invoice_number} paid"]


def test_cancel_releases_billed_time(db, case, lawyer, client_record) -> None:
    invoice, entry = _invoice(db, lawyer, case, client_record)

    cancelled = billing_service.cancel_invoice(db, lawyer, invoice.id)

    assert cancelled.status == InvoiceStatus.CANCELLED.value
    assert db.query(TimeEntry).filter(TimeEntry.id == entry.id).one().invoice_id is None
    assert len(billing_service.list_time_entries(db, case.firm_id, case_id=case.id, unbilled_only=True)) == 1


def test_overdue_and_late_fee(db, case, lawyer, client_record) -> None:
    invoice, _ = _invoice(db, lawyer, case, client_record, now=datetime(2024, 1, 1))
    billing_service.issue_invoice(db, lawyer, invoice.id)

    overdue = billing_service.mark_overdue_invoices(db, firm_id=case.firm_id, now=datetime(2024, 3, 11))
    assert [i.id for i in overdue] == [invoice.id]

    fee = billing_service.late_fee(db, case.firm_id, invoice.id, now=datetime(2024, 3, 11))
    assert fee["days_overdue"] == 40
    assert fee["periods"] == 2
    assert fee["late_fee"] == Decimal("53.42")

    on_time = billing_service.late_fee(db, case.firm_id, invoice.id, now=datetime(2024, 1, 15))
    assert on_time["late_fee"] == Decimal("0.00")


def test_stage_billing_for_intake(db, case) -> None:
    billing_service.create_billing_node(db, case.firm_id, {
        "case_id": case.id, "phase": CasePhase.INTAKE_RISK_ASSESSMENT, "name": "Intake fee", "amount": 5000,
    })
    billing_service.create_billing_node(db, case.firm_id, {
        "case_id": case.id, "phase": CasePhase.FORMAL_PROCEEDINGS, "name": "Hearing fee", "amount": 8000,
    })

    summary = billing_service.stage_billing(db, case.firm_id, case.id)

    assert [item["description"] for item in summary["suggested_items"]] == ["Intake fee"]
    assert summary["suggested_total"] == Decimal("5300.00")
    assert summary["missing_documents"] == ["fee_agreement", "engagement_letter"]
    assert summary["requires_client_approval"] is True
    assert summary["requires_court_approval"] is False


def test_trust_account_deposit_and_withdrawal(db, case, lawyer, client_record) -> None:
    account = billing_service.deposit(db, lawyer, client_record.id, 5000, case_id=case.id, description="Retainer")
    account = billing_service.withdraw(db, lawyer, client_record.id, 2000, case_id=case.id)

    assert account.balance == Decimal("3000.00")
    assert [t.balance_after for t in account.transactions] == [Decimal("5000.00"), Decimal("3000.00")]

    with pytest.raises(ValidationError):
        billing_service.withdraw(db, lawyer, client_record.id, 5000, case_id=case.id)
    with pytest.raises(NotFoundError):
        billing_service.withdraw(db, lawyer, client_record.id, 10)


def test_late_fee_counts_a_started_period(db, case, lawyer, client_record) -> None:
    invoice, _ = _invoice(db, lawyer, case, client_record, now=datetime(2024, 1, 1))
    billing_service.issue_invoice(db, lawyer, invoice.id)

    fee = billing_service.late_fee(db, case.firm_id, invoice.id, now=invoice.due_date + timedelta(hours=23))

    assert fee["days_overdue"] == 0
    assert fee["periods"] == 1
    assert fee["late_fee"] == Decimal("26.71")

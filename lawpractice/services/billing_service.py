import hashlib
import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import ConflictError, NotFoundError, ValidationError
from ..models.database import (
    BillingNode, Case, Client, Document, Invoice, InvoiceItem, Payment,
    TimeEntry, TrustAccount, TrustTransaction, User
)
from ..models.enums import (
    CasePhase, InvoiceStatus, NotificationType, PaymentMethod, TrustTransactionType
)
from ..utils import money, to_decimal, utcnow
from .notification_service import notification_service

logger = logging.getLogger(__name__)

STAGE_REQUIREMENTS = {
    CasePhase.INTAKE_RISK_ASSESSMENT.value: {
        "documents": ["fee_agreement", "engagement_letter"],
        "client_approval": True,
    },
    CasePhase.FORMAL_PROCEEDINGS.value: {
        "documents": ["court_filing_receipt", "service_proof"],
        "client_approval": False,
    },
    CasePhase.RESOLUTION_POST.value: {
        "documents": ["settlement_agreement", "judgment_copy"],
        "client_approval": False,
    },
}

PAYABLE_STATUSES = (
    InvoiceStatus.ISSUED.value,
    InvoiceStatus.PARTIALLY_PAID.value,
    InvoiceStatus.OVERDUE.value,
)

LATE_FEE_PERIOD_DAYS = 30


def round_hours(hours) -> Decimal:
    """Round hours up to the next billing increment."""
    increment = to_decimal(settings.time_increment_hours)
    steps = (to_decimal(hours) / increment).to_integral_value(rounding=ROUND_CEILING)
    return money(steps * increment)


def fapiao_check_code(invoice_number: str, fapiao_number: str, total) -> str:
    digest = hashlib.sha256(f"{invoice_number}|{fapiao_number}|{money(total)}".encode("utf-8")).hexdigest()
    return str(int(digest, 16) % 10 ** 20).zfill(20)


def _line(item_type: str, description: str, quantity, unit_price, source_id: Optional[int] = None) -> Dict[str, Any]:
    quantity = to_decimal(quantity)
    amount = money(quantity * to_decimal(unit_price))
    tax_amount = money(amount * to_decimal(settings.vat_rate))
    return {
        "item_type": item_type,
        "description": description,
        "quantity": quantity,
        "unit_price": money(unit_price),
        "amount": amount,
        "tax_amount": tax_amount,
        "total": amount + tax_amount,
        "source_id": source_id,
    }


class BillingService:
    """Time recording, stage fees, VAT invoices with fapiao, payments and trust accounts."""

    def _get_case(self, db: Session, firm_id: int, case_id: int) -> Case:
        case = db.query(Case).filter(Case.id == case_id, Case.firm_id == firm_id).first()
        if case is None:
            raise NotFoundError("Case not found")
        return case

    def _get_client(self, db: Session, firm_id: int, client_id: int) -> Client:
        client = db.query(Client).filter(Client.id == client_id, Client.firm_id == firm_id).first()
        if client is None:
            raise NotFoundError("Client not found")
        return client

    # Time entries and billing nodes

    def record_time(self, db: Session, user: User, data: Dict[str, Any]) -> TimeEntry:
        case = self._get_case(db, user.firm_id, data["case_id"])

        minimum = money(settings.minimum_hourly_rate)
        rate = money(data["rate"]) if data.get("rate") is not None else minimum
        if rate < minimum:
            logger.info(f"Raising hourly rate {rate} to minimum {minimum} for case {case.case_number}")
            rate = minimum

        entry = TimeEntry(
            firm_id=user.firm_id,
            case_id=case.id,
            user_id=user.id,
            description=data["description"],
            date=data.get("date") or utcnow(),
            hours=round_hours(data["hours"]),
            rate=rate,
            billable=data.get("billable", True),
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        logger.info(f"Recorded {entry.hours}h on case {case.case_number} by {user.username}")
        return entry

    def list_time_entries(self, db: Session, firm_id: int, case_id: Optional[int] = None,
                          unbilled_only: bool = False) -> List[TimeEntry]:
        query = db.query(TimeEntry).filter(TimeEntry.firm_id == firm_id)
        if case_id is not None:
            query = query.filter(TimeEntry.case_id == case_id)
        if unbilled_only:
            query = query.filter(TimeEntry.invoice_id.is_(None))
        return query.order_by(TimeEntry.date, TimeEntry.id).all()

    def create_billing_node(self, db: Session, firm_id: int, data: Dict[str, Any]) -> BillingNode:
        case = self._get_case(db, firm_id, data["case_id"])
        node = BillingNode(
            firm_id=firm_id,
            case_id=case.id,
            phase=CasePhase(data["phase"]).value,
            name=data["name"],
            amount=money(data["amount"]),
            order=data.get("order", 0),
        )
        db.add(node)
        db.commit()
        db.refresh(node)
        logger.info(f"Added billing node '{node.name}' ({node.phase}) to case {case.case_number}")
        return node

    def list_billing_nodes(self, db: Session, firm_id: int, case_id: int) -> List[BillingNode]:
        case = self._get_case(db, firm_id, case_id)
        return db.query(BillingNode).filter(BillingNode.case_id == case.id).order_by(
            BillingNode.order, BillingNode.id
        ).all()

    # Invoices

    def _next_invoice_number(self, db: Session, firm_id: int, issue_date: datetime) -> str:
        prefix = f"{settings.invoice_number_prefix}{issue_date.year:04d}{issue_date.month:02d}"
        numbers = db.query(Invoice.invoice_number).filter(
            Invoice.firm_id == firm_id,
            Invoice.invoice_number.like(f"{prefix}%")
        ).all()
        highest = 0
        for (number,) in numbers:
            suffix = number[len(prefix):]
            if suffix.isdigit():
                highest = max(highest, int(suffix))
        return f"{prefix}{highest + 1:04d}"

    def _next_fapiao_number(self, db: Session, firm_id: int) -> str:
        numbers = db.query(Invoice.fapiao_number).filter(
            Invoice.firm_id == firm_id,
            Invoice.fapiao_number.isnot(None)
        ).all()
        highest = max((int(number) for (number,) in numbers if number.isdigit()), default=0)
        return f"{highest + 1:08d}"

    def get_invoice(self, db: Session, firm_id: int, invoice_id: int) -> Invoice:
        invoice = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.firm_id == firm_id).first()
        if invoice is None:
            raise NotFoundError("Invoice not found")
        return invoice

    def list_invoices(self, db: Session, firm_id: int, status: Optional[InvoiceStatus] = None,
                      client_id: Optional[int] = None, case_id: Optional[int] = None,
                      skip: int = 0, limit: int = 100) -> List[Invoice]:
        query = db.query(Invoice).filter(Invoice.firm_id == firm_id)
        if status:
            query = query.filter(Invoice.status == status.value)
        if client_id is not None:
            query = query.filter(Invoice.client_id == client_id)
        if case_id is not None:
            query = query.filter(Invoice.case_id == case_id)
        return query.order_by(Invoice.id.desc()).offset(skip).limit(limit).all()

    def create_invoice(self, db: Session, user: User, data: Dict[str, Any],
                       now: Optional[datetime] = None) -> Invoice:
        try:
            client = self._get_client(db, user.firm_id, data["client_id"])
            if settings.require_tax_number and not client.tax_id:
                raise ValidationError("Client tax identification number is required for VAT invoices")

            case = self._get_case(db, user.firm_id, data["case_id"]) if data.get("case_id") else None

            lines = [
                _line(item.get("item_type", "fee"), item["description"], item.get("quantity", 1), item["unit_price"])
                for item in data.get("items") or []
            ]

            entries = []
            for entry_id in data.get("time_entry_ids") or []:
                entry = db.query(TimeEntry).filter(
                    TimeEntry.id == entry_id, TimeEntry.firm_id == user.firm_id
                ).first()
                if entry is None:
                    raise NotFoundError(f"Time entry {entry_id} not found")
                if entry.invoice_id is not None:
                    raise ConflictError(f"Time entry {entry_id} is already billed")
                if not entry.billable:
                    raise ValidationError(f"Time entry {entry_id} is not billable")
                entries.append(entry)
                lines.append(_line("time_entry", entry.description, entry.hours, entry.rate, entry.id))

            nodes = []
            for node_id in data.get("billing_node_ids") or []:
                node = db.query(BillingNode).filter(
                    BillingNode.id == node_id, BillingNode.firm_id == user.firm_id
                ).first()
                if node is None:
                    raise NotFoundError(f"Billing node {node_id} not found")
                if node.invoice_id is not None:
                    raise ConflictError(f"Billing node {node_id} is already billed")
                nodes.append(node)
                lines.append(_line("billing_node", node.name, 1, node.amount, node.id))

            if not lines:
                raise ValidationError("Invoice needs at least one item")

            issue_date = now or utcnow()
            subtotal = sum((line["amount"] for line in lines), Decimal("0"))
            tax_amount = sum((line["tax_amount"] for line in lines), Decimal("0"))

            invoice = Invoice(
                firm_id=user.firm_id,
                invoice_number=self._next_invoice_number(db, user.firm_id, issue_date),
                client_id=client.id,
                case_id=case.id if case else None,
                created_by_id=user.id,
                status=InvoiceStatus.DRAFT.value,
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=settings.payment_terms_days),
                subtotal=money(subtotal),
                tax_rate=to_decimal(settings.vat_rate),
                tax_amount=money(tax_amount),
                total=money(subtotal + tax_amount),
                amount_paid=Decimal("0"),
                currency=settings.currency,
                notes=data.get("notes"),
            )
            invoice.items = [InvoiceItem(**line) for line in lines]
            db.add(invoice)
            db.flush()

            for billed in entries + nodes:
                billed.invoice_id = invoice.id

            db.commit()
            db.refresh(invoice)
            logger.info(f"Created invoice {invoice.invoice_number} for client {client.id}: total {invoice.total}")
            return invoice

        except (NotFoundError, ValidationError, ConflictError):
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Error creating invoice: {str(e)}")
            db.rollback()
            raise

    def issue_invoice(self, db: Session, user: User, invoice_id: int, now: Optional[datetime] = None) -> Invoice:
        invoice = self.get_invoice(db, user.firm_id, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise ConflictError(f"Only draft invoices can be issued, invoice is {invoice.status}")

        now = now or utcnow()
        if settings.require_fapiao:
            invoice.fapiao_number = self._next_fapiao_number(db, user.firm_id)
            invoice.fapiao_check_code = fapiao_check_code(invoice.invoice_number, invoice.fapiao_number,
                                                          invoice.total)
            invoice.fapiao_issued_at = now
        invoice.status = InvoiceStatus.ISSUED.value

        db.commit()
        db.refresh(invoice)
        logger.info(f"Issued invoice {invoice.invoice_number} (fapiao {invoice.fapiao_number})")
        return invoice

    def record_payment(self, db: Session, user: User, invoice_id: int, amount, method: PaymentMethod,
                       transaction_id: Optional[str] = None, notes: Optional[str] = None,
                       now: Optional[datetime] = None) -> Invoice:
        invoice = self.get_invoice(db, user.firm_id, invoice_id)
        if invoice.status not in PAYABLE_STATUSES:
            raise ConflictError(f"Invoice is {invoice.status} and cannot accept payments")

        amount = money(amount)
        outstanding = money(invoice.outstanding)
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if amount > outstanding:
            raise ValidationError(f"Payment {amount} exceeds outstanding balance {outstanding}")
        if amount < outstanding and not settings.allow_partial_payments:
            raise ValidationError("Partial payments are not allowed")

        now = now or utcnow()
        invoice.payments.append(Payment(
            amount=amount,
            method=PaymentMethod(method).value,
            transaction_id=transaction_id,
            notes=notes,
            received_at=now,
        ))
        invoice.amount_paid = money(to_decimal(invoice.amount_paid) + amount)

        if invoice.amount_paid >= money(invoice.total):
            invoice.status = InvoiceStatus.PAID.value
            invoice.paid_at = now
            creator = db.query(User).filter(User.id == invoice.created_by_id).first()
            if creator is not None:
                notification_service.notify(
                    db, creator, NotificationType.BILLING, f"Invoice {invoice.invoice_number} paid",
                    f"Invoice {invoice.invoice_number} has been paid in full",
                    data={"invoice_id": invoice.id}, now=now,
                )
        else:
            invoice.status = InvoiceStatus.PARTIALLY_PAID.value

        db.commit()
        db.refresh(invoice)
        logger.info(f"Recorded payment of {amount} on invoice {invoice.invoice_number}, now {invoice.status}")
        return invoice

    def cancel_invoice(self, db: Session, user: User, invoice_id: int) -> Invoice:
        invoice = self.get_invoice(db, user.firm_id, invoice_id)
        if invoice.status not in (InvoiceStatus.DRAFT.value, InvoiceStatus.ISSUED.value) or invoice.payments:
            raise ConflictError(f"Invoice is {invoice.status} and cannot be cancelled")

        db.query(TimeEntry).filter(TimeEntry.invoice_id == invoice.id).update(
            {TimeEntry.invoice_id: None}, synchronize_session=False
        )
        db.query(BillingNode).filter(BillingNode.invoice_id == invoice.id).update(
            {BillingNode.invoice_id: None}, synchronize_session=False
        )
        invoice.status = InvoiceStatus.CANCELLED.value

        db.commit()
        db.expire_all()
        db.refresh(invoice)
        logger.info(f"Cancelled invoice {invoice.invoice_number} by {user.username}")
        return invoice

    def mark_overdue_invoices(self, db: Session, firm_id: Optional[int] = None,
                              now: Optional[datetime] = None) -> List[Invoice]:
        now = now or utcnow()
        query = db.query(Invoice).filter(
            Invoice.status.in_([InvoiceStatus.ISSUED.value, InvoiceStatus.PARTIALLY_PAID.value]),
            Invoice.due_date < now
        )
        if firm_id is not None:
            query = query.filter(Invoice.firm_id == firm_id)

        overdue = query.all()
        for invoice in overdue:
            invoice.status = InvoiceStatus.OVERDUE.value
            creator = db.query(User).filter(User.id == invoice.created_by_id).first()
            if creator is not None:
                notification_service.notify(
                    db, creator, NotificationType.BILLING, f"Invoice {invoice.invoice_number} overdue",
                    f"Outstanding balance {money(invoice.outstanding)} {invoice.currency} is past due",
                    data={"invoice_id": invoice.id}, now=now,
                )

        db.commit()
        if overdue:
            logger.info(f"Marked {len(overdue)} invoices overdue")
        return overdue

    def late_fee(self, db: Session, firm_id: int, invoice_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        invoice = self.get_invoice(db, firm_id, invoice_id)
        now = now or utcnow()

        seconds_overdue = max((now - invoice.due_date).total_seconds(), 0)
        days_overdue = int(seconds_overdue // 86400)
        outstanding = money(invoice.outstanding)
        if seconds_overdue == 0 or outstanding <= 0 or invoice.status == InvoiceStatus.CANCELLED.value:
            return {"invoice_id": invoice.id, "days_overdue": days_overdue, "periods": 0, "late_fee": Decimal("0.00")}

        # a period counts as soon as it has started
        periods = math.ceil(seconds_overdue / (LATE_FEE_PERIOD_DAYS * 86400))
        fee = money(outstanding * to_decimal(settings.late_fee_rate) * periods)
        return {"invoice_id": invoice.id, "days_overdue": days_overdue, "periods": periods, "late_fee": fee}

    def stage_billing(self, db: Session, firm_id: int, case_id: int) -> Dict[str, Any]:
        case = self._get_case(db, firm_id, case_id)

        nodes = db.query(BillingNode).filter(
            BillingNode.case_id == case.id,
            BillingNode.phase == case.phase,
            BillingNode.invoice_id.is_(None)
        ).order_by(BillingNode.order, BillingNode.id).all()
        entries = db.query(TimeEntry).filter(
            TimeEntry.case_id == case.id,
            TimeEntry.billable.is_(True),
            TimeEntry.invoice_id.is_(None)
        ).order_by(TimeEntry.date, TimeEntry.id).all()

        lines = [_line("billing_node", node.name, 1, node.amount, node.id) for node in nodes]
        lines += [_line("time_entry", entry.description, entry.hours, entry.rate, entry.id) for entry in entries]

        requirements = STAGE_REQUIREMENTS.get(case.phase, {"documents": [], "client_approval": False})
        categories = {
            (row[0] or "").lower() for row in db.query(Document.category).filter(
                Document.case_id == case.id, Document.is_latest.is_(True)
            ).all()
        }
        missing = [doc for doc in requirements["documents"] if doc.lower() not in categories]

        subtotal = sum((line["amount"] for line in lines), Decimal("0"))
        tax = sum((line["tax_amount"] for line in lines), Decimal("0"))
        claim = to_decimal(case.claim_amount)

        return {
            "case_id": case.id,
            "phase": case.phase,
            "suggested_items": [
                {key: float(value) if isinstance(value, Decimal) else value for key, value in line.items()}
                for line in lines
            ],
            "suggested_subtotal": money(subtotal),
            "suggested_tax": money(tax),
            "suggested_total": money(subtotal + tax),
            "required_documents": list(requirements["documents"]),
            "missing_documents": missing,
            "requires_client_approval": requirements["client_approval"],
            "requires_court_approval": claim > to_decimal(settings.court_approval_threshold),
        }

    # Trust accounts

    def _trust_account(self, db: Session, firm_id: int, client_id: int,
                       case_id: Optional[int]) -> Optional[TrustAccount]:
        query = db.query(TrustAccount).filter(
            TrustAccount.firm_id == firm_id,
            TrustAccount.client_id == client_id
        )
        if case_id is None:
            query = query.filter(TrustAccount.case_id.is_(None))
        else:
            query = query.filter(TrustAccount.case_id == case_id)
        return query.first()

    def get_trust_account(self, db: Session, firm_id: int, account_id: int) -> TrustAccount:
        account = db.query(TrustAccount).filter(
            TrustAccount.id == account_id, TrustAccount.firm_id == firm_id
        ).first()
        if account is None:
            raise NotFoundError("Trust account not found")
        return account

    def list_trust_accounts(self, db: Session, firm_id: int, client_id: Optional[int] = None) -> List[TrustAccount]:
        query = db.query(TrustAccount).filter(TrustAccount.firm_id == firm_id)
        if client_id is not None:
            query = query.filter(TrustAccount.client_id == client_id)
        return query.order_by(TrustAccount.id).all()

    def _record(self, account: TrustAccount, kind: TrustTransactionType, amount: Decimal,
                user: User, description: Optional[str]):
        account.transactions.append(TrustTransaction(
            transaction_type=kind.value,
            amount=amount,
            balance_after=account.balance,
            description=description,
            created_by_id=user.id,
        ))

    def deposit(self, db: Session, user: User, client_id: int, amount, case_id: Optional[int] = None,
                description: Optional[str] = None) -> TrustAccount:
        client = self._get_client(db, user.firm_id, client_id)
        if case_id is not None:
            self._get_case(db, user.firm_id, case_id)
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")

        account = self._trust_account(db, user.firm_id, client.id, case_id)
        if account is None:
            account = TrustAccount(
                firm_id=user.firm_id, client_id=client.id, case_id=case_id,
                balance=Decimal("0"), currency=settings.currency,
            )
            db.add(account)
            logger.info(f"Opened trust account for client {client.id}, case {case_id}")

        account.balance = money(to_decimal(account.balance) + amount)
        self._record(account, TrustTransactionType.DEPOSIT, amount, user, description)
        db.commit()
        db.refresh(account)
        logger.info(f"Trust deposit of {amount} for client {client.id}, balance {account.balance}")
        return account

    def withdraw(self, db: Session, user: User, client_id: int, amount, case_id: Optional[int] = None,
                 description: Optional[str] = None) -> TrustAccount:
        account = self._trust_account(db, user.firm_id, client_id, case_id)
        if account is None:
            raise NotFoundError("Trust account not found")
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("Withdrawal amount must be positive")
        if amount > money(account.balance):
            raise ValidationError(f"Withdrawal {amount} exceeds trust balance {money(account.balance)}")

        account.balance = money(to_decimal(account.balance) - amount)
        self._record(account, TrustTransactionType.WITHDRAWAL, amount, user, description)
        db.commit()
        db.refresh(account)
        logger.info(f"Trust withdrawal of {amount} for client {client_id}, balance {account.balance}")
        return account


billing_service = BillingService()

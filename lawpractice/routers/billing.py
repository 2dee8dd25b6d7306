from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user, get_current_admin_user, require_roles
from ..exceptions import PracticeError
from ..models.enums import InvoiceStatus, UserRole
from ..models.schemas import (
    FeeCalculationRequest, FeeCalculationResponse, TimeEntryCreate, TimeEntryResponse,
    BillingNodeCreate, BillingNodeResponse, InvoiceCreate, InvoiceResponse, PaymentCreate,
    LateFeeResponse, StageBillingResponse, TrustMovement, TrustAccountResponse
)
from ..services.billing_service import billing_service
from ..services.fee_calculator import fee_calculator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

billing_staff = require_roles(UserRole.ADMIN, UserRole.LAWYER)

@router.post("/fees/calculate", response_model=FeeCalculationResponse)
def calculate_fee(
    request: FeeCalculationRequest,
    current_user = Depends(get_current_user)
):
    """Calculate a legal fee with VAT under PRC fee rules."""
    return fee_calculator.calculate(
        request.fee_type,
        case_type=request.case_type.value if request.case_type else None,
        hours=request.hours,
        rate=request.rate,
        settlement_amount=request.settlement_amount,
        percentage=request.percentage,
        base_amount=request.base_amount,
        jurisdiction=request.jurisdiction,
        complexity=request.complexity,
    )

# Time entries and stage fees

@router.post("/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def record_time(
    entry: TimeEntryCreate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.record_time(db, current_user, entry.model_dump())

@router.get("/time-entries", response_model=List[TimeEntryResponse])
def list_time_entries(
    case_id: Optional[int] = None,
    unbilled_only: bool = False,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.list_time_entries(db, current_user.firm_id, case_id=case_id, unbilled_only=unbilled_only)

@router.post("/nodes", response_model=BillingNodeResponse, status_code=status.HTTP_201_CREATED)
def create_billing_node(
    node: BillingNodeCreate,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    return billing_service.create_billing_node(db, current_user.firm_id, node.model_dump())

@router.get("/cases/{case_id}/nodes", response_model=List[BillingNodeResponse])
def list_billing_nodes(
    case_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.list_billing_nodes(db, current_user.firm_id, case_id)

@router.get("/cases/{case_id}/stage-billing", response_model=StageBillingResponse)
def stage_billing(
    case_id: int,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    """Suggested invoice and compliance requirements for the case's current phase."""
    return billing_service.stage_billing(db, current_user.firm_id, case_id)

# Invoices

@router.post("/invoices", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def create_invoice(
    invoice: InvoiceCreate,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    try:
        return billing_service.create_invoice(db, current_user, invoice.model_dump())
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error creating invoice: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create invoice"
        )

@router.get("/invoices", response_model=List[InvoiceResponse])
def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    client_id: Optional[int] = None,
    case_id: Optional[int] = None,
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.list_invoices(
        db, current_user.firm_id, status=status_filter, client_id=client_id, case_id=case_id,
        skip=skip, limit=limit
    )

@router.post("/invoices/mark-overdue", response_model=List[InvoiceResponse])
def mark_overdue_invoices(
    current_user = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    return billing_service.mark_overdue_invoices(db, firm_id=current_user.firm_id)

@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.get_invoice(db, current_user.firm_id, invoice_id)

@router.post("/invoices/{invoice_id}/issue", response_model=InvoiceResponse)
def issue_invoice(
    invoice_id: int,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    """Issue a draft invoice and its fapiao."""
    return billing_service.issue_invoice(db, current_user, invoice_id)

@router.post("/invoices/{invoice_id}/payments", response_model=InvoiceResponse)
def record_payment(
    invoice_id: int,
    payment: PaymentCreate,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    return billing_service.record_payment(
        db, current_user, invoice_id, payment.amount, payment.method,
        transaction_id=payment.transaction_id, notes=payment.notes
    )

@router.post("/invoices/{invoice_id}/cancel", response_model=InvoiceResponse)
def cancel_invoice(
    invoice_id: int,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    return billing_service.cancel_invoice(db, current_user, invoice_id)

@router.get("/invoices/{invoice_id}/late-fee", response_model=LateFeeResponse)
def late_fee(
    invoice_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.late_fee(db, current_user.firm_id, invoice_id)

# Trust accounts

@router.post("/trust/deposit", response_model=TrustAccountResponse)
def trust_deposit(
    movement: TrustMovement,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    return billing_service.deposit(
        db, current_user, movement.client_id, movement.amount,
        case_id=movement.case_id, description=movement.description
    )

@router.post("/trust/withdraw", response_model=TrustAccountResponse)
def trust_withdraw(
    movement: TrustMovement,
    current_user = Depends(billing_staff),
    db: Session = Depends(get_db)
):
    return billing_service.withdraw(
        db, current_user, movement.client_id, movement.amount,
        case_id=movement.case_id, description=movement.description
    )

@router.get("/trust/accounts", response_model=List[TrustAccountResponse])
def list_trust_accounts(
    client_id: Optional[int] = None,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.list_trust_accounts(db, current_user.firm_id, client_id=client_id)

@router.get("/trust/accounts/{account_id}", response_model=TrustAccountResponse)
def get_trust_account(
    account_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return billing_service.get_trust_account(db, current_user.firm_id, account_id)

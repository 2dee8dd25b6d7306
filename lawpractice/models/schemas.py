from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from .enums import (
    UserRole, CaseType, CasePhase, CaseStatus, TaskPriority, DependencyType,
    DocumentType, DocumentStatus, FeeType, PaymentMethod, NotificationPriority, EmailFrequency
)

# Firm / User Schemas
class FirmRegister(BaseModel):
    firm_name: str = Field(..., min_length=1, max_length=200)
    firm_tax_id: Optional[str] = None
    firm_address: Optional[str] = None
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = ""
    last_name: str = ""

class FirmResponse(BaseModel):
    id: int
    name: str
    tax_id: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: str = ""
    last_name: str = ""
    phone: Optional[str] = None
    role: UserRole = UserRole.LAWYER

class UserResponse(BaseModel):
    id: int
    firm_id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: str
    is_active: bool
    is_admin: bool
    created_at: datetime

    class Config:
        from_attributes = True

class UserLogin(BaseModel):
    username: str
    password: str

class PasswordChange(BaseModel):
    current_password: str
    new_password: str

class Token(BaseModel):
    access_token: str
    token_type: str

class RegistrationResponse(BaseModel):
    firm: FirmResponse
    user: UserResponse
    access_token: str
    token_type: str = "bearer"

# Client Schemas
class ClientCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    company: Optional[str] = None
    id_number: Optional[str] = None
    tax_id: Optional[str] = None

class ClientUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    company: Optional[str] = None
    id_number: Optional[str] = None
    tax_id: Optional[str] = None

class ClientResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    company: Optional[str] = None
    id_number: Optional[str] = None
    tax_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

# Case Schemas
class CaseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    case_type: CaseType
    client_id: int
    lead_lawyer_id: Optional[int] = None
    start_date: Optional[datetime] = None
    expected_end_date: Optional[datetime] = None
    claim_amount: Optional[Decimal] = Field(None, ge=0)
    details: Dict[str, Any] = Field(default_factory=dict)

class CaseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    lead_lawyer_id: Optional[int] = None
    expected_end_date: Optional[datetime] = None
    claim_amount: Optional[Decimal] = Field(None, ge=0)
    settlement_amount: Optional[Decimal] = Field(None, ge=0)
    details: Optional[Dict[str, Any]] = None

class CaseResponse(BaseModel):
    id: int
    case_number: str
    title: str
    description: Optional[str] = None
    case_type: str
    phase: str
    status: str
    start_date: datetime
    expected_end_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    claim_amount: Optional[float] = None
    settlement_amount: Optional[float] = None
    client_id: int
    lead_lawyer_id: int
    details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class CaseCreateResponse(BaseModel):
    case: CaseResponse
    warnings: List[str]

class CaseStatusChange(BaseModel):
    status: CaseStatus
    reason: Optional[str] = None

class PhaseTransitionRequest(BaseModel):
    target_phase: CasePhase
    reason: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)

class TransitionOption(BaseModel):
    from_phase: str
    to_phase: str
    description: str
    allowed_roles: List[str]
    required_fields: List[str]
    conditions: List[Dict[str, Any]]

class PhaseHistoryResponse(BaseModel):
    id: int
    phase: str
    start_date: datetime
    end_date: Optional[datetime] = None
    notes: Optional[str] = None
    changed_by_id: Optional[int] = None

    class Config:
        from_attributes = True

class TeamMemberCreate(BaseModel):
    user_id: int
    role: str = "member"

class TeamMemberResponse(BaseModel):
    id: int
    case_id: int
    user_id: int
    role: str
    joined_at: datetime

    class Config:
        from_attributes = True

class PhaseChecklist(BaseModel):
    phase: str
    present: List[str]
    missing: List[str]
    completion: float

# Task Schemas
class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    case_id: Optional[int] = None
    assignee_id: Optional[int] = None

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None

class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    due_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    phase: Optional[str] = None
    case_id: Optional[int] = None
    assignee_id: Optional[int] = None
    created_by_id: int
    created_at: datetime

    class Config:
        from_attributes = True

class PhaseTransitionResponse(BaseModel):
    case: CaseResponse
    created_tasks: List[TaskResponse]
    warnings: List[str]

class TaskAssign(BaseModel):
    user_id: Optional[int] = None  # None picks by workload

class DependencyCreate(BaseModel):
    task_id: int
    depends_on_id: int
    dependency_type: DependencyType = DependencyType.BLOCKING

class DependencyTypeUpdate(BaseModel):
    dependency_type: DependencyType

class DependencyResponse(BaseModel):
    id: int
    task_id: int
    depends_on_id: int
    dependency_type: str
    created_at: datetime

    class Config:
        from_attributes = True

class BulkDependencyCreate(BaseModel):
    dependencies: List[DependencyCreate]

class BulkDependencyResult(BaseModel):
    created: List[DependencyResponse]
    failed: List[Dict[str, Any]]

class DependencyValidation(BaseModel):
    valid: bool
    errors: List[str]
    warnings: List[str]
    cycles: List[List[int]]

class DependencyGraph(BaseModel):
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]]

# Automation Schemas
class RuleCondition(BaseModel):
    field: str
    operator: str
    value: Any = None
    weight: float = 1.0

class RuleAction(BaseModel):
    type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    failure_strategy: str = Field("continue", pattern="^(continue|stop)$")

class RuleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    category: str = "task_assignment"
    trigger_event: str
    priority: int = 100
    is_active: bool = True
    match: str = Field("all", pattern="^(all|any)$")
    conditions: List[RuleCondition] = Field(default_factory=list)
    actions: List[RuleAction] = Field(default_factory=list)

class RuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    category: Optional[str] = None
    trigger_event: Optional[str] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    match: Optional[str] = Field(None, pattern="^(all|any)$")
    conditions: Optional[List[RuleCondition]] = None
    actions: Optional[List[RuleAction]] = None

class RuleResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    trigger_event: str
    priority: int
    is_active: bool
    match: str
    conditions: List[Dict[str, Any]]
    actions: List[Dict[str, Any]]
    trigger_count: int
    success_count: int
    failure_count: int
    last_triggered_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class EvaluateRequest(BaseModel):
    event_type: str
    task_id: Optional[int] = None
    case_id: Optional[int] = None
    data: Dict[str, Any] = Field(default_factory=dict)

class RuleExecutionResult(BaseModel):
    rule_id: int
    rule_name: str
    matched: bool
    score: float
    confidence: float
    actions: List[Dict[str, Any]]
    error: Optional[str] = None

# Billing Schemas
class FeeCalculationRequest(BaseModel):
    fee_type: FeeType
    case_type: Optional[CaseType] = None
    hours: Optional[Decimal] = Field(None, ge=0)
    rate: Optional[Decimal] = Field(None, ge=0)
    settlement_amount: Optional[Decimal] = Field(None, ge=0)
    percentage: Optional[Decimal] = Field(None, ge=0)
    base_amount: Optional[Decimal] = Field(None, ge=0)
    jurisdiction: str = Field("local", pattern="^(local|provincial|national)$")
    complexity: str = Field("simple", pattern="^(simple|medium|complex)$")

class FeeCalculationResponse(BaseModel):
    fee_type: str
    base_fee: float
    adjusted_fee: float
    vat_rate: float
    vat_amount: float
    total_with_vat: float
    currency: str
    breakdown: Dict[str, Any]
    compliance_notes: List[str]
    requires_court_approval: bool
    requires_trust_account: bool

class TimeEntryCreate(BaseModel):
    case_id: int
    description: str = Field(..., min_length=1)
    date: Optional[datetime] = None
    hours: Decimal = Field(..., gt=0)
    rate: Optional[Decimal] = Field(None, ge=0)
    billable: bool = True

class TimeEntryResponse(BaseModel):
    id: int
    case_id: int
    user_id: int
    description: str
    date: datetime
    hours: float
    rate: float
    amount: float
    billable: bool
    invoice_id: Optional[int] = None

    class Config:
        from_attributes = True

class BillingNodeCreate(BaseModel):
    case_id: int
    phase: CasePhase
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    order: int = 0

class BillingNodeResponse(BaseModel):
    id: int
    case_id: int
    phase: str
    name: str
    amount: float
    order: int
    invoice_id: Optional[int] = None

    class Config:
        from_attributes = True

class InvoiceItemCreate(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(Decimal("1"), gt=0)
    unit_price: Decimal = Field(..., ge=0)
    item_type: str = "fee"

class InvoiceCreate(BaseModel):
    client_id: int
    case_id: Optional[int] = None
    items: List[InvoiceItemCreate] = Field(default_factory=list)
    time_entry_ids: List[int] = Field(default_factory=list)
    billing_node_ids: List[int] = Field(default_factory=list)
    notes: Optional[str] = None

class InvoiceItemResponse(BaseModel):
    id: int
    item_type: str
    description: str
    quantity: float
    unit_price: float
    amount: float
    tax_amount: float
    total: float

    class Config:
        from_attributes = True

class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    transaction_id: Optional[str] = None
    notes: Optional[str] = None

class PaymentResponse(BaseModel):
    id: int
    amount: float
    method: str
    transaction_id: Optional[str] = None
    received_at: datetime

    class Config:
        from_attributes = True

class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    client_id: int
    case_id: Optional[int] = None
    status: str
    issue_date: datetime
    due_date: datetime
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    amount_paid: float
    outstanding: float
    currency: str
    notes: Optional[str] = None
    fapiao_number: Optional[str] = None
    fapiao_check_code: Optional[str] = None
    fapiao_issued_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    items: List[InvoiceItemResponse] = []
    payments: List[PaymentResponse] = []

    class Config:
        from_attributes = True

class LateFeeResponse(BaseModel):
    invoice_id: int
    days_overdue: int
    periods: int
    late_fee: float

class StageBillingResponse(BaseModel):
    case_id: int
    phase: str
    suggested_items: List[Dict[str, Any]]
    suggested_subtotal: float
    suggested_tax: float
    suggested_total: float
    required_documents: List[str]
    missing_documents: List[str]
    requires_client_approval: bool
    requires_court_approval: bool

class TrustMovement(BaseModel):
    client_id: int
    case_id: Optional[int] = None
    amount: Decimal = Field(..., gt=0)
    description: Optional[str] = None

class TrustTransactionResponse(BaseModel):
    id: int
    transaction_type: str
    amount: float
    balance_after: float
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class TrustAccountResponse(BaseModel):
    id: int
    client_id: int
    case_id: Optional[int] = None
    balance: float
    currency: str
    transactions: List[TrustTransactionResponse] = []

    class Config:
        from_attributes = True

# Document Schemas
class DocumentResponse(BaseModel):
    id: int
    filename: str
    original_name: str
    size: int
    mime_type: Optional[str] = None
    file_format: str
    document_type: str
    status: str
    category: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    version: int
    parent_id: Optional[int] = None
    is_latest: bool
    case_id: Optional[int] = None
    client_id: Optional[int] = None
    uploaded_by_id: int
    ocr_status: Optional[str] = None
    extracted_metadata: Optional[Dict[str, Any]] = None
    content_hash: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

class DocumentUpdate(BaseModel):
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    category: Optional[str] = None
    document_type: Optional[DocumentType] = None

class DocumentStatusUpdate(BaseModel):
    status: DocumentStatus

class DocumentVersionResponse(BaseModel):
    id: int
    document_id: int
    version: int
    changes: Optional[str] = None
    created_by_id: int
    created_at: datetime

    class Config:
        from_attributes = True

class StorageStats(BaseModel):
    total_documents: int
    total_size: int
    by_type: Dict[str, int]
    by_status: Dict[str, int]
    by_format: Dict[str, int]
    ocr_processed: int

# Search Schemas
class DocumentSearch(BaseModel):
    query: str = Field(..., min_length=1)
    case_id: Optional[int] = None
    document_type: Optional[DocumentType] = None
    status: Optional[DocumentStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, ge=1, le=50)

class SearchResult(BaseModel):
    document_id: int
    original_name: str
    document_type: str
    case_id: Optional[int] = None
    score: float
    excerpt: str
    highlights: List[str]

class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]
    total_results: int
    search_time: float

class SearchStats(BaseModel):
    total_searches: int
    zero_result_searches: int
    top_queries: List[Dict[str, Any]]

# Notification Schemas
class NotificationResponse(BaseModel):
    id: int
    notification_type: str
    title: str
    message: str
    priority: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    email_pending: bool
    created_at: datetime

    class Config:
        from_attributes = True

class NotificationPreferenceUpdate(BaseModel):
    email_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    task_assignment: Optional[bool] = None
    task_deadline: Optional[bool] = None
    task_completion: Optional[bool] = None
    task_escalation: Optional[bool] = None
    case_updates: Optional[bool] = None
    billing: Optional[bool] = None
    email_frequency: Optional[EmailFrequency] = None
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: Optional[str] = None

class NotificationPreferenceResponse(BaseModel):
    email_enabled: bool
    in_app_enabled: bool
    task_assignment: bool
    task_deadline: bool
    task_completion: bool
    task_escalation: bool
    case_updates: bool
    billing: bool
    email_frequency: str
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: str

    class Config:
        from_attributes = True

class NotificationStats(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, int]
    by_priority: Dict[str, int]

class SystemNotification(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    priority: NotificationPriority = NotificationPriority.NORMAL
    user_ids: Optional[List[int]] = None

# Error Schemas
class ErrorResponse(BaseModel):
    detail: str
    status_code: int
    timestamp: datetime
    errors: Optional[List[str]] = None

# Health Check Schema
class HealthCheck(BaseModel):
    status: str
    timestamp: datetime
    version: str
    services: Dict[str, str]

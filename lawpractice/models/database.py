from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON, Numeric, Float,
    UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

class Firm(Base):
    __tablename__ = "firms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    tax_id = Column(String(50))
    address = Column(String(300))
    created_at = Column(DateTime, default=func.now())

    users = relationship("User", back_populates="firm")

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    first_name = Column(String(100), default="")
    last_name = Column(String(100), default="")
    phone = Column(String(50))
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False, default="LAWYER")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    firm = relationship("Firm", back_populates="users")
    search_queries = relationship("SearchQuery", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    @property
    def full_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.username

class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(100))
    phone = Column(String(50))
    address = Column(String(300))
    company = Column(String(200))
    id_number = Column(String(50))
    tax_id = Column(String(50))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    cases = relationship("Case", back_populates="client")

class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (UniqueConstraint("firm_id", "case_number", name="uq_case_number_per_firm"),)

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    case_number = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    case_type = Column(String(50), nullable=False)
    phase = Column(String(50), nullable=False, default="INTAKE_RISK_ASSESSMENT")
    status = Column(String(20), nullable=False, default="DRAFT")
    start_date = Column(DateTime, nullable=False)
    expected_end_date = Column(DateTime)
    actual_end_date = Column(DateTime)
    claim_amount = Column(Numeric(14, 2))
    settlement_amount = Column(Numeric(14, 2))
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    lead_lawyer_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    details = Column(JSON, default=dict)  # Facts checked by phase transition rules
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    client = relationship("Client", back_populates="cases")
    lead_lawyer = relationship("User")
    team_members = relationship("CaseTeamMember", back_populates="case", cascade="all, delete-orphan")
    phase_history = relationship(
        "CasePhaseHistory", back_populates="case", cascade="all, delete-orphan",
        order_by="CasePhaseHistory.id"
    )
    tasks = relationship("Task", back_populates="case", cascade="all, delete-orphan")

class CaseTeamMember(Base):
    __tablename__ = "case_team_members"
    __table_args__ = (UniqueConstraint("case_id", "user_id", name="uq_case_team_member"),)

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    role = Column(String(50), nullable=False, default="member")
    joined_at = Column(DateTime, default=func.now())

    case = relationship("Case", back_populates="team_members")
    user = relationship("User")

class CasePhaseHistory(Base):
    __tablename__ = "case_phase_history"

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False, index=True)
    phase = Column(String(50), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime)
    notes = Column(Text)
    changed_by_id = Column(Integer, ForeignKey("users.id"))

    case = relationship("Case", back_populates="phase_history")

class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="PENDING")
    priority = Column(String(20), nullable=False, default="MEDIUM")
    due_date = Column(DateTime)
    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    phase = Column(String(50))  # Set on tasks generated for a case phase
    case_id = Column(Integer, ForeignKey("cases.id"), index=True)
    assignee_id = Column(Integer, ForeignKey("users.id"), index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    case = relationship("Case", back_populates="tasks")
    assignee = relationship("User", foreign_keys=[assignee_id])
    created_by = relationship("User", foreign_keys=[created_by_id])
    dependencies = relationship(
        "TaskDependency", foreign_keys="TaskDependency.task_id",
        back_populates="task", cascade="all, delete-orphan"
    )
    dependents = relationship(
        "TaskDependency", foreign_keys="TaskDependency.depends_on_id",
        back_populates="depends_on", cascade="all, delete-orphan"
    )

class TaskDependency(Base):
    __tablename__ = "task_dependencies"
    __table_args__ = (UniqueConstraint("task_id", "depends_on_id", name="uq_task_dependency"),)

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    depends_on_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    dependency_type = Column(String(20), nullable=False, default="BLOCKING")
    created_at = Column(DateTime, default=func.now())

    task = relationship("Task", foreign_keys=[task_id], back_populates="dependencies")
    depends_on = relationship("Task", foreign_keys=[depends_on_id], back_populates="dependents")

class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    category = Column(String(50), default="task_assignment")
    trigger_event = Column(String(50), nullable=False)
    priority = Column(Integer, default=100)  # Lower runs first
    is_active = Column(Boolean, default=True)
    match = Column(String(10), default="all")  # all | any
    conditions = Column(JSON, default=list)
    actions = Column(JSON, default=list)
    trigger_count = Column(Integer, default=0)
    success_count = Column(Integer, default=0)
    failure_count = Column(Integer, default=0)
    last_triggered_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

class TimeEntry(Base):
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(DateTime, nullable=False)
    hours = Column(Numeric(8, 2), nullable=False)
    rate = Column(Numeric(10, 2), nullable=False)
    billable = Column(Boolean, default=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"))
    created_at = Column(DateTime, default=func.now())

    @property
    def amount(self):
        return self.hours * self.rate

class BillingNode(Base):
    __tablename__ = "billing_nodes"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False, index=True)
    phase = Column(String(50), nullable=False)
    name = Column(String(200), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    order = Column(Integer, default=0)
    invoice_id = Column(Integer, ForeignKey("invoices.id"))
    created_at = Column(DateTime, default=func.now())

class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("firm_id", "invoice_number", name="uq_invoice_number_per_firm"),)

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    invoice_number = Column(String(30), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    case_id = Column(Integer, ForeignKey("cases.id"))
    created_by_id = Column(Integer, ForeignKey("users.id"))
    status = Column(String(20), nullable=False, default="DRAFT")
    issue_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    tax_rate = Column(Numeric(5, 4), nullable=False)
    tax_amount = Column(Numeric(14, 2), nullable=False)
    total = Column(Numeric(14, 2), nullable=False)
    amount_paid = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), default="CNY")
    notes = Column(Text)
    fapiao_number = Column(String(20))
    fapiao_check_code = Column(String(20))
    fapiao_issued_at = Column(DateTime)
    paid_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    client = relationship("Client")
    items = relationship("InvoiceItem", back_populates="invoice", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="invoice", cascade="all, delete-orphan")

    @property
    def outstanding(self):
        return self.total - (self.amount_paid or 0)

class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    item_type = Column(String(20), nullable=False)  # fee | time_entry | billing_node | expense
    description = Column(Text, nullable=False)
    quantity = Column(Numeric(10, 2), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    tax_amount = Column(Numeric(14, 2), nullable=False)
    total = Column(Numeric(14, 2), nullable=False)
    source_id = Column(Integer)

    invoice = relationship("Invoice", back_populates="items")

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    method = Column(String(20), nullable=False)
    transaction_id = Column(String(100))
    notes = Column(Text)
    received_at = Column(DateTime, default=func.now())

    invoice = relationship("Invoice", back_populates="payments")

class TrustAccount(Base):
    __tablename__ = "trust_accounts"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False)
    case_id = Column(Integer, ForeignKey("cases.id"))
    balance = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), default="CNY")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())

    transactions = relationship(
        "TrustTransaction", back_populates="account", cascade="all, delete-orphan",
        order_by="TrustTransaction.id"
    )

class TrustTransaction(Base):
    __tablename__ = "trust_transactions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("trust_accounts.id"), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    description = Column(Text)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=func.now())

    account = relationship("TrustAccount", back_populates="transactions")

class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    filename = Column(String(300), nullable=False)
    original_name = Column(String(300), nullable=False)
    path = Column(String(500), nullable=False)
    size = Column(Integer, nullable=False)
    mime_type = Column(String(100))
    file_format = Column(String(10), nullable=False)
    document_type = Column(String(30), nullable=False, default="OTHER")
    status = Column(String(20), nullable=False, default="DRAFT")
    category = Column(String(100))
    description = Column(Text)
    tags = Column(JSON, default=list)
    version = Column(Integer, nullable=False, default=1)
    parent_id = Column(Integer, ForeignKey("documents.id"))
    is_latest = Column(Boolean, default=True)
    case_id = Column(Integer, ForeignKey("cases.id"), index=True)
    client_id = Column(Integer, ForeignKey("clients.id"))
    uploaded_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    extracted_text = Column(Text)
    ocr_status = Column(String(20), default="not_required")
    extracted_metadata = Column(JSON)  # Keywords, entities, counts
    content_hash = Column(String(64))
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    case = relationship("Case")

class DocumentVersion(Base):
    __tablename__ = "document_versions"
    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version"),)

    id = Column(Integer, primary_key=True, index=True)
    document_id = Column(Integer, ForeignKey("documents.id"), nullable=False)
    version = Column(Integer, nullable=False)
    changes = Column(Text)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=func.now())

class SearchQuery(Base):
    __tablename__ = "search_queries"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    query = Column(Text, nullable=False)
    results_count = Column(Integer, default=0)
    search_metadata = Column(JSON)  # Search filters
    result_document_ids = Column(JSON)
    created_at = Column(DateTime, default=func.now())

    user = relationship("User", back_populates="search_queries")

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    firm_id = Column(Integer, ForeignKey("firms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    notification_type = Column(String(30), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(10), nullable=False, default="NORMAL")
    data = Column(JSON)
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime)
    email_pending = Column(Boolean, default=False)
    # False for rows kept only to feed the e-mail digest
    in_app = Column(Boolean, default=True)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=func.now())

class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    email_enabled = Column(Boolean, default=True)
    in_app_enabled = Column(Boolean, default=True)
    task_assignment = Column(Boolean, default=True)
    task_deadline = Column(Boolean, default=True)
    task_completion = Column(Boolean, default=True)
    task_escalation = Column(Boolean, default=True)
    case_updates = Column(Boolean, default=True)
    billing = Column(Boolean, default=True)
    email_frequency = Column(String(10), default="IMMEDIATE")
    quiet_hours_start = Column(String(5))
    quiet_hours_end = Column(String(5))
    timezone = Column(String(50), default="Asia/Shanghai")
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

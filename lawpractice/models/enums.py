from enum import Enum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    LAWYER = "LAWYER"
    PARALEGAL = "PARALEGAL"
    ASSISTANT = "ASSISTANT"
    ARCHIVIST = "ARCHIVIST"


class CaseType(str, Enum):
    LABOR_DISPUTE = "LABOR_DISPUTE"
    MEDICAL_MALPRACTICE = "MEDICAL_MALPRACTICE"
    CRIMINAL_DEFENSE = "CRIMINAL_DEFENSE"
    DIVORCE_FAMILY = "DIVORCE_FAMILY"
    INHERITANCE_DISPUTE = "INHERITANCE_DISPUTE"
    CONTRACT_DISPUTE = "CONTRACT_DISPUTE"
    ADMINISTRATIVE_CASE = "ADMINISTRATIVE_CASE"
    DEMOLITION_CASE = "DEMOLITION_CASE"
    SPECIAL_MATTER = "SPECIAL_MATTER"


class CasePhase(str, Enum):
    INTAKE_RISK_ASSESSMENT = "INTAKE_RISK_ASSESSMENT"
    PRE_PROCEEDING_PREP = "PRE_PROCEEDING_PREP"
    FORMAL_PROCEEDINGS = "FORMAL_PROCEEDINGS"
    RESOLUTION_POST = "RESOLUTION_POST"
    CLOSURE_REVIEW = "CLOSURE_REVIEW"


class CaseStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ON_HOLD = "ON_HOLD"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class DependencyType(str, Enum):
    BLOCKING = "BLOCKING"
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class DocumentType(str, Enum):
    LEGAL_DOCUMENT = "LEGAL_DOCUMENT"
    EVIDENCE = "EVIDENCE"
    CONTRACT = "CONTRACT"
    CORRESPONDENCE = "CORRESPONDENCE"
    COURT_FILING = "COURT_FILING"
    RESEARCH = "RESEARCH"
    TEMPLATE = "TEMPLATE"
    OTHER = "OTHER"


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    SIGNED = "SIGNED"
    FILED = "FILED"
    ARCHIVED = "ARCHIVED"


class FeeType(str, Enum):
    HOURLY = "HOURLY"
    CONTINGENCY = "CONTINGENCY"
    FLAT = "FLAT"
    RETAINER = "RETAINER"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    WECHAT_PAY = "WECHAT_PAY"
    ALIPAY = "ALIPAY"
    CREDIT_CARD = "CREDIT_CARD"


class TrustTransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class NotificationType(str, Enum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_DUE = "TASK_DUE"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_ESCALATED = "TASK_ESCALATED"
    CASE_UPDATE = "CASE_UPDATE"
    BILLING = "BILLING"
    SYSTEM = "SYSTEM"


class NotificationPriority(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class EmailFrequency(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    NEVER = "NEVER"


PHASE_ORDER = [
    CasePhase.INTAKE_RISK_ASSESSMENT,
    CasePhase.PRE_PROCEEDING_PREP,
    CasePhase.FORMAL_PROCEEDINGS,
    CasePhase.RESOLUTION_POST,
    CasePhase.CLOSURE_REVIEW,
]

PRIORITY_WEIGHTS = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
    TaskPriority.URGENT: 4,
}

OPEN_TASK_STATUSES = [TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value, TaskStatus.OVERDUE.value]

from .document_processor import LangChainDocumentProcessor as DocumentProcessor, document_processor
from .notification_service import NotificationService, notification_service
from .rule_engine import rule_engine
from .task_service import task_service
from .task_dependency_service import task_dependency_service
from .case_service import case_service
from .client_service import client_service
from .tenancy_service import tenancy_service
from .document_service import document_service
from .search_service import search_service
from .billing_service import billing_service
from .fee_calculator import fee_calculator

__all__ = [
    "DocumentProcessor",
    "document_processor",
    "NotificationService",
    "notification_service",
    "rule_engine",
    "task_service",
    "task_dependency_service",
    "case_service",
    "client_service",
    "tenancy_service",
    "document_service",
    "search_service",
    "billing_service",
    "fee_calculator"
]

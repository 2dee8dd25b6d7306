from typing import List, Optional


class PracticeError(Exception):
    """Base class for domain errors raised by the service layer."""
    status_code = 500

    def __init__(self, detail: str, errors: Optional[List[str]] = None):
        super().__init__(detail)
        self.detail = detail
        self.errors = errors or []


class NotFoundError(PracticeError):
    status_code = 404


class ValidationError(PracticeError):
    status_code = 400


class ConflictError(PracticeError):
    status_code = 409


class PermissionDeniedError(PracticeError):
    status_code = 403


class TransitionError(PracticeError):
    """Raised when a case phase or status change is rejected."""
    status_code = 422


class PayloadTooLargeError(PracticeError):
    status_code = 413

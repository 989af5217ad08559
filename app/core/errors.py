"""
Application error taxonomy.

Services raise these; the API layer renders them as JSON with the status code
carried on the exception. Messages must be safe to show to end users.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthorizationError(AppError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")
        self.resource = resource


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class PaymentError(AppError):
    """Business-rule or gateway processing failure. Message is user-facing."""
    status_code = 402
    code = "PAYMENT_ERROR"

    def __init__(self, message: str, gateway_code: Optional[str] = None):
        super().__init__(message)
        self.gateway_code = gateway_code


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service temporarily unavailable"):
        super().__init__(message)


class InternalError(AppError):
    status_code = 500
    code = "INTERNAL_ERROR"

"""
Exception taxonomy for the emergency subsystem.
Exceptions carry their HTTP status so endpoints can let them propagate.
"""

from typing import Optional
from fastapi import HTTPException, status


class EmergencyException(HTTPException):
    """Base emergency subsystem exception."""
    error_code = "emergency_error"


class ValidationException(EmergencyException):
    """Malformed sensor, coordinate or contact input."""
    error_code = "validation_error"

    def __init__(self, detail: str = "Invalid input"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail
        )


class NotFoundException(EmergencyException):
    """Unknown alert id."""
    error_code = "not_found"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail
        )


class StateConflictException(EmergencyException):
    """Illegal backward lifecycle transition."""
    error_code = "state_conflict"

    def __init__(self, detail: str = "Illegal alert state transition"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail
        )


class ProviderUnavailableException(EmergencyException):
    """A risk feed or notification channel is unreachable or not configured."""
    error_code = "provider_unavailable"

    def __init__(self, provider: str, reason: Optional[str] = None):
        self.provider = provider
        self.reason = reason or "unavailable"
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{provider}: {self.reason}"
        )

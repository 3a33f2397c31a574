"""
Domain exceptions for device sync and enrollment

Each exception is an HTTPException so the central handler in app.core.errors
renders it in the common error envelope. The machine-readable ``code`` is
carried alongside the human ``detail``.
"""
from typing import Optional
from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Base class for errors raised by the sync and enrollment services"""

    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "SERVICE_ERROR"

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.status_code_default, detail=detail)


class ValidationError(ServiceError):
    """Malformed input to an operation (bad date range, bad device parameters)"""

    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "VALIDATION_ERROR"


class NotFoundError(ServiceError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class DeviceConnectionError(ServiceError):
    """
    A terminal could not be reached or refused the session.

    ``kind`` is one of UNREACHABLE, AUTH_REJECTED or TIMEOUT and comes
    straight from the transport.
    """

    status_code_default = status.HTTP_502_BAD_GATEWAY

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        code_status = (
            status.HTTP_504_GATEWAY_TIMEOUT if kind == "TIMEOUT" else status.HTTP_502_BAD_GATEWAY
        )
        super().__init__(detail=reason, status_code=code_status)

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"DEVICE_{self.kind}"


class DeviceUnreachableError(DeviceConnectionError):
    """Raised when a pull or enrollment read cannot talk to the terminal"""


class AlreadyAppliedError(ServiceError):
    status_code_default = status.HTTP_409_CONFLICT
    code = "ALREADY_APPLIED"


class SessionExpiredError(ServiceError):
    """Enrollment session expired, was cancelled, or was superseded by a newer one"""

    status_code_default = status.HTTP_410_GONE
    code = "SESSION_EXPIRED"


class AmbiguousEnrollmentError(ServiceError):
    """More than one new terminal user appeared during a single enrollment session"""

    status_code_default = status.HTTP_409_CONFLICT
    code = "AMBIGUOUS_ENROLLMENT"

    def __init__(self, detail: str, candidates: Optional[list] = None):
        self.candidates = candidates or []
        super().__init__(detail=detail)

"""
Error taxonomy for booking and parking operations.

Every error carries an HTTP status, a stable machine code and a human
readable message. The API layer renders them as
{"detail": message, "code": code, **details}.
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code, **self.details}


class ValidationError(ServiceError):
    status_code = 400
    code = "validation_error"


class AuthorizationError(ServiceError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class ConflictError(ServiceError):
    """An overlapping reservation blocks the requested window."""
    status_code = 409
    code = "conflict"


class CapacityExceededError(ConflictError):
    code = "capacity_exceeded"


class DuplicateRequestError(ServiceError):
    status_code = 409
    code = "duplicate_request"


class AlreadyProcessedError(ServiceError):
    status_code = 409
    code = "already_processed"


class ConcurrentUpdateError(ServiceError):
    status_code = 409
    code = "concurrent_update"

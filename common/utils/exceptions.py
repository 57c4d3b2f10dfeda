"""
Error types raised by the services and rendered by the API.

Each subclass fixes an HTTP status and a fallback error code. Services
raise them with a specific code (CHILD_NOT_FOUND, INVALID_PAYLOAD, ...)
and the app-level handler turns them into the error envelope.

Example:
    from common.utils import NotFoundException

    child = await children.find_one({"_id": child_oid, "isActive": True})
    if not child:
        raise NotFoundException(f"Child {child_id} not found", code="CHILD_NOT_FOUND")
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from common.utils.responses import error_response


class APIException(HTTPException):
    """Base class carrying a machine-readable code next to the message."""

    status = 500
    default_code = "INTERNAL_ERROR"
    default_message = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(
            status_code=self.status,
            detail={"message": self.message, "code": self.code, "details": details},
            headers=headers,
        )

    def to_response(self) -> Dict[str, Any]:
        """The error envelope for this exception."""
        return error_response(self.message, code=self.code, details=self.details)


class ValidationException(APIException):
    """400 - bad payload, counts out of range, unknown content kind."""

    status = 400
    default_code = "VALIDATION_ERROR"
    default_message = "Validation error"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Any] = None,
        errors: Optional[List[str]] = None,
    ):
        if errors:
            details = {**(details or {}), "errors": errors}
        super().__init__(message, code, details)


class NotFoundException(APIException):
    """404 - child, content item, course or progress record missing."""

    status = 404
    default_code = "NOT_FOUND"
    default_message = "Not found"


class ConflictException(APIException):
    """409 - a write lost a race it could not recover from."""

    status = 409
    default_code = "CONFLICT"
    default_message = "Conflict"


class DependencyException(APIException):
    """424 - a collaborator needed to finish the request failed."""

    status = 424
    default_code = "DEPENDENCY_FAILED"
    default_message = "Dependency failed"

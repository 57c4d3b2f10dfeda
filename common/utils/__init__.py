"""
Response envelopes and the exceptions rendered into them.
"""

from common.utils.responses import success_response, error_response, paginated_response
from common.utils.exceptions import (
    APIException,
    ValidationException,
    NotFoundException,
    ConflictException,
    DependencyException,
)

__all__ = [
    "success_response",
    "error_response",
    "paginated_response",
    "APIException",
    "ValidationException",
    "NotFoundException",
    "ConflictException",
    "DependencyException",
]

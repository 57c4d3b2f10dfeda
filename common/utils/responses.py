"""
Response envelopes returned by every route.

Success bodies look like {"success": true, "data": ..., "message": ...};
failures like {"success": false, "error": {"code": ..., "message": ...}}.
"""

import math
from typing import Any, Dict, List, Optional


def _without_none(**fields) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def success_response(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """
    Wrap a route result.

    Args:
        data: JSON-serializable payload, omitted when None
        message: Short human-readable summary, omitted when empty

    Returns:
        Success envelope
    """
    return {"success": True, **_without_none(data=data, message=message or None)}


def error_response(message: str, code: Optional[str] = None, details: Optional[Any] = None) -> Dict[str, Any]:
    """Failure envelope with the error code and any details."""
    return {"success": False, "error": _without_none(message=message, code=code, details=details)}


def paginated_response(items: List[Any], total: int, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    """
    Success envelope for one page of a longer list.

    Args:
        items: Items on this page
        total: Item count over all pages
        page: 1-based page number
        limit: Page size

    Returns:
        Success envelope with a pagination block
    """
    pages = math.ceil(total / limit) if limit > 0 else 0
    return {
        "success": True,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": pages,
            "hasNextPage": page < pages,
            "hasPreviousPage": page > 1,
        },
    }

"""Helpers building the ``{success, message, data}`` envelope."""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from flask import jsonify


def success_response(data: Any = None, message: str = "", status: int = 200):
    return jsonify({"success": True, "message": message, "data": data}), status


def paginate_payload(items: List[Any], page: int, page_size: int, total: int, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "items": items,
        "pagination": {
            "page": page,
            "pages": math.ceil(total / page_size) if page_size else 0,
            "page_size": page_size,
            "total": total,
        },
    }
    payload.update(extra)
    return payload


def parse_positive_int(value: Optional[str], default: int, maximum: Optional[int] = None) -> int:
    """Lenient query-string integer parsing used for page and limit arguments."""
    try:
        parsed = int(value) if value is not None else default
    except (TypeError, ValueError):
        parsed = default
    if parsed < 1:
        parsed = default
    if maximum is not None:
        parsed = min(parsed, maximum)
    return parsed

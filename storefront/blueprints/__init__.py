from typing import Any, Dict

from flask import request

from storefront.errors import BadRequestError


def json_body() -> Dict[str, Any]:
    """Request JSON object; an absent body is treated as ``{}``."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object")
    return payload

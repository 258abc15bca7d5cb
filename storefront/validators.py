"""
Input validation and sanitization shared by the HTTP layer and services.

Validators return a dict of field -> message; an empty dict means the input
is valid. Callers raise ``ValidationError`` with that dict.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import bleach

from storefront.models import FeedbackStatus, FeedbackType

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_PATTERN = re.compile(r"^\+?\d{7,15}$")

DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 1000
MAX_SELECTED_ISSUES = 5
MAX_PAGE_SIZE = 100
MAX_DATE_RANGE = timedelta(days=366)

SHIPPING_ADDRESS_FIELDS = ("full_name", "phone", "address", "city", "zip_code", "country")


def sanitize_text(value: Optional[str]) -> str:
    """Strip every HTML tag and surrounding whitespace."""
    if value is None:
        return ""
    # Stored as plain text; only the ampersand escape is undone
    return bleach.clean(str(value), tags=[], strip=True).replace("&amp;", "&").strip()


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value.strip()))


def is_valid_phone(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    compact = re.sub(r"[\s\-()]", "", value)
    return bool(PHONE_PATTERN.match(compact))


def missing_fields(payload: Mapping[str, Any], fields: Iterable[str]) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for field_name in fields:
        value = payload.get(field_name)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors[field_name] = f"{field_name} is required"
    return errors


def validate_registration(payload: Mapping[str, Any], min_password_length: int) -> Dict[str, str]:
    errors = missing_fields(payload, ("username", "email", "password"))
    for field_name in ("username", "password"):
        if field_name not in errors and not isinstance(payload.get(field_name), str):
            errors[field_name] = f"{field_name} must be a string"
    email = payload.get("email")
    if "email" not in errors and not is_valid_email(email):
        errors["email"] = "Please provide a valid email address"
    password = payload.get("password")
    if "password" not in errors and len(password) < min_password_length:
        errors["password"] = f"Password must be at least {min_password_length} characters"
    phone = payload.get("phone")
    if phone and not is_valid_phone(phone):
        errors["phone"] = "Please provide a valid phone number"
    return errors


def validate_shipping_address(address: Any) -> Dict[str, str]:
    if not isinstance(address, dict):
        return {"shipping_address": "Shipping address is required"}
    missing = [field_name for field_name in SHIPPING_ADDRESS_FIELDS if not str(address.get(field_name) or "").strip()]
    if missing:
        return {"shipping_address": f"Shipping address is incomplete: missing {', '.join(missing)}"}
    return {}


def validate_feedback_input(data: Mapping[str, Any]) -> Dict[str, str]:
    errors: Dict[str, str] = {}

    feedback_type = data.get("feedback_type")
    if not feedback_type:
        errors["feedback_type"] = "Feedback type is required"
    elif feedback_type not in {member.value for member in FeedbackType}:
        errors["feedback_type"] = "Invalid feedback type"

    rating = data.get("rating")
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        errors["rating"] = "Rating must be an integer between 1 and 5"

    description = data.get("description")
    if not description or not isinstance(description, str):
        errors["description"] = "Description is required"
    elif len(sanitize_text(description)) < DESCRIPTION_MIN_LENGTH:
        # Markup is stripped before storage, so measure what will be kept
        errors["description"] = f"Description must be at least {DESCRIPTION_MIN_LENGTH} characters"
    elif len(description) > DESCRIPTION_MAX_LENGTH:
        errors["description"] = f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters"

    selected_issues = data.get("selected_issues")
    if selected_issues is not None:
        if not isinstance(selected_issues, list):
            errors["selected_issues"] = "Selected issues must be a list"
        elif not selected_issues:
            errors["selected_issues"] = "Select at least one issue"
        elif len(selected_issues) > MAX_SELECTED_ISSUES:
            errors["selected_issues"] = f"Select at most {MAX_SELECTED_ISSUES} issues"

    contact = data.get("contact_method")
    if contact:
        if not isinstance(contact, str) or not contact.strip():
            errors["contact_method"] = "Contact method is malformed"
        elif not is_valid_email(contact) and not is_valid_phone(contact):
            errors["contact_method"] = "Please provide a valid email address or phone number"

    if data.get("receive_reply") is True and not contact:
        errors["receive_reply"] = "A contact method is required to receive a reply"

    browser_info = data.get("browser_info")
    if browser_info is not None and not isinstance(browser_info, dict):
        errors["browser_info"] = "Browser info must be an object"

    return errors


def validate_feedback_status(status: Any) -> Dict[str, str]:
    if status not in {member.value for member in FeedbackStatus}:
        return {"status": "Invalid feedback status"}
    return {}


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse ``YYYY-MM-DD`` or full ISO timestamps into naive UTC datetimes."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_date_range(
    start_value: Optional[str], end_value: Optional[str]
) -> Tuple[Dict[str, str], Optional[datetime], Optional[datetime]]:
    errors: Dict[str, str] = {}
    start = parse_iso_datetime(start_value)
    end = parse_iso_datetime(end_value)
    if start_value and start is None:
        errors["start_date"] = "Invalid start date"
    if end_value and end is None:
        errors["end_date"] = "Invalid end date"
    if start and end:
        if start > end:
            errors["date_range"] = "Start date cannot be after end date"
        elif end - start > MAX_DATE_RANGE:
            errors["date_range"] = "Date range cannot exceed one year"
    return errors, start, end


def validate_pagination(
    page: Optional[str], page_size: Optional[str], default_page_size: int = 20
) -> Tuple[Dict[str, str], int, int]:
    errors: Dict[str, str] = {}
    try:
        page_number = int(page) if page is not None else 1
    except (TypeError, ValueError):
        page_number = 1
    try:
        size = int(page_size) if page_size is not None else default_page_size
    except (TypeError, ValueError):
        size = default_page_size

    if page_number < 1:
        errors["page"] = "Page must be at least 1"
        page_number = 1
    if size < 1:
        errors["page_size"] = "Page size must be at least 1"
        size = default_page_size
    elif size > MAX_PAGE_SIZE:
        errors["page_size"] = f"Page size cannot exceed {MAX_PAGE_SIZE}"
        size = MAX_PAGE_SIZE
    return errors, page_number, size

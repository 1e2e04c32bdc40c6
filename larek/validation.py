import math
import re
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from markupsafe import Markup

from larek.errors import NotFoundError, ValidationError

email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
phone_regex = re.compile(r"^\+?\d{10,15}$")
MAX_STORE_INT = 2**63 - 1


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def is_valid_email(value: Optional[str]) -> bool:
    normalized = normalize_email(value)
    return bool(normalized and email_regex.match(normalized))


def normalize_phone(value) -> str:
    return re.sub(r"[^\d+]", "", str(value or ""))


def require_phone(value) -> str:
    phone = normalize_phone(value)
    if not phone_regex.match(phone):
        raise ValidationError("Please provide a valid phone number.")
    return phone


def strip_markup(value) -> str:
    if value is None:
        return ""
    return Markup(str(value)).striptags()


def require_text(
    payload: dict, key: str, *, min_length: int = 1, max_length: int = 200
) -> str:
    value = strip_markup(payload.get(key))
    if len(value) < min_length:
        raise ValidationError(
            f"Field {key} must be at least {min_length} characters long."
        )
    if len(value) > max_length:
        raise ValidationError(f"Field {key} must be at most {max_length} characters long.")
    return value


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def parse_price(value, *, field: str = "price") -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Field {field} must be a number.")
    numeric = safe_float(value, None)
    if numeric is None:
        raise ValidationError(f"Field {field} must be a number.")
    if numeric < 0:
        raise ValidationError(f"Field {field} cannot be negative.")
    return round(numeric, 2)


def normalize_object_id_value(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def normalize_object_id_list(values) -> List[ObjectId]:
    normalized_ids: List[ObjectId] = []
    if not values:
        return normalized_ids
    for value in values:
        normalized = normalize_object_id_value(value)
        if normalized is None:
            raise ValidationError("One or more identifiers are invalid.")
        normalized_ids.append(normalized)
    return normalized_ids


def require_object_id(value, label: str = "identifier") -> ObjectId:
    normalized = normalize_object_id_value(value)
    if normalized is None:
        raise ValidationError(f"Invalid {label}.")
    return normalized


def parse_order_number(value) -> int:
    candidate = str(value or "").strip()
    if not (candidate.isascii() and candidate.isdigit()) or len(candidate) > 19:
        raise NotFoundError("Order not found.")
    number = int(candidate)
    if number > MAX_STORE_INT:
        raise NotFoundError("Order not found.")
    return number

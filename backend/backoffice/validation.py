# backend/backoffice/validation.py
"""
Payload validation for products and customers, plus the small scalar
checks the order and payment services share.

validate_payload reads column metadata (type, nullability, String length)
from the model, so a column change is picked up without touching the
rules here. Only fields in a policy's writable_fields may be set by a
client.
"""
from __future__ import annotations
from datetime import date
from decimal import Decimal

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from backoffice.money import MoneyError, to_decimal
from backoffice.time_utils import parse_date


# R$ 9.999.999,99
MAX_PRICE_CENTS = 999_999_999

COMMISSION_TYPES = ("fixed", "percentage")


class ValidationError(ValueError):
    """Malformed input (HTTP 400)."""


class ConflictError(ValueError):
    """Input clashes with stored data, e.g. a CPF already registered (HTTP 409)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _coerce_integer(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str):
        text = value.strip()
        # Reject "1e3" and "10.0"; amounts arrive in cents
        if not text or not text.lstrip("-").isdigit():
            raise ValidationError(f"{key} must be a plain integer")
        return int(text)
    raise ValidationError(f"{key} must be an integer")


def _coerce(col, value: Any):
    coltype = col.type
    if isinstance(coltype, Integer):
        return _coerce_integer(col.key, value)
    if isinstance(coltype, Numeric):
        try:
            return to_decimal(value)
        except MoneyError:
            raise ValidationError(f"{col.key} must be a number")
    if isinstance(coltype, Boolean):
        return value if isinstance(value, bool) else bool(value)
    if isinstance(coltype, (String, Text)):
        return str(value).strip()
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON body against model columns and a policy.

    partial=False enforces policy.required_on_create. Returns a patch with
    coerced values for the writable fields present in payload.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in (policy.required_on_create or set()) if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce(col, raw)
        if isinstance(value, str):
            if value == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            length = getattr(col.type, "length", None)
            if length and len(value) > length:
                raise ValidationError(f"{key} exceeds max length {length}")
        patch[key] = value

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Product rules the column metadata cannot express."""
    for field in ("price_cents", "cost_cents"):
        value = patch.get(field)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{field} must be >= 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")

    if patch.get("stock") is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    commission_type = patch.get("commission_type")
    if commission_type is not None and commission_type not in COMMISSION_TYPES:
        raise ValidationError(f"commission_type must be one of {COMMISSION_TYPES}")

    commission_value = patch.get("commission_value")
    if commission_value is not None and Decimal(commission_value) < 0:
        raise ValidationError("commission_value must be >= 0")


def require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value


def require_non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    return value


def coerce_due_date(value: Any, field: str = "first_due_date") -> date:
    try:
        parsed = parse_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None:
        raise ValidationError(f"{field} is required")
    return parsed

from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .numeric import MAX_VALUE, to_decimal, quantize_quantity, quantize_cost
from .time_utils import parse_iso_date, parse_iso_datetime


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{key} must be an integer")
        return int(stripped)
    raise ValidationError(f"{key} must be an integer")


def coerce_decimal(key: str, value: Any) -> Decimal:
    """
    Accept numbers or numeric strings; never let a float's binary
    representation leak into a stored amount.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        result = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")
    if abs(result) > MAX_VALUE:
        raise ValidationError(f"{key} exceeds the maximum of {MAX_VALUE}")
    return result


def coerce_date(key: str, value: Any) -> date:
    try:
        parsed = parse_iso_date(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 date (YYYY-MM-DD)")
    return parsed


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Numeric):
        return coerce_decimal(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # DateTime must be checked before Date (no subclassing between them, but keep explicit)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        return coerce_date(col.key, value)

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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_batch(patch: dict) -> None:
    """
    Business rules for batch registration that SQLAlchemy metadata does not capture.
    Normalizes quantity/cost precision in place.
    """
    quantity = patch.get("original_quantity")
    if quantity is None or quantity <= 0:
        raise ValidationError("original_quantity must be > 0")
    patch["original_quantity"] = quantize_quantity(quantity)
    if patch["original_quantity"] <= 0:
        raise ValidationError("original_quantity must be > 0")

    unit_cost = patch.get("unit_cost")
    if unit_cost is None:
        raise ValidationError("unit_cost is required")
    if unit_cost < 0:
        raise ValidationError("unit_cost must be >= 0")
    patch["unit_cost"] = quantize_cost(unit_cost)

    if patch.get("received_at") is None:
        raise ValidationError("received_at is required")

    expires_at = patch.get("expires_at")
    if expires_at is not None and expires_at < patch["received_at"]:
        raise ValidationError("expires_at cannot be before received_at")


def enforce_rules_entry_line(index: int, line: dict) -> None:
    prefix = f"lines[{index}]"
    if line.get("item_id") is None:
        raise ValidationError(f"{prefix}.item_id is required")
    quantity = line.get("quantity")
    if quantity is None:
        raise ValidationError(f"{prefix}.quantity is required")
    if quantity < 0:
        raise ValidationError(f"{prefix}.quantity must be >= 0")

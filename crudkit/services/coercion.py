from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation


def column_python_type(col):
    try:
        return col.property.columns[0].type.python_type
    except Exception:
        return None


def _coerce_bool(value):
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(value)


def _coerce_number(value, python_type):
    if isinstance(value, bool):
        raise ValueError(value)
    if python_type in {int, float} and isinstance(value, (int, float)):
        return python_type(value)
    if python_type is Decimal and isinstance(value, Decimal):
        return value
    text = str(value).strip()
    if python_type is int:
        return int(text)
    if python_type is float:
        return float(text)
    return Decimal(text)


def _coerce_date(value):
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    text = str(value).strip()
    if "T" in text or " " in text:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    return date.fromisoformat(text)


def _coerce_datetime(value):
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if "T" not in text and " " not in text and len(text) == 10:
            parsed = datetime.combine(date.fromisoformat(text), datetime.min.time())
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def coerce_value(col, value):
    """Convert a raw request value to the column's Python type.

    Values that cannot be converted are returned unchanged and left for the
    store to accept or reject.
    """
    python_type = column_python_type(col)
    if python_type is None or value is None:
        return value
    try:
        if python_type is uuid.UUID:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value).strip())
        if python_type is bool:
            return _coerce_bool(value)
        if python_type in {int, float, Decimal}:
            return _coerce_number(value, python_type)
        if python_type is datetime:
            return _coerce_datetime(value)
        if python_type is date:
            return _coerce_date(value)
    except (ValueError, TypeError, InvalidOperation):
        return value
    return value


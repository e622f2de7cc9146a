"""
Row <-> JSON payload conversion for the remote API and the offline queue.

The server speaks camelCase JSON; the local model is snake_case. Both
spellings are accepted on the way in, snake_case is emitted on the way out.
"""

import enum
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Enum as SAEnum, Float, Integer, Numeric

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def _json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def json_safe(data: dict) -> dict:
    return {key: _json_value(value) for key, value in data.items()}


def to_payload(obj) -> dict:
    """Render an ORM row as a JSON-safe dict keyed by column name."""
    return {
        column.name: _json_value(getattr(obj, column.key, None))
        for column in obj.__table__.columns
    }


def parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def _coerce(column, value: Any) -> Any:
    if value is None:
        return None
    col_type = column.type

    if isinstance(col_type, SAEnum) and col_type.enum_class is not None:
        if isinstance(value, col_type.enum_class):
            return value
        return col_type.enum_class(value)
    if isinstance(col_type, DateTime):
        return parse_datetime(value)
    if isinstance(col_type, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        text = str(value).strip()
        if not text:
            return None
        return date.fromisoformat(text[:10])
    if isinstance(col_type, Boolean):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes")
        return bool(value)
    if isinstance(col_type, Integer):
        return int(value)
    if isinstance(col_type, Float):
        return float(value)
    if isinstance(col_type, Numeric):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            raise ValueError(f"Not a decimal value for {column.name}: {value!r}")
    return value


def from_payload(model, data: dict) -> dict:
    """Column values for ``model`` taken from a JSON payload.

    Unknown keys are dropped. Raises ValueError on values that cannot be
    coerced to the column type.
    """
    columns = {c.name: c for c in model.__table__.columns}
    values = {}
    for key, value in data.items():
        name = key if key in columns else camel_to_snake(key)
        column = columns.get(name)
        if column is None:
            continue
        values[column.key] = _coerce(column, value)
    return values

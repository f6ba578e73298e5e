from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import pandas as pd

from ..db.dialects import parse_neutral_type
from ..excel.reader import is_blank

"""Value coercion.

- coerce_cell: spreadsheet cell -> Python value for a neutral target type.
  Raises ValueError with a short reason; the import engine turns that into a
  failed row (never a failed batch).
- coerce_parameter: query parameter text -> int / float / bool / date /
  datetime / str, in that order of preference.
- neutral_type_of: Python value -> neutral type, for query result columns.
"""

__all__ = [
    "coerce_cell",
    "coerce_parameter",
    "neutral_type_of",
]

# Excel シリアル日付の起点 (1900 年うるう年バグ込み)
_EXCEL_EPOCH = datetime(1899, 12, 30)

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d", "%Y%m%d")
_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
)

_INT_RE = re.compile(r"^[+-]?\d+$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")
_DATE_PARAM_RE = re.compile(r"^\d{4}([-/])\d{1,2}\1\d{1,2}$")
_DATETIME_PARAM_RE = re.compile(r"^\d{4}([-/])\d{1,2}\1\d{1,2}[ T]\d{1,2}:\d{2}(:\d{2})?$")


def _numeric_text(value: str) -> str:
    # 千区切り / 全角空白を除去
    return value.strip().replace(",", "").replace("　", "")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        if value != value or not float(value).is_integer():  # NaN / 小数部あり
            raise ValueError(f"not an integer: {value}")
        return int(value)
    text = _numeric_text(str(value))
    if _INT_RE.match(text):
        return int(text)
    try:
        number = Decimal(text)
    except InvalidOperation as e:
        raise ValueError(f"not an integer: {value!r}") from e
    if not number.is_finite() or number != number.to_integral_value():
        raise ValueError(f"not an integer: {value!r}")
    return int(number)


def _to_decimal(value: Any, precision: int, scale: int) -> Decimal:
    if isinstance(value, bool):
        number = Decimal(int(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    else:
        try:
            number = Decimal(_numeric_text(str(value)))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {value!r}") from e
    if not number.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    try:
        quantized = number.quantize(Decimal(1).scaleb(-scale))
    except InvalidOperation as e:
        # 有効桁数がコンテキスト精度を超える
        raise ValueError(f"{value} exceeds DECIMAL({precision},{scale})") from e
    integer_digits = len(str(abs(int(quantized)))) if int(quantized) != 0 else 0
    if integer_digits > precision - scale:
        raise ValueError(f"{value} exceeds DECIMAL({precision},{scale})")
    return quantized


def _to_float(value: Any) -> float:
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        return float(value)
    try:
        return float(_numeric_text(str(value)))
    except ValueError as e:
        raise ValueError(f"not a number: {value!r}") from e


def _parse_datetime_text(text: str) -> datetime:
    for fmt in _DATETIME_FORMATS + _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        parsed = pd.to_datetime(text)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"not a date: {text!r}") from e
    if pd.isna(parsed):
        raise ValueError(f"not a date: {text!r}")
    return parsed.to_pydatetime()


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return _EXCEL_EPOCH + timedelta(days=float(value))
        except (OverflowError, ValueError) as e:
            raise ValueError(f"not a date: {value!r}") from e
    return _parse_datetime_text(str(value).strip())


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return _to_datetime(value).date()


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in {"true", "yes", "y", "1", "是"}:
        return True
    if text in {"false", "no", "n", "0", "否"}:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, (date, time)):
        return value.isoformat()
    return str(value)


def coerce_cell(value: Any, neutral_type: str) -> Any:
    """Coerce one cell for a column of neutral_type. Blank cells become None."""
    if is_blank(value):
        return None
    base, args = parse_neutral_type(neutral_type)
    if base in {"INT", "BIGINT"}:
        return _to_int(value)
    if base == "DECIMAL":
        return _to_decimal(value, args[0], args[1])
    if base == "FLOAT":
        return _to_float(value)
    if base == "DATE":
        return _to_date(value)
    if base == "DATETIME":
        return _to_datetime(value)
    if base == "BOOLEAN":
        return _to_bool(value)
    if base == "BLOB":
        return value if isinstance(value, (bytes, bytearray)) else str(value).encode("utf-8")
    text = _to_text(value)
    if base == "VARCHAR" and len(text) > args[0]:
        raise ValueError(f"value longer than {args[0]} characters")
    return text


def coerce_parameter(value: Any) -> Any:
    """Best-effort typing of a query parameter given as text."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _DATE_PARAM_RE.match(text):
        sep = "-" if "-" in text else "/"
        try:
            return datetime.strptime(text, f"%Y{sep}%m{sep}%d").date()
        except ValueError:
            return value
    if _DATETIME_PARAM_RE.match(text):
        try:
            return _parse_datetime_text(text.replace("T", " "))
        except ValueError:
            return value
    return value


def neutral_type_of(value: Any) -> str:
    """Neutral type for a query result value (first non-null value per column)."""
    if isinstance(value, bool):
        return "BOOLEAN"
    if isinstance(value, int):
        return "INT" if -(2**31) <= value < 2**31 else "BIGINT"
    if isinstance(value, float):
        return "FLOAT"
    if isinstance(value, Decimal):
        exponent = value.as_tuple().exponent
        scale = min(max(-exponent, 0), 10) if isinstance(exponent, int) else 4
        return f"DECIMAL(18,{scale})"
    if isinstance(value, datetime):
        return "DATETIME"
    if isinstance(value, date):
        return "DATE"
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "BLOB"
    return "TEXT"

"""Loose scalar casts.

Row data arrives from forms, CSV files and JSON payloads, so numbers are
frequently strings. These helpers cast the way the wire format expects:
leading numeric prefixes are honoured, garbage becomes zero, and floats are
always written with a ``.`` separator whatever the process locale is.
"""

from __future__ import annotations

import math
import re
from typing import Any

_NUMERIC_PREFIX = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")


def float_to_string(value: float) -> str:
    """Render a float independently of locale.

    Integral values drop the trailing ``.0`` (``2.0`` -> ``"2"``).
    """
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


def _numeric_prefix(value: str) -> str | None:
    match = _NUMERIC_PREFIX.match(value)
    return match.group(0).strip() if match else None


def to_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        prefix = _numeric_prefix(value)
        if prefix is None:
            return 0
        try:
            return int(prefix)
        except ValueError:
            return int(float(prefix))
    if value is None:
        return 0
    return int(value)


def to_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        prefix = _numeric_prefix(value)
        return float(prefix) if prefix is not None else 0.0
    if value is None:
        return 0.0
    return float(value)


def to_bool(value: Any) -> bool:
    # "0", "" and a lone NUL byte are falsy strings on the wire.
    if isinstance(value, str):
        return value not in ("", "0", "\0")
    return bool(value)

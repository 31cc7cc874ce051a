"""
Deterministic JSON serialization — the only input ever fed to the hasher.

Output is byte-identical for structurally equal values regardless of key
insertion order:
  - object keys sorted by UTF-16 code units (the ordering JavaScript uses),
  - arrays keep their order,
  - numbers use the shortest round-trip form, integral floats print as
    integers and the exponent threshold follows ECMAScript Number#toString,
  - pydantic models are dumped under their wire aliases with absent
    optionals omitted,
  - no whitespace.

Receipts issued by other implementations hash the same bytes, so any change
here invalidates every stored receipt.
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


class CanonicalizationError(TypeError):
    """Raised for values outside the JSON data model (sets, bytes, NaN...)."""


def canonicalize(value: Any) -> str:
    """Serialize ``value`` to its canonical JSON string."""
    parts: list[str] = []
    _encode(value, parts)
    return "".join(parts)


def _encode(value: Any, out: list[str]) -> None:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)

    if value is None:
        out.append("null")
    elif value is True:
        out.append("true")
    elif value is False:
        out.append("false")
    elif isinstance(value, Enum):
        _encode(value.value, out)
    elif isinstance(value, str):
        out.append(json.dumps(value, ensure_ascii=False))
    elif isinstance(value, int):
        out.append(str(value))
    elif isinstance(value, (float, Decimal)):
        out.append(format_number(float(value)))
    elif isinstance(value, dict):
        if any(not isinstance(k, str) for k in value):
            raise CanonicalizationError("Object keys must be strings")
        out.append("{")
        for i, key in enumerate(sorted(value, key=_utf16_key)):
            if i:
                out.append(",")
            out.append(json.dumps(key, ensure_ascii=False))
            out.append(":")
            _encode(value[key], out)
        out.append("}")
    elif isinstance(value, (list, tuple)):
        out.append("[")
        for i, item in enumerate(value):
            if i:
                out.append(",")
            _encode(item, out)
        out.append("]")
    else:
        raise CanonicalizationError(f"Type {type(value)!r} is not supported for canonicalization")


def _utf16_key(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


def format_number(value: float) -> str:
    """Format a float exactly as ECMAScript ``Number.prototype.toString`` would."""
    if not math.isfinite(value):
        raise CanonicalizationError("Non-finite numbers are not allowed")
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))

    sign = "-" if value < 0 else ""
    # repr gives the shortest round-trip digits; re-lay them out per ECMAScript
    mantissa, _, exp_part = repr(abs(value)).partition("e")
    int_part, _, frac_part = mantissa.partition(".")
    digits = (int_part + frac_part).lstrip("0")
    exponent = len(int_part) + (int(exp_part) if exp_part else 0)
    if int_part == "0":
        # 0.00123 -> digits "123", decimal point sits after -2 leading zeros
        stripped = frac_part.lstrip("0")
        exponent = (int(exp_part) if exp_part else 0) - (len(frac_part) - len(stripped))
        digits = stripped
    digits = digits.rstrip("0") or "0"
    k = len(digits)
    n = exponent  # value = 0.digits * 10**n

    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        exp_text = f"e+{e}" if e >= 0 else f"e-{-e}"
        text = digits[0] + ("." + digits[1:] if k > 1 else "") + exp_text
    return sign + text

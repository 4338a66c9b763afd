# poolcast/utils/numeric.py
from __future__ import annotations

import math
from typing import Optional


def coerce_float(value) -> Optional[float]:
    """
    Best-effort float conversion that returns None for unparseable or non-finite values.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def safe_divide(numerator, denominator) -> Optional[float]:
    """
    Divide while guarding against None/zero/invalid values.
    """
    if numerator is None or denominator in (None, 0):
        return None
    try:
        return float(numerator) / float(denominator)
    except (TypeError, ValueError, ZeroDivisionError):
        return None


def round_or_none(value, digits: int = 4) -> Optional[float]:
    v = coerce_float(value)
    return None if v is None else round(v, digits)


__all__ = ["coerce_float", "safe_divide", "round_or_none"]

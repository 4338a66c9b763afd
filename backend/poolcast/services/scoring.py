# poolcast/services/scoring.py
from __future__ import annotations

from typing import Iterable, Optional

import numpy as np

# |actual| at or below this is treated as zero for percentage errors
ZERO_PRICE_EPSILON = 0.01


def _arrays(a: Iterable[float], p: Iterable[float]) -> tuple[np.ndarray, np.ndarray]:
    return np.asarray(list(a), dtype=float), np.asarray(list(p), dtype=float)


def mae(a: Iterable[float], p: Iterable[float]) -> float:
    a, p = _arrays(a, p)
    if a.size == 0:
        return 0.0
    return float(np.mean(np.abs(a - p)))


def rmse(a: Iterable[float], p: Iterable[float]) -> float:
    a, p = _arrays(a, p)
    if a.size == 0:
        return 0.0
    return float(np.sqrt(np.mean((a - p) ** 2)))


def smape(a: Iterable[float], p: Iterable[float]) -> float:
    """Symmetric MAPE in percent; a term whose |a|+|p| is zero contributes 0."""
    a, p = _arrays(a, p)
    if a.size == 0:
        return 0.0
    denom = np.abs(a) + np.abs(p)
    terms = np.where(denom == 0.0, 0.0, 2.0 * np.abs(a - p) / np.where(denom == 0.0, 1.0, denom))
    return float(100.0 * np.mean(terms))


def mape(a: Iterable[float], p: Iterable[float]) -> Optional[float]:
    """Plain MAPE in percent over rows with |actual| > ZERO_PRICE_EPSILON; None when no row qualifies."""
    a, p = _arrays(a, p)
    mask = np.abs(a) > ZERO_PRICE_EPSILON
    if not mask.any():
        return None
    return float(100.0 * np.mean(np.abs(a[mask] - p[mask]) / np.abs(a[mask])))


def r_squared(a: Iterable[float], p: Iterable[float]) -> float:
    a, p = _arrays(a, p)
    if a.size == 0:
        return 0.0
    ss_res = float(np.sum((a - p) ** 2))
    ss_tot = float(np.sum((a - a.mean()) ** 2))
    if ss_tot == 0.0:
        return 1.0 if ss_res == 0.0 else 0.0
    return 1.0 - ss_res / ss_tot


def regression_report(a: Iterable[float], p: Iterable[float]) -> dict:
    a, p = _arrays(a, p)
    return {
        "mae": mae(a, p),
        "rmse": rmse(a, p),
        "smape": smape(a, p),
        "mape": mape(a, p),
        "r_squared": r_squared(a, p),
    }

# poolcast/schemas/predictions.py
from __future__ import annotations

from typing import Dict, Optional

from pydantic import Field

from poolcast.schemas.common import CamelModel


class ValidateIn(CamelModel):
    batch_limit: Optional[int] = Field(None, ge=1)


class AccuracySummary(CamelModel):
    count: int
    mae: Optional[float] = None
    smape: Optional[float] = None
    confidence_hit_rate: Optional[float] = None


class ValidationOut(CamelModel):
    success: bool
    validated: int
    errors: int
    deferred: int
    summary_by_horizon: Dict[str, AccuracySummary] = {}
    summary_by_regime: Dict[str, AccuracySummary] = {}
    summary_by_model: Dict[str, AccuracySummary] = {}
    overall: Optional[AccuracySummary] = None

# poolcast/schemas/forecast.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from poolcast.schemas.common import CamelModel


class ForecastRequest(CamelModel):
    horizon: str | int = Field("24h", description="'Nh', 'Nd' or a number of hours")
    force_refresh: bool = False


class ForecastPointOut(CamelModel):
    timestamp: datetime
    horizon_hours: int
    price: Optional[float] = None
    confidence_lower: Optional[float] = None
    confidence_upper: Optional[float] = None
    confidence_score: float = 0.0
    cached: bool = False


class ForecastPerformanceOut(CamelModel):
    total_duration_ms: float
    cache_hit_count: int
    cache_miss_count: int
    cache_hit_rate_percent: float
    new_predictions_generated: int
    batch_count: int = 0
    failed_batches: int = 0


class ForecastOut(CamelModel):
    success: bool
    horizon_hours: int
    model_version: Optional[str] = None
    predictions: List[ForecastPointOut] = []
    performance: ForecastPerformanceOut
    error: Optional[str] = None


class PerformanceRowOut(CamelModel):
    request_timestamp: datetime
    horizon_hours: int
    total_duration_ms: float
    cache_hit_count: int
    cache_miss_count: int
    cache_hit_rate: float
    predictions_generated: int
    batch_count: int
    failed_batches: int

# poolcast/schemas/data.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from poolcast.schemas.common import CamelModel


class QualityOut(CamelModel):
    success: bool
    report_id: Optional[int] = None
    total_records: int
    overall_quality_score: float
    missing_data_analysis: Dict[str, float] = {}
    outlier_analysis: Dict[str, Any] = {}
    price_statistics: Optional[Dict[str, Optional[float]]] = None
    enhanced_feature_coverage: Dict[str, float] = {}
    quality_factors: Dict[str, float] = {}
    recent_completeness: Optional[float] = None
    temporal_gaps: int = 0
    recommendations: List[str] = []


class FeaturesIn(CamelModel):
    batch_size: Optional[int] = Field(None, ge=1)
    start_offset: int = Field(0, ge=0)


class FeaturesOut(CamelModel):
    success: bool
    total_observations: int
    features_calculated: int
    batches_committed: int
    failed_batches: List[int] = []
    error: Optional[str] = None


class ObservationIn(CamelModel):
    timestamp: datetime
    price: Optional[float] = None
    demand_mw: Optional[float] = None
    interchange_net: Optional[float] = None
    generation_by_fuel: Dict[str, Optional[float]] = {}
    weather_by_station: Dict[str, Dict[str, Optional[float]]] = {}


class ObservationsIn(CamelModel):
    observations: List[ObservationIn] = Field(..., min_length=1)


class IngestOut(CamelModel):
    success: bool
    inserted: int
    skipped: int
    invalid: int


class AuxiliaryPointIn(CamelModel):
    timestamp: datetime
    price: float


class AuxiliaryIn(CamelModel):
    points: List[AuxiliaryPointIn] = Field(..., min_length=1)


class UpsertOut(CamelModel):
    success: bool
    series: str
    upserted: int
    used_default: bool = False

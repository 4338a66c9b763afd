# poolcast/schemas/model.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from poolcast.schemas.common import CamelModel


class TrainIn(CamelModel):
    hyperparameters: Optional[Dict[str, Any]] = None


class PerformanceMetrics(CamelModel):
    mae: float
    rmse: float
    smape: float
    # public key keeps its snake_case spelling
    r_squared: float = Field(serialization_alias="r_squared")
    training_records: int


class TrainOut(CamelModel):
    success: bool
    model_version: Optional[str] = None
    performance_metrics: Optional[PerformanceMetrics] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None


class ModelVersionOut(CamelModel):
    version_id: str
    trained_at: datetime
    algorithm: str
    status: str
    hyperparameters: Dict[str, Any]
    performance_metrics: PerformanceMetrics
    training_start: Optional[datetime] = None
    training_end: Optional[datetime] = None
    feature_importance: Optional[Dict[str, float]] = None


class CrossValidationIn(CamelModel):
    num_folds: int = Field(5, ge=1, le=20)
    validation_window_hours: int = Field(168, ge=1)


class FoldOut(CamelModel):
    fold_number: int
    status: str
    skip_reason: Optional[str] = None
    train_start: Optional[datetime] = None
    train_end: Optional[datetime] = None
    validation_start: Optional[datetime] = None
    validation_end: Optional[datetime] = None
    train_rows: int = 0
    validation_rows: int = 0
    mae: Optional[float] = None
    rmse: Optional[float] = None
    smape: Optional[float] = None
    mape: Optional[float] = None


class CrossValidationOut(CamelModel):
    success: bool
    run_id: Optional[int] = None
    num_folds: int
    validation_window_hours: int
    completed_folds: int
    fold_results: List[FoldOut] = []
    average_metrics: Dict[str, Optional[float]] = {}
    error: Optional[str] = None


class RetrainingOut(CamelModel):
    success: bool
    retraining_completed: bool
    triggered: bool
    reason: str
    model_version: Optional[str] = None
    improvement: Optional[float] = None
    performance_before: Optional[Dict[str, Any]] = None
    performance_after: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class RetrainingEventOut(CamelModel):
    id: int
    created_at: datetime
    triggered: bool
    reason: str
    success: Optional[bool] = None
    error: Optional[str] = None
    improvement: Optional[float] = None
    duration_seconds: Optional[float] = None
    model_version: Optional[str] = None


class SearchIn(CamelModel):
    trials: int = Field(5, ge=1, le=50)
    promote: bool = True


class TrialOut(CamelModel):
    trial_number: int
    hyperparameters: Dict[str, Any]
    metrics: Optional[Dict[str, float]] = None
    duration_seconds: float = 0.0
    is_best: bool = False
    error: Optional[str] = None


class SearchOut(CamelModel):
    success: bool
    search_id: str
    trials: List[TrialOut] = []
    best: Optional[TrialOut] = None
    model_version: Optional[str] = None
    error: Optional[str] = None

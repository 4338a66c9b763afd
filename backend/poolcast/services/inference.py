# poolcast/services/inference.py
"""Regression capability behind training, validation and prediction.

Callers build one of ``TrainRequest``, ``ValidateRequest`` or ``PredictRequest`` and
hand it to ``InferenceEngine.run``; the engine dispatches on the request type.
"""
from __future__ import annotations

import io
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import GradientBoostingRegressor

from poolcast.config import get_settings
from poolcast.services import scoring
from poolcast.services.errors import InferenceError, TrainingError

# two-sided 80 % normal interval
INTERVAL_Z = 1.2816
# price floor of the market
PRICE_FLOOR = 0.0

DEFAULT_HYPERPARAMETERS: Dict[str, Any] = {
    "n_estimators": 200,
    "learning_rate": 0.05,
    "max_depth": 4,
    "subsample": 0.8,
    "min_samples_leaf": 5,
}


@dataclass
class FittedModel:
    estimator: Any
    feature_names: List[str]
    medians: Dict[str, float]
    hyperparameters: Dict[str, Any]
    residual_std: float = 0.0
    feature_importance: Dict[str, float] = field(default_factory=dict)

    def design_matrix(self, features: pd.DataFrame) -> np.ndarray:
        """Align columns to training order and impute gaps with training medians."""
        frame = features.reindex(columns=self.feature_names).astype(float)
        return frame.fillna(value=self.medians).fillna(0.0).to_numpy()

    def to_bytes(self) -> bytes:
        buf = io.BytesIO()
        joblib.dump(self, buf)
        return buf.getvalue()

    @classmethod
    def from_bytes(cls, blob: bytes) -> "FittedModel":
        model = joblib.load(io.BytesIO(blob))
        if not isinstance(model, cls):
            raise TypeError(f"artifact holds {type(model).__name__}, expected {cls.__name__}")
        return model


@dataclass
class PointForecast:
    price: float
    lower: float
    upper: float
    confidence_score: float


@dataclass
class TrainRequest:
    features: pd.DataFrame
    target: Sequence[float]
    hyperparameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ValidateRequest:
    model: FittedModel
    features: pd.DataFrame
    target: Sequence[float]


@dataclass
class PredictRequest:
    model: FittedModel
    features: pd.DataFrame
    # lead time of each row in hours; widens the interval
    horizons: Optional[Sequence[int]] = None


InferenceRequest = Union[TrainRequest, ValidateRequest, PredictRequest]


def interval_half_width(residual_std: float, horizon_hours: int) -> float:
    return INTERVAL_Z * residual_std * math.sqrt(1 + (max(1, horizon_hours) - 1) / 24)


def confidence_score(price: float, lower: float, upper: float) -> float:
    """0–100; narrower intervals relative to the price score higher."""
    relative_width = (upper - lower) / (2 * max(abs(price), 1.0))
    return round(max(0.0, min(100.0, 100.0 * (1.0 - relative_width))), 1)


class InferenceEngine:
    """Dispatches typed requests to ``fit`` / ``evaluate`` / ``predict``."""

    def run(self, request: InferenceRequest):
        if isinstance(request, TrainRequest):
            return self.fit(request)
        if isinstance(request, ValidateRequest):
            return self.evaluate(request)
        if isinstance(request, PredictRequest):
            return self.predict(request)
        raise TypeError(f"Unsupported inference request: {type(request).__name__}")

    def fit(self, request: TrainRequest) -> FittedModel:
        raise NotImplementedError

    def evaluate(self, request: ValidateRequest) -> dict:
        predictions = [p.price for p in self.predict(PredictRequest(request.model, request.features))]
        return scoring.regression_report(list(request.target), predictions)

    def predict(self, request: PredictRequest) -> List[PointForecast]:
        raise NotImplementedError


class GradientBoostingEngine(InferenceEngine):
    def __init__(self, random_state: int = 42) -> None:
        self.random_state = random_state

    def fit(self, request: TrainRequest) -> FittedModel:
        if request.features.empty:
            raise TrainingError("no training rows")
        params = {**DEFAULT_HYPERPARAMETERS, **(request.hyperparameters or {})}
        feature_names = [str(c) for c in request.features.columns]
        medians = request.features.astype(float).median(numeric_only=True).to_dict()
        medians = {k: float(v) for k, v in medians.items() if not pd.isna(v)}

        model = FittedModel(
            estimator=None,
            feature_names=feature_names,
            medians=medians,
            hyperparameters=params,
        )
        X = model.design_matrix(request.features)
        y = np.asarray(list(request.target), dtype=float)
        try:
            estimator = GradientBoostingRegressor(random_state=self.random_state, **params)
            estimator.fit(X, y)
        except ValueError as exc:
            raise TrainingError(f"fit failed: {exc}") from exc

        residuals = y - estimator.predict(X)
        model.estimator = estimator
        model.residual_std = float(np.std(residuals, ddof=1)) if len(y) > 1 else 0.0
        model.feature_importance = {
            name: float(w) for name, w in zip(feature_names, estimator.feature_importances_)
        }
        return model

    def predict(self, request: PredictRequest) -> List[PointForecast]:
        model = request.model
        if model.estimator is None:
            raise InferenceError("model has no fitted estimator")
        if request.features.empty:
            return []
        try:
            raw = model.estimator.predict(model.design_matrix(request.features))
        except ValueError as exc:
            raise InferenceError(f"prediction failed: {exc}") from exc

        horizons = list(request.horizons) if request.horizons is not None else [1] * len(raw)
        out: List[PointForecast] = []
        for value, h in zip(raw, horizons):
            price = max(PRICE_FLOOR, float(value))
            half = interval_half_width(model.residual_std, h)
            lower = max(PRICE_FLOOR, price - half)
            upper = price + half
            out.append(PointForecast(price, lower, upper, confidence_score(price, lower, upper)))
        return out


def default_engine() -> InferenceEngine:
    return GradientBoostingEngine(random_state=get_settings().MODEL_RANDOM_STATE)

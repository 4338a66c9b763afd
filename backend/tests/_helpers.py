import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import numpy as np

from poolcast.services.errors import InferenceError, TrainingError
from poolcast.services.inference import (
    FittedModel,
    InferenceEngine,
    PointForecast,
    confidence_score,
    interval_half_width,
)


def unwrap(j):
    """Return API data payload regardless of envelope/legacy shape."""
    if isinstance(j, dict) and "ok" in j and "data" in j:
        return j["data"]
    return j

def is_enveloped(j) -> bool:
    return isinstance(j, dict) and "ok" in j and "data" in j


def daily_price(i: int) -> float:
    """Deterministic hourly price shape: a daily cycle plus a weekly wobble."""
    return round(60.0 + 25.0 * math.sin(2 * math.pi * (i % 24) / 24) + (i % 7), 2)


def make_observations(
    start: datetime,
    hours: int,
    price: Optional[Callable[[int], Optional[float]]] = None,
    station: str = "calgary",
) -> List[dict]:
    price = price or daily_price
    out = []
    for i in range(hours):
        out.append(
            {
                "timestamp": start + timedelta(hours=i),
                "price": price(i),
                "demand_mw": 9500.0 + 300.0 * math.sin(2 * math.pi * (i % 24) / 24),
                "interchange_net": 150.0,
                "generation_by_fuel": {
                    "wind": 1200.0 + 10.0 * (i % 12),
                    "solar": 0.0 if i % 24 < 7 else 300.0,
                    "gas": 6000.0,
                    "hydro": 400.0,
                    "coal": 0.0,
                },
                "weather_by_station": {
                    station: {"temperature_c": -4.0 + (i % 24) * 0.5, "wind_speed_kmh": 22.0, "cloud_cover_pct": 40.0}
                },
            }
        )
    return out


class ConstantEstimator:
    """Predicts one fixed value for every row."""

    def __init__(self, value: float) -> None:
        self.value = float(value)

    def predict(self, X):
        return np.full(len(X), self.value, dtype=float)


class FakeEngine(InferenceEngine):
    """Deterministic engine: fits the target mean (or ``price``) and counts calls.

    ``fail_predict_calls`` lists 1-based predict call numbers that raise.
    """

    def __init__(self, price: Optional[float] = None, fail_predict_calls=(), fail_fit: bool = False) -> None:
        self.price = price
        self.fail_predict_calls = set(fail_predict_calls)
        self.fail_fit = fail_fit
        self.fit_calls = 0
        self.predict_calls = 0
        self.predicted_rows = 0

    def fit(self, request) -> FittedModel:
        self.fit_calls += 1
        if self.fail_fit:
            raise TrainingError("fit exploded")
        target = [float(t) for t in request.target]
        if not target:
            raise TrainingError("no training rows")
        value = self.price if self.price is not None else float(np.mean(target))
        return FittedModel(
            estimator=ConstantEstimator(value),
            feature_names=[str(c) for c in request.features.columns],
            medians={},
            hyperparameters=dict(request.hyperparameters or {}),
            residual_std=5.0,
        )

    def predict(self, request) -> List[PointForecast]:
        self.predict_calls += 1
        if self.predict_calls in self.fail_predict_calls:
            raise InferenceError(f"predict call {self.predict_calls} failed")
        raw = request.model.estimator.predict(request.features)
        horizons = list(request.horizons) if request.horizons is not None else [1] * len(raw)
        self.predicted_rows += len(raw)
        out = []
        for value, h in zip(raw, horizons):
            half = interval_half_width(request.model.residual_std, h)
            lower, upper = max(0.0, value - half), value + half
            out.append(PointForecast(float(value), lower, upper, confidence_score(value, lower, upper)))
        return out


def seed_model(db, engine=None, now=None):
    """Compute features over stored observations and train one model version."""
    from poolcast.services.features import calculate_features
    from poolcast.services.trainer import train_model

    calculate_features(db)
    result = train_model(db, engine=engine or FakeEngine(), now=now)
    assert result.success, result.error
    return result

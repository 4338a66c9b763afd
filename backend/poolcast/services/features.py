# poolcast/services/features.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import structlog
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.models.feature import FEATURE_COLUMNS
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.utils.numeric import coerce_float
from poolcast.utils.timeutils import ensure_utc, floor_hour

logger = structlog.get_logger(__name__)

GAS_SERIES = "natural_gas"

PRICE_LAGS = (1, 2, 3, 6, 12, 24)
WIND_LAGS = (1, 6, 24, 168)
DEMAND_LAGS = (1, 24, 168)
TEMPERATURE_LAGS = (1, 6, 24)
VOLATILITY_WINDOWS = (1, 6, 24)
MOMENTUM_WINDOWS = (3, 24)
GAS_LAG_DAYS = (1, 7, 30)

# wind speed (km/h) above which potential output is estimated from speed alone
CURTAILMENT_WIND_SPEED = 30.0
CURTAILMENT_MW_PER_KMH = 50.0
MILD_TEMPERATURE_C = 15.0


@dataclass
class SeriesInputs:
    """Column-wise hourly history consumed by the per-row feature builder.

    Rows are ordered oldest first. Feature values for row ``i`` read only rows ``<= i``.
    """

    timestamps: List[datetime] = field(default_factory=list)
    price: List[Optional[float]] = field(default_factory=list)
    demand: List[Optional[float]] = field(default_factory=list)
    interchange: List[Optional[float]] = field(default_factory=list)
    wind: List[Optional[float]] = field(default_factory=list)
    solar: List[Optional[float]] = field(default_factory=list)
    gas_gen: List[Optional[float]] = field(default_factory=list)
    hydro: List[Optional[float]] = field(default_factory=list)
    coal: List[Optional[float]] = field(default_factory=list)
    temperature: List[Optional[float]] = field(default_factory=list)
    wind_speed: List[Optional[float]] = field(default_factory=list)

    _FRAME_COLUMNS = {
        "price": "price",
        "demand": "demand_mw",
        "interchange": "interchange_net",
        "wind": "generation_wind",
        "solar": "generation_solar",
        "gas_gen": "generation_gas",
        "hydro": "generation_hydro",
        "coal": "generation_coal",
        "temperature": "temperature",
        "wind_speed": "wind_speed",
    }

    def __len__(self) -> int:
        return len(self.timestamps)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame) -> "SeriesInputs":
        inputs = cls()
        if frame.empty:
            return inputs
        inputs.timestamps = [ensure_utc(pd.Timestamp(ts).to_pydatetime()) for ts in frame["timestamp"]]
        for attr, col in cls._FRAME_COLUMNS.items():
            setattr(inputs, attr, [coerce_float(v) for v in frame[col].tolist()])
        return inputs

    def append(self, timestamp: datetime, values: Mapping[str, Optional[float]]) -> None:
        self.timestamps.append(ensure_utc(timestamp))
        for attr in self._FRAME_COLUMNS:
            getattr(self, attr).append(values.get(attr))

    def row(self, i: int) -> Dict[str, Optional[float]]:
        return {attr: getattr(self, attr)[i] for attr in self._FRAME_COLUMNS}


# ---------- Window helpers ----------


def lag(values: Sequence[Optional[float]], i: int, k: int) -> Optional[float]:
    return values[i - k] if i >= k else None


def _window(values: Sequence[Optional[float]], i: int, hours_back: int) -> tuple[int, List[float]]:
    """Rows ``max(0, i - hours_back) .. i`` inclusive: (row count, non-null values)."""
    rows = values[max(0, i - hours_back) : i + 1]
    return len(rows), [v for v in rows if v is not None]


def volatility(prices: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    """Sample standard deviation over at most ``window + 1`` trailing prices."""
    _, vals = _window(prices, i, window)
    if len(vals) < 2:
        return None
    return float(np.std(vals, ddof=1))


def momentum(prices: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    """Percent change versus the price ``window`` rows back."""
    past = max(0, i - window)
    if past == i:
        return 0.0
    current, previous = prices[i], prices[past]
    if current is None or previous is None:
        return None
    if previous == 0:
        # $0 is a legitimate pool price; report the absolute move on a percent-like scale
        return current * 10.0
    return (current - previous) / previous * 100.0


def rolling_mean(values: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    n, vals = _window(values, i, window)
    if n < 2 or not vals:
        return None
    return float(np.mean(vals))


def rolling_std(values: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    n, vals = _window(values, i, window)
    if n < 2 or len(vals) < 2:
        return None
    return float(np.std(vals, ddof=1))


def rolling_min(values: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    n, vals = _window(values, i, window)
    return min(vals) if n >= 2 and vals else None


def rolling_max(values: Sequence[Optional[float]], i: int, window: int) -> Optional[float]:
    n, vals = _window(values, i, window)
    return max(vals) if n >= 2 and vals else None


# ---------- Derived estimates ----------


def renewable_curtailment(wind_mw: Optional[float], wind_speed_kmh: Optional[float]) -> float:
    wind = wind_mw or 0.0
    speed = wind_speed_kmh or 0.0
    potential = speed * CURTAILMENT_MW_PER_KMH if speed > CURTAILMENT_WIND_SPEED else wind
    return max(0.0, potential - wind)


def renewable_penetration(row: Mapping[str, Optional[float]]) -> Optional[float]:
    generation = [row.get(k) for k in ("wind", "solar", "gas_gen", "hydro", "coal")]
    total = sum(v for v in generation if v is not None)
    if total <= 0:
        return None
    renewable = sum(row.get(k) or 0.0 for k in ("wind", "solar", "hydro"))
    return renewable / total * 100.0


def _product(*factors: Optional[float]) -> Optional[float]:
    if any(f is None for f in factors):
        return None
    out = 1.0
    for f in factors:
        out *= f
    return out


def _cyclical(value: int, period: int) -> tuple[float, float]:
    angle = 2 * math.pi * value / period
    return math.sin(angle), math.cos(angle)


# ---------- Row builder ----------


def build_feature_row(inputs: SeriesInputs, i: int, gas_by_hour: Mapping[datetime, float]) -> dict:
    """Feature record for row ``i``; reads rows ``<= i`` and auxiliary hours ``<= timestamps[i]``."""
    ts = inputs.timestamps[i]
    current = inputs.row(i)
    out: dict = {"timestamp": ts}

    for k in PRICE_LAGS:
        out[f"price_lag_{k}h"] = lag(inputs.price, i, k)
    for k in WIND_LAGS:
        out[f"wind_lag_{k}h"] = lag(inputs.wind, i, k)
    for k in DEMAND_LAGS:
        out[f"demand_lag_{k}h"] = lag(inputs.demand, i, k)
    for k in TEMPERATURE_LAGS:
        out[f"temperature_lag_{k}h"] = lag(inputs.temperature, i, k)

    for w in VOLATILITY_WINDOWS:
        out[f"price_volatility_{w}h"] = volatility(inputs.price, i, w)
    for w in MOMENTUM_WINDOWS:
        out[f"price_momentum_{w}h"] = momentum(inputs.price, i, w)

    out["price_rolling_avg_6h"] = rolling_mean(inputs.price, i, 6)
    out["price_rolling_avg_24h"] = rolling_mean(inputs.price, i, 24)
    out["price_rolling_std_24h"] = rolling_std(inputs.price, i, 24)
    out["price_rolling_min_24h"] = rolling_min(inputs.price, i, 24)
    out["price_rolling_max_24h"] = rolling_max(inputs.price, i, 24)
    out["wind_rolling_avg_24h"] = rolling_mean(inputs.wind, i, 24)
    out["demand_rolling_avg_24h"] = rolling_mean(inputs.demand, i, 24)

    hour, dow = ts.hour, ts.weekday()
    out["hour_sin"], out["hour_cos"] = _cyclical(hour, 24)
    out["day_of_week_sin"], out["day_of_week_cos"] = _cyclical(dow, 7)
    out["month_sin"], out["month_cos"] = _cyclical(ts.month, 12)

    gas_price = gas_by_hour.get(floor_hour(ts))
    out["natural_gas_price"] = gas_price
    for days in GAS_LAG_DAYS:
        out[f"natural_gas_price_lag_{days}d"] = gas_by_hour.get(floor_hour(ts - timedelta(days=days)))

    out["renewable_curtailment"] = renewable_curtailment(current["wind"], current["wind_speed"])
    out["net_imports"] = current["interchange"]
    out["renewable_penetration"] = renewable_penetration(current)

    is_weekend = 1.0 if dow >= 5 else 0.0
    temperature = current["temperature"]
    out["wind_hour_interaction"] = _product(current["wind"], float(hour))
    out["temp_demand_interaction"] = _product(temperature, current["demand"])
    out["gas_price_gas_gen_interaction"] = _product(gas_price, current["gas_gen"])
    out["weekend_hour_interaction"] = is_weekend * hour
    out["temp_extreme_hour_interaction"] = (
        None if temperature is None else abs(temperature - MILD_TEMPERATURE_C) * hour
    )
    return out


def compute_feature_rows(frame: pd.DataFrame, gas_by_hour: Mapping[datetime, float]) -> List[dict]:
    inputs = SeriesInputs.from_frame(frame)
    return [build_feature_row(inputs, i, gas_by_hour) for i in range(len(inputs))]


def feature_vector(row: Mapping[str, Optional[float]], names: Sequence[str] = FEATURE_COLUMNS) -> List[Optional[float]]:
    return [coerce_float(row.get(name)) for name in names]


# ---------- Persistence ----------


@dataclass
class FeatureRunResult:
    total_observations: int = 0
    features_calculated: int = 0
    batches_committed: int = 0
    failed_batches: List[int] = field(default_factory=list)   # batch start offsets
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and not self.failed_batches


@log_job("features.calculate")
def calculate_features(
    db: Session,
    *,
    batch_size: Optional[int] = None,
    start_offset: int = 0,
) -> FeatureRunResult:
    """Recompute engineered features for every observation and upsert them in batches.

    Each batch commits on its own. A failed batch is rolled back, logged and recorded
    by offset; later batches still run. Pass ``start_offset`` to resume a run.
    """
    batch_size = batch_size or get_settings().FEATURE_BATCH_SIZE
    frame = store.load_observation_frame(db)
    result = FeatureRunResult(total_observations=len(frame))
    if frame.empty:
        result.error = "No observations available"
        return result

    gas_by_hour = store.load_auxiliary_series(db, GAS_SERIES)
    rows = compute_feature_rows(frame, gas_by_hour)

    for page in store.iter_pages(rows, batch_size, start_offset):
        try:
            written = store.upsert_feature_rows(db, page.items)
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            result.failed_batches.append(page.offset)
            logger.exception("features.batch_failed", offset=page.offset, size=len(page.items), error=str(exc))
            continue
        result.features_calculated += written
        result.batches_committed += 1
        logger.info("features.batch_committed", offset=page.offset, rows=written)

    return result

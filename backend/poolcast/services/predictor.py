# poolcast/services/predictor.py
"""Forecast resolution: fresh cached predictions first, then batched generation for the rest."""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
import structlog
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from poolcast.config import Settings, get_settings
from poolcast.models.prediction import Prediction, PredictionPerformance
from poolcast.observability.metrics import (
    FORECAST_BATCH_FAILURES,
    PREDICTIONS_GENERATED,
    record_cache_lookup,
)
from poolcast.services import store
from poolcast.services.errors import InferenceError, InvalidHorizonError, ModelNotAvailableError
from poolcast.services.features import GAS_SERIES, SeriesInputs, build_feature_row
from poolcast.services.inference import InferenceEngine, PredictRequest, default_engine
from poolcast.services.trainer import load_active_model
from poolcast.utils.numeric import round_or_none
from poolcast.utils.timeutils import floor_hour, utcnow

logger = structlog.get_logger(__name__)

# enough rows for the 168 h lags plus a full 24 h window
HISTORY_HOURS = 192

_HORIZON_RE = re.compile(r"^\s*(\d+)\s*([hd]?)\s*$", re.IGNORECASE)


@dataclass
class ForecastPoint:
    timestamp: datetime
    horizon_hours: int
    price: Optional[float]
    confidence_lower: Optional[float]
    confidence_upper: Optional[float]
    confidence_score: float
    cached: bool
    model_version: Optional[str] = None


@dataclass
class ForecastPerformance:
    total_duration_ms: float = 0.0
    cache_hit_count: int = 0
    cache_miss_count: int = 0
    cache_hit_rate_percent: float = 0.0
    new_predictions_generated: int = 0
    batch_count: int = 0
    failed_batches: int = 0


@dataclass
class ForecastResult:
    success: bool
    horizon_hours: int
    predictions: List[ForecastPoint] = field(default_factory=list)
    performance: ForecastPerformance = field(default_factory=ForecastPerformance)
    model_version: Optional[str] = None
    error: Optional[str] = None


def parse_horizon(value, max_hours: Optional[int] = None) -> int:
    """Accept ``"24h"``, ``"7d"`` or a bare integer of hours."""
    max_hours = max_hours or get_settings().MAX_HORIZON_HOURS
    if isinstance(value, bool):
        raise InvalidHorizonError(f"Invalid horizon: {value!r}")
    if isinstance(value, int):
        hours = value
    else:
        match = _HORIZON_RE.match(str(value or ""))
        if not match:
            raise InvalidHorizonError(f"Invalid horizon: {value!r} (expected e.g. '24h' or '7d')")
        hours = int(match.group(1)) * (24 if match.group(2).lower() == "d" else 1)
    if not 1 <= hours <= max_hours:
        raise InvalidHorizonError(f"Horizon must be between 1 and {max_hours} hours, got {hours}")
    return hours


def target_hours(now: datetime, horizon_hours: int) -> List[datetime]:
    base = floor_hour(now)
    return [base + timedelta(hours=k) for k in range(1, horizon_hours + 1)]


# ---------- Cache lookup ----------


def lookup_cached(
    db: Session,
    targets: Sequence[datetime],
    *,
    now: datetime,
    ttl: timedelta,
) -> Dict[datetime, Prediction]:
    """Latest fresh prediction per target hour.

    Several predictions can exist for one hour; the most recently created wins.
    """
    if not targets:
        return {}
    stmt = (
        select(Prediction)
        .where(
            Prediction.target_timestamp > now,
            Prediction.target_timestamp < targets[-1] + timedelta(hours=1),
            Prediction.created_at >= now - ttl,
            Prediction.created_at <= now,
        )
        .order_by(Prediction.created_at.asc(), Prediction.id.asc())
    )
    wanted = set(targets)
    hits: Dict[datetime, Prediction] = {}
    for pred in db.execute(stmt).scalars():
        hour = floor_hour(pred.target_timestamp)
        if hour in wanted:
            hits[hour] = pred   # ascending order, so later rows overwrite earlier ones
    return hits


# ---------- Generation ----------


class _ForecastPath:
    """Hourly grid from observed history through the last target hour.

    Observed rows keep their values. Later rows carry the most recent exogenous values
    forward and take their price from cache hits, generated predictions, or (until a
    batch resolves them) the previous hour's price.
    """

    EXOGENOUS = ("demand", "interchange", "wind", "solar", "gas_gen", "hydro", "coal", "temperature", "wind_speed")

    def __init__(self, history: pd.DataFrame, now: datetime, last_target: datetime, gas_by_hour: Mapping[datetime, float]):
        self.inputs = SeriesInputs.from_frame(history)
        self.index: Dict[datetime, int] = {ts: i for i, ts in enumerate(self.inputs.timestamps)}

        known_gas = {ts: p for ts, p in gas_by_hour.items() if ts <= now}
        last_gas = known_gas[max(known_gas)] if known_gas else None
        self.gas_by_hour: Dict[datetime, float] = dict(known_gas)

        carry = self.inputs.row(len(self.inputs) - 1) if len(self.inputs) else {}
        start = self.inputs.timestamps[-1] + timedelta(hours=1) if len(self.inputs) else floor_hour(now) + timedelta(hours=1)
        hour = start
        while hour <= last_target:
            values = {name: carry.get(name) for name in self.EXOGENOUS}
            values["price"] = carry.get("price") if hour <= now else None
            self.inputs.append(hour, values)
            self.index[hour] = len(self.inputs) - 1
            if hour > now and last_gas is not None:
                self.gas_by_hour[hour] = last_gas
            hour += timedelta(hours=1)

    def set_price(self, hour: datetime, price: Optional[float]) -> None:
        self.inputs.price[self.index[hour]] = price

    def feature_rows(self, hours: Sequence[datetime]) -> List[dict]:
        rows = []
        for hour in hours:
            i = self.index[hour]
            if self.inputs.price[i] is None and i > 0:
                self.inputs.price[i] = self.inputs.price[i - 1]
            rows.append(build_feature_row(self.inputs, i, self.gas_by_hour))
        return rows


def _record_performance(db: Session, horizon_hours: int, perf: ForecastPerformance, now: datetime) -> None:
    try:
        db.add(
            PredictionPerformance(
                request_timestamp=now,
                horizon_hours=horizon_hours,
                total_duration_ms=perf.total_duration_ms,
                cache_hit_count=perf.cache_hit_count,
                cache_miss_count=perf.cache_miss_count,
                cache_hit_rate=perf.cache_hit_rate_percent,
                predictions_generated=perf.new_predictions_generated,
                batch_count=perf.batch_count,
                failed_batches=perf.failed_batches,
            )
        )
        db.commit()
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.exception("forecast.telemetry_failed", error=str(exc))


def _generate(
    db: Session,
    misses: Sequence[datetime],
    hits: Mapping[datetime, Prediction],
    targets: Sequence[datetime],
    *,
    now: datetime,
    engine: InferenceEngine,
    batch_size: int,
    perf: ForecastPerformance,
) -> Tuple[Dict[datetime, Prediction], Optional[str]]:
    generated: Dict[datetime, Prediction] = {}
    pages = list(store.iter_pages(list(misses), batch_size))
    perf.batch_count = len(pages)
    if not pages:
        return generated, None

    try:
        version, model = load_active_model(db)
        history = store.load_recent_observations(db, until=now, limit=HISTORY_HOURS)
        path = _ForecastPath(history, now, targets[-1], store.load_auxiliary_series(db, GAS_SERIES))
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        perf.failed_batches = len(pages)
        if isinstance(exc, ModelNotAvailableError):
            logger.warning("forecast.model_unavailable", error=str(exc), batches=len(pages))
        else:
            logger.exception("forecast.generation_setup_failed", error=str(exc), batches=len(pages))
        return generated, None

    for hour, pred in hits.items():
        path.set_price(hour, pred.predicted_price)

    base = floor_hour(now)
    for page in pages:
        hours = list(page.items)
        horizons = [int((h - base) / timedelta(hours=1)) for h in hours]
        try:
            rows = path.feature_rows(hours)
            frame = pd.DataFrame(rows).reindex(columns=model.feature_names)
            forecasts = engine.run(PredictRequest(model, frame, horizons))
            if len(forecasts) != len(hours):
                raise InferenceError(f"engine returned {len(forecasts)} forecasts for {len(hours)} hours")
            batch: List[Prediction] = []
            for hour, k, row, fc in zip(hours, horizons, rows, forecasts):
                batch.append(
                    Prediction(
                        created_at=now,
                        target_timestamp=hour,
                        horizon_hours=k,
                        predicted_price=fc.price,
                        confidence_lower=fc.lower,
                        confidence_upper=fc.upper,
                        confidence_score=fc.confidence_score,
                        model_version=version.version_id,
                        features_used={name: round_or_none(row.get(name)) for name in model.feature_names},
                    )
                )
            db.add_all(batch)
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            perf.failed_batches += 1
            logger.exception("forecast.batch_failed", offset=page.offset, size=len(hours), error=str(exc))
            continue
        for pred in batch:
            path.set_price(pred.target_timestamp, pred.predicted_price)
            generated[pred.target_timestamp] = pred

    return generated, version.version_id


def _point(pred: Prediction, k: int, cached: bool) -> ForecastPoint:
    return ForecastPoint(
        timestamp=floor_hour(pred.target_timestamp),
        horizon_hours=k,
        price=pred.predicted_price,
        confidence_lower=pred.confidence_lower,
        confidence_upper=pred.confidence_upper,
        confidence_score=float(pred.confidence_score or 0.0),
        cached=cached,
        model_version=pred.model_version,
    )


def get_forecast(
    db: Session,
    horizon_hours: int,
    force_refresh: bool = False,
    *,
    now: Optional[datetime] = None,
    engine: Optional[InferenceEngine] = None,
    settings: Optional[Settings] = None,
) -> ForecastResult:
    """Exactly ``horizon_hours`` hourly forecasts after ``now``, sorted by target hour."""
    settings = settings or get_settings()
    horizon_hours = parse_horizon(horizon_hours, settings.MAX_HORIZON_HOURS)
    now = now or utcnow()
    engine = engine or default_engine()
    started = time.perf_counter()

    targets = target_hours(now, horizon_hours)
    hits: Dict[datetime, Prediction] = {}
    if not force_refresh:
        hits = lookup_cached(db, targets, now=now, ttl=timedelta(minutes=settings.CACHE_TTL_MINUTES))
    misses = [t for t in targets if t not in hits]

    perf = ForecastPerformance(cache_hit_count=len(hits), cache_miss_count=len(misses))
    generated, version_id = _generate(
        db,
        misses,
        hits,
        targets,
        now=now,
        engine=engine,
        batch_size=settings.PREDICTION_BATCH_HOURS,
        perf=perf,
    )

    points: List[ForecastPoint] = []
    for k, hour in enumerate(targets, start=1):
        if hour in hits:
            points.append(_point(hits[hour], k, cached=True))
        elif hour in generated:
            points.append(_point(generated[hour], k, cached=False))
        else:
            points.append(
                ForecastPoint(
                    timestamp=hour,
                    horizon_hours=k,
                    price=None,
                    confidence_lower=None,
                    confidence_upper=None,
                    confidence_score=0.0,
                    cached=False,
                )
            )
    points.sort(key=lambda p: p.timestamp)
    points = points[:horizon_hours]

    perf.new_predictions_generated = len(generated)
    perf.cache_hit_rate_percent = round(100.0 * len(hits) / horizon_hours, 2)
    perf.total_duration_ms = round((time.perf_counter() - started) * 1000, 2)

    record_cache_lookup(len(hits), len(misses))
    PREDICTIONS_GENERATED.inc(len(generated))
    if perf.failed_batches:
        FORECAST_BATCH_FAILURES.inc(perf.failed_batches)
    _record_performance(db, horizon_hours, perf, now)

    resolved = sum(1 for p in points if p.price is not None)
    if version_id is None and hits:
        version_id = max(hits.values(), key=lambda p: p.created_at).model_version
    logger.info(
        "forecast.resolved",
        horizon=horizon_hours,
        hits=len(hits),
        misses=len(misses),
        generated=len(generated),
        failed_batches=perf.failed_batches,
    )
    return ForecastResult(
        success=resolved > 0,
        horizon_hours=horizon_hours,
        predictions=points,
        performance=perf,
        model_version=version_id,
        error=None if resolved else "No forecast hours could be resolved",
    )


def get_recent_performance(db: Session, limit: int = 50) -> List[PredictionPerformance]:
    stmt = select(PredictionPerformance).order_by(desc(PredictionPerformance.request_timestamp)).limit(limit)
    return list(db.execute(stmt).scalars().all())

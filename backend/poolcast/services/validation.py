# poolcast/services/validation.py
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from poolcast.config import Settings, get_settings
from poolcast.models.accuracy import PredictionAccuracy
from poolcast.models.observation import Observation
from poolcast.models.prediction import Prediction
from poolcast.observability.instrument import log_job
from poolcast.observability.metrics import VALIDATED_PREDICTIONS
from poolcast.services.scoring import ZERO_PRICE_EPSILON
from poolcast.utils.timeutils import ensure_utc, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class ValidationResult:
    success: bool = True
    validated: int = 0
    errors: int = 0
    deferred: int = 0
    summary_by_horizon: Dict[str, dict] = field(default_factory=dict)
    summary_by_regime: Dict[str, dict] = field(default_factory=dict)
    summary_by_model: Dict[str, dict] = field(default_factory=dict)
    overall: dict = field(default_factory=dict)


def classify_regime(price: float, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    if price >= settings.SPIKE_PRICE_THRESHOLD:
        return "spike"
    if price >= settings.ELEVATED_PRICE_THRESHOLD:
        return "elevated"
    if price < settings.LOW_PRICE_THRESHOLD:
        return "low"
    return "normal"


def error_metrics(actual: float, predicted: float) -> Tuple[float, Optional[float], float]:
    """(absolute error, percent error or None near zero, symmetric percent error)."""
    absolute = abs(actual - predicted)
    percent = absolute / abs(actual) * 100.0 if abs(actual) >= ZERO_PRICE_EPSILON else None
    denom = (abs(actual) + abs(predicted)) / 2.0
    symmetric = absolute / denom * 100.0 if denom > ZERO_PRICE_EPSILON else 0.0
    return absolute, percent, symmetric


def within_interval(actual: float, lower: Optional[float], upper: Optional[float]) -> bool:
    if lower is None or upper is None:
        return False
    return lower <= actual <= upper


def find_actual(db: Session, target: datetime, window: timedelta) -> Optional[Observation]:
    """Closest valid observation with a price within ``window`` of ``target``."""
    target = ensure_utc(target)
    stmt = select(Observation).where(
        Observation.timestamp >= target - window,
        Observation.timestamp <= target + window,
        Observation.is_valid.is_(True),
        Observation.price.isnot(None),
    )
    candidates = list(db.execute(stmt).scalars().all())
    if not candidates:
        return None
    return min(candidates, key=lambda o: (abs(o.timestamp - target), o.timestamp))


def _summarize(records: Iterable[PredictionAccuracy]) -> dict:
    rows = list(records)
    if not rows:
        return {"count": 0, "mae": None, "smape": None, "confidence_hit_rate": None}
    n = len(rows)
    return {
        "count": n,
        "mae": sum(r.absolute_error for r in rows) / n,
        "smape": sum(r.symmetric_percent_error for r in rows) / n,
        "confidence_hit_rate": 100.0 * sum(1 for r in rows if r.within_confidence_interval) / n,
    }


def _group(records: List[PredictionAccuracy], key) -> Dict[str, dict]:
    buckets: Dict[str, List[PredictionAccuracy]] = defaultdict(list)
    for r in records:
        buckets[str(key(r))].append(r)
    return {k: _summarize(v) for k, v in sorted(buckets.items())}


def _accuracy_row(pred: Prediction, actual: float, now: datetime, settings: Settings) -> PredictionAccuracy:
    absolute, percent, symmetric = error_metrics(actual, pred.predicted_price)
    return PredictionAccuracy(
        prediction_id=pred.id,
        target_timestamp=pred.target_timestamp,
        predicted_price=pred.predicted_price,
        actual_price=actual,
        absolute_error=absolute,
        percent_error=percent,
        symmetric_percent_error=symmetric,
        horizon_hours=pred.horizon_hours,
        model_version=pred.model_version,
        within_confidence_interval=within_interval(actual, pred.confidence_lower, pred.confidence_upper),
        actual_regime=classify_regime(actual, settings),
        validated_at=now,
    )


def iter_due_predictions(db: Session, now: datetime, page_size: int) -> Iterator[Prediction]:
    """Unvalidated predictions with target <= ``now``, oldest first, paged by (target, id).

    Paging is keyset based so rows left unvalidated in one page are never fetched again
    in the same run.
    """
    after: Optional[Tuple[datetime, int]] = None
    while True:
        stmt = select(Prediction).where(Prediction.validated_at.is_(None), Prediction.target_timestamp <= now)
        if after is not None:
            stmt = stmt.where(
                or_(
                    Prediction.target_timestamp > after[0],
                    and_(Prediction.target_timestamp == after[0], Prediction.id > after[1]),
                )
            )
        stmt = stmt.order_by(Prediction.target_timestamp.asc(), Prediction.id.asc()).limit(page_size)
        page = list(db.execute(stmt).scalars().all())
        if not page:
            return
        after = (page[-1].target_timestamp, page[-1].id)
        yield from page


@log_job("predictions.validate")
def validate_due_predictions(
    db: Session,
    batch_limit: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """Match due, unvalidated predictions to actual prices.

    Each prediction is its own unit of work: the accuracy row is written, then
    ``validated_at`` is set, then the unit commits. A prediction without an actual
    inside the match window is deferred to a later run and does not count against
    ``batch_limit``, so unmatched hours never block later predictions.
    """
    settings = get_settings()
    batch_limit = batch_limit or settings.VALIDATION_BATCH_LIMIT
    now = now or utcnow()
    window = timedelta(minutes=settings.VALIDATION_MATCH_MINUTES)

    result = ValidationResult()
    records: List[PredictionAccuracy] = []
    scanned = 0
    for pred in iter_due_predictions(db, now, batch_limit):
        if result.validated + result.errors >= batch_limit:
            break
        scanned += 1
        try:
            obs = find_actual(db, pred.target_timestamp, window)
            if obs is None:
                result.deferred += 1
                continue
            accuracy = db.execute(
                select(PredictionAccuracy).where(PredictionAccuracy.prediction_id == pred.id)
            ).scalars().first()
            if accuracy is None:
                accuracy = _accuracy_row(pred, float(obs.price), now, settings)
                db.add(accuracy)
                db.flush()
            pred.validated_at = now
            db.commit()
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            result.errors += 1
            logger.exception("validation.prediction_failed", prediction_id=pred.id, error=str(exc))
            continue
        result.validated += 1
        records.append(accuracy)
        VALIDATED_PREDICTIONS.labels(regime=accuracy.actual_regime).inc()

    result.summary_by_horizon = _group(records, lambda r: r.horizon_hours)
    result.summary_by_regime = _group(records, lambda r: r.actual_regime)
    result.summary_by_model = _group(records, lambda r: r.model_version or "unknown")
    result.overall = _summarize(records)
    result.success = result.errors == 0 or result.validated > 0
    logger.info(
        "validation.completed",
        due=scanned,
        validated=result.validated,
        deferred=result.deferred,
        errors=result.errors,
    )
    return result

# poolcast/services/retraining.py
from __future__ import annotations

import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import product
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.models.accuracy import PredictionAccuracy
from poolcast.models.retraining import HyperparameterTrial, RetrainingEvent
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.services.errors import PipelineError
from poolcast.services.inference import InferenceEngine, default_engine
from poolcast.services.quality import latest_quality_score
from poolcast.services.trainer import fit_candidate, get_active_model_version, persist_model_version, train_model
from poolcast.utils.timeutils import ensure_utc, utcnow

logger = structlog.get_logger(__name__)

HYPERPARAMETER_GRID: Dict[str, List[Any]] = {
    "n_estimators": [100, 200, 400],
    "learning_rate": [0.03, 0.05, 0.1],
    "max_depth": [3, 4, 5],
    "subsample": [0.7, 0.8, 1.0],
    "min_samples_leaf": [3, 5, 10],
}
SEARCH_SEED = 42


@dataclass
class RetrainingOutcome:
    triggered: bool
    reasons: List[str] = field(default_factory=list)
    success: Optional[bool] = None
    model_version: Optional[str] = None
    performance_before: Optional[dict] = None
    performance_after: Optional[dict] = None
    improvement: Optional[float] = None
    error: Optional[str] = None
    event_id: Optional[int] = None

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons) if self.reasons else "no retraining condition met"


@dataclass
class TrialResult:
    trial_number: int
    hyperparameters: Dict[str, Any]
    metrics: Optional[dict] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None
    is_best: bool = False


@dataclass
class SearchResult:
    success: bool
    search_id: str
    trials: List[TrialResult] = field(default_factory=list)
    best: Optional[TrialResult] = None
    model_version: Optional[str] = None
    error: Optional[str] = None


def recent_smape(db: Session, since: datetime) -> tuple:
    """(mean sMAPE, sample count) over accuracy rows validated since ``since``."""
    stmt = select(
        func.avg(PredictionAccuracy.symmetric_percent_error),
        func.count(PredictionAccuracy.id),
    ).where(PredictionAccuracy.validated_at >= since)
    avg, count = db.execute(stmt).one()
    return (float(avg) if avg is not None else None), int(count or 0)


def _last_successful_retrain(db: Session) -> Optional[datetime]:
    stmt = (
        select(RetrainingEvent.created_at)
        .where(RetrainingEvent.triggered.is_(True), RetrainingEvent.success.is_(True))
        .order_by(desc(RetrainingEvent.created_at))
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def retraining_reasons(db: Session, now: datetime) -> List[str]:
    settings = get_settings()
    reasons: List[str] = []

    smape, samples = recent_smape(db, now - timedelta(hours=settings.RETRAIN_LOOKBACK_HOURS))
    if smape is not None and samples >= settings.RETRAIN_MIN_SAMPLES and smape > settings.RETRAIN_SMAPE_THRESHOLD:
        reasons.append(f"recent sMAPE {smape:.1f}% above {settings.RETRAIN_SMAPE_THRESHOLD:.0f}% over {samples} predictions")

    score = latest_quality_score(db)
    if score is not None and score < settings.RETRAIN_QUALITY_THRESHOLD:
        reasons.append(f"data quality score {score:.1f} below {settings.RETRAIN_QUALITY_THRESHOLD:.0f}")

    active = get_active_model_version(db)
    if active is None:
        reasons.append("no active model")
    else:
        candidates = [t for t in (_last_successful_retrain(db), active.trained_at) if t is not None]
        last = max(ensure_utc(t) for t in candidates)
        age_hours = (now - last).total_seconds() / 3600.0
        if age_hours > settings.RETRAIN_MAX_INTERVAL_HOURS:
            reasons.append(f"model is {age_hours:.0f}h old (max {settings.RETRAIN_MAX_INTERVAL_HOURS}h)")
    return reasons


@log_job("model.retraining_check")
def check_auto_retraining(
    db: Session,
    *,
    now: Optional[datetime] = None,
    engine: Optional[InferenceEngine] = None,
) -> RetrainingOutcome:
    """Evaluate the retraining conditions and retrain when any holds; always log an event."""
    now = ensure_utc(now) if now else utcnow()
    reasons = retraining_reasons(db, now)
    outcome = RetrainingOutcome(triggered=bool(reasons), reasons=reasons)

    duration = None
    if outcome.triggered:
        before = get_active_model_version(db)
        outcome.performance_before = before.metrics() if before else None
        started = time.perf_counter()
        trained = train_model(db, engine=engine, now=now)
        duration = time.perf_counter() - started
        outcome.success = trained.success
        outcome.error = trained.error
        if trained.success:
            outcome.model_version = trained.model_version
            outcome.performance_after = trained.metrics
            if outcome.performance_before:
                outcome.improvement = float(outcome.performance_before["mae"]) - float(trained.metrics["mae"])

    event = RetrainingEvent(
        created_at=now,
        triggered=outcome.triggered,
        reason=outcome.reason,
        success=outcome.success,
        error=outcome.error,
        performance_before=outcome.performance_before,
        performance_after=outcome.performance_after,
        improvement=outcome.improvement,
        duration_seconds=duration,
        model_version=outcome.model_version,
    )
    db.add(event)
    db.commit()
    outcome.event_id = event.id
    logger.info(
        "retraining.checked",
        triggered=outcome.triggered,
        success=outcome.success,
        reason=outcome.reason,
        improvement=outcome.improvement,
    )
    return outcome


def sample_configurations(trials: int, seed: int = SEARCH_SEED) -> List[Dict[str, Any]]:
    """``trials`` distinct grid points drawn with a seeded RNG."""
    keys = list(HYPERPARAMETER_GRID)
    grid = [dict(zip(keys, values)) for values in product(*(HYPERPARAMETER_GRID[k] for k in keys))]
    rng = random.Random(seed)
    return rng.sample(grid, min(trials, len(grid)))


@log_job("model.hyperparameter_search")
def run_hyperparameter_search(
    db: Session,
    trials: int = 5,
    *,
    promote: bool = True,
    engine: Optional[InferenceEngine] = None,
    seed: int = SEARCH_SEED,
) -> SearchResult:
    if trials < 1:
        raise ValueError("trials must be at least 1")
    settings = get_settings()
    engine = engine or default_engine()
    result = SearchResult(success=False, search_id=uuid.uuid4().hex[:12])

    frame = store.load_training_frame(db)
    if len(frame) < settings.MIN_TRAINING_RECORDS:
        result.error = f"Need at least {settings.MIN_TRAINING_RECORDS} training rows, got {len(frame)}"
        return result

    candidates = {}
    for number, params in enumerate(sample_configurations(trials, seed), start=1):
        trial = TrialResult(trial_number=number, hyperparameters=params)
        started = time.perf_counter()
        try:
            candidate = fit_candidate(frame, params, engine)
            trial.metrics = {k: candidate.metrics[k] for k in ("mae", "rmse", "smape", "r_squared")}
            candidates[number] = candidate
        except (PipelineError, ValueError) as exc:
            trial.error = str(exc)
            logger.warning("hyperparameter.trial_failed", trial=number, error=str(exc))
        trial.duration_seconds = time.perf_counter() - started
        result.trials.append(trial)

    scored = [t for t in result.trials if t.metrics is not None]
    if scored:
        result.best = min(scored, key=lambda t: t.metrics["smape"])
        result.best.is_best = True
        if promote:
            version = persist_model_version(db, candidates[result.best.trial_number])
            result.model_version = version.version_id
        result.success = True
    else:
        result.error = "every trial failed"

    for trial in result.trials:
        db.add(
            HyperparameterTrial(
                search_id=result.search_id,
                trial_number=trial.trial_number,
                hyperparameters=trial.hyperparameters,
                performance_metrics=trial.metrics,
                training_duration_seconds=trial.duration_seconds,
                is_best_trial=trial.is_best,
                model_version=result.model_version if trial.is_best else None,
            )
        )
    db.commit()
    logger.info(
        "hyperparameter.search_completed",
        search_id=result.search_id,
        trials=len(result.trials),
        best_smape=result.best.metrics["smape"] if result.best else None,
        promoted=result.model_version,
    )
    return result


def get_retraining_history(db: Session, limit: int = 10) -> List[RetrainingEvent]:
    stmt = select(RetrainingEvent).order_by(desc(RetrainingEvent.created_at), desc(RetrainingEvent.id)).limit(limit)
    return list(db.execute(stmt).scalars().all())

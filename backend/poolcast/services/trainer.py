# poolcast/services/trainer.py
from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import structlog
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.models.feature import FEATURE_COLUMNS
from poolcast.models.model_version import STATUS_READY, STATUS_ROLLED_BACK, ModelVersion
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.services.errors import InsufficientDataError, ModelNotAvailableError, PipelineError, TrainingError
from poolcast.services.inference import (
    FittedModel,
    InferenceEngine,
    TrainRequest,
    ValidateRequest,
    default_engine,
)
from poolcast.utils.timeutils import utcnow

logger = structlog.get_logger(__name__)

ALGORITHM = "gradient_boosting"


@dataclass
class CandidateFit:
    model: FittedModel
    metrics: Dict[str, Any]
    train_rows: int
    test_rows: int
    training_start: Optional[datetime]
    training_end: Optional[datetime]


@dataclass
class TrainingResult:
    success: bool
    model_version: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    duration_seconds: float = 0.0


def chronological_split(frame: pd.DataFrame, ratio: float) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """First ``ratio`` of rows for training, the rest for hold-out; never shuffled."""
    cut = int(len(frame) * ratio)
    return frame.iloc[:cut], frame.iloc[cut:]


def _feature_frame(frame: pd.DataFrame) -> pd.DataFrame:
    return frame.reindex(columns=list(FEATURE_COLUMNS))


def fit_candidate(
    frame: pd.DataFrame,
    hyperparameters: Optional[Dict[str, Any]],
    engine: InferenceEngine,
    *,
    split_ratio: Optional[float] = None,
) -> CandidateFit:
    """Fit on the chronological head of ``frame`` and score on its tail, without persisting."""
    ratio = split_ratio if split_ratio is not None else get_settings().TRAIN_SPLIT_RATIO
    train, test = chronological_split(frame, ratio)
    if train.empty or test.empty:
        raise InsufficientDataError(f"cannot split {len(frame)} rows into train and hold-out")

    model = engine.run(TrainRequest(_feature_frame(train), train["price"].tolist(), dict(hyperparameters or {})))
    metrics = engine.run(ValidateRequest(model, _feature_frame(test), test["price"].tolist()))
    for key in ("mae", "rmse", "smape", "r_squared"):
        value = metrics.get(key)
        if value is None or not math.isfinite(float(value)):
            raise TrainingError(f"hold-out {key} is not finite")
    # interval width is calibrated on hold-out error, not in-sample residuals
    model.residual_std = float(metrics["rmse"])

    return CandidateFit(
        model=model,
        metrics={**metrics, "training_records": len(train)},
        train_rows=len(train),
        test_rows=len(test),
        training_start=pd.Timestamp(train["timestamp"].iloc[0]).to_pydatetime(),
        training_end=pd.Timestamp(train["timestamp"].iloc[-1]).to_pydatetime(),
    )


def _new_version_id(trained_at: datetime) -> str:
    return f"gbr-{trained_at:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:6]}"


def persist_model_version(db: Session, candidate: CandidateFit, *, trained_at: Optional[datetime] = None) -> ModelVersion:
    trained_at = trained_at or utcnow()
    model = candidate.model
    row = ModelVersion(
        version_id=_new_version_id(trained_at),
        trained_at=trained_at,
        algorithm=ALGORITHM,
        hyperparameters=model.hyperparameters,
        mae=float(candidate.metrics["mae"]),
        rmse=float(candidate.metrics["rmse"]),
        smape=float(candidate.metrics["smape"]),
        r_squared=float(candidate.metrics["r_squared"]),
        training_record_count=candidate.train_rows,
        training_start=candidate.training_start,
        training_end=candidate.training_end,
        feature_names=list(model.feature_names),
        feature_importance=model.feature_importance,
        residual_std=model.residual_std,
        artifact=model.to_bytes(),
        status=STATUS_READY,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@log_job("model.train")
def train_model(
    db: Session,
    hyperparameters: Optional[Dict[str, Any]] = None,
    *,
    engine: Optional[InferenceEngine] = None,
    now: Optional[datetime] = None,
) -> TrainingResult:
    """Fit and score a new model; only a successful run adds a ModelVersion."""
    settings = get_settings()
    engine = engine or default_engine()
    started = time.perf_counter()
    try:
        frame = store.load_training_frame(db)
        if len(frame) < settings.MIN_TRAINING_RECORDS:
            raise InsufficientDataError(
                f"Need at least {settings.MIN_TRAINING_RECORDS} training rows, got {len(frame)}"
            )
        candidate = fit_candidate(frame, hyperparameters, engine)
        version = persist_model_version(db, candidate, trained_at=now)
    except PipelineError as exc:
        db.rollback()
        logger.warning("model.train_failed", error=str(exc))
        return TrainingResult(success=False, error=str(exc), duration_seconds=time.perf_counter() - started)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.exception("model.train_failed", error=str(exc))
        return TrainingResult(success=False, error=str(exc), duration_seconds=time.perf_counter() - started)

    logger.info("model.trained", version=version.version_id, mae=version.mae, smape=version.smape)
    return TrainingResult(
        success=True,
        model_version=version.version_id,
        metrics=version.metrics(),
        duration_seconds=time.perf_counter() - started,
    )


def _ready_versions(db: Session, limit: Optional[int] = None) -> List[ModelVersion]:
    stmt = (
        select(ModelVersion)
        .where(ModelVersion.status == STATUS_READY)
        .order_by(desc(ModelVersion.trained_at), desc(ModelVersion.id))
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def get_active_model_version(db: Session) -> Optional[ModelVersion]:
    versions = _ready_versions(db, limit=1)
    return versions[0] if versions else None


def load_active_model(db: Session) -> Tuple[ModelVersion, FittedModel]:
    version = get_active_model_version(db)
    if version is None:
        raise ModelNotAvailableError("No trained model version is available")
    try:
        return version, FittedModel.from_bytes(version.artifact)
    except Exception as exc:  # noqa: BLE001
        raise ModelNotAvailableError(f"Model {version.version_id} artifact could not be loaded: {exc}") from exc


def rollback_active_model(db: Session) -> ModelVersion:
    """Retire the active version; the next most recent ready version becomes active."""
    ready = _ready_versions(db, limit=2)
    if len(ready) < 2:
        raise ModelNotAvailableError("Rollback needs at least two ready model versions")
    current, previous = ready
    current.status = STATUS_ROLLED_BACK
    db.commit()
    db.refresh(previous)
    logger.info("model.rolled_back", retired=current.version_id, active=previous.version_id)
    return previous

# poolcast/services/cross_validation.py
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import List, Optional

import numpy as np
import pandas as pd
import structlog
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.models.cross_validation import CVFold, CVRun
from poolcast.models.feature import FEATURE_COLUMNS
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.services.inference import InferenceEngine, TrainRequest, ValidateRequest, default_engine

logger = structlog.get_logger(__name__)

FOLD_COMPLETED = "completed"
FOLD_SKIPPED = "skipped"
METRIC_KEYS = ("mae", "rmse", "smape", "mape")


@dataclass
class FoldResult:
    fold_number: int
    train_start: Optional[datetime] = None
    train_end: Optional[datetime] = None
    validation_start: Optional[datetime] = None
    validation_end: Optional[datetime] = None
    train_rows: int = 0
    validation_rows: int = 0
    status: str = FOLD_SKIPPED
    skip_reason: Optional[str] = None
    mae: Optional[float] = None
    rmse: Optional[float] = None
    smape: Optional[float] = None
    mape: Optional[float] = None


@dataclass
class CVResult:
    success: bool
    num_folds: int
    validation_window_hours: int
    folds: List[FoldResult] = field(default_factory=list)
    average_metrics: dict = field(default_factory=dict)
    completed_folds: int = 0
    run_id: Optional[int] = None
    error: Optional[str] = None


def _utc(value) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    return ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")


def _ts(value) -> datetime:
    return _utc(value).to_pydatetime()


def split_blocked_folds(frame: pd.DataFrame, num_folds: int, validation_window_hours: int) -> List[tuple]:
    """Cut ``frame`` into ``num_folds`` contiguous blocks of (near) equal length.

    Inside block k the final ``validation_window_hours`` hours validate and the
    earlier rows train. Blocks never overlap, so no fold's validation window
    touches a later fold's training window.
    """
    n = len(frame)
    bounds = [round(k * n / num_folds) for k in range(num_folds + 1)]
    folds = []
    for k in range(num_folds):
        block = frame.iloc[bounds[k] : bounds[k + 1]]
        if block.empty:
            folds.append((k + 1, block, block))
            continue
        cutoff = _utc(block["timestamp"].iloc[-1]) - pd.Timedelta(hours=validation_window_hours)
        stamps = pd.to_datetime(block["timestamp"], utc=True)
        folds.append((k + 1, block[stamps <= cutoff], block[stamps > cutoff]))
    return folds


def _evaluate_fold(
    fold_number: int,
    train: pd.DataFrame,
    valid: pd.DataFrame,
    engine: InferenceEngine,
    min_train_rows: int,
) -> FoldResult:
    result = FoldResult(fold_number=fold_number, train_rows=len(train), validation_rows=len(valid))
    if not train.empty:
        result.train_start, result.train_end = _ts(train["timestamp"].iloc[0]), _ts(train["timestamp"].iloc[-1])
    if not valid.empty:
        result.validation_start, result.validation_end = _ts(valid["timestamp"].iloc[0]), _ts(valid["timestamp"].iloc[-1])

    if train.empty or valid.empty:
        result.skip_reason = "no usable training rows" if train.empty else "no usable validation rows"
        return result
    if len(train) < min_train_rows:
        result.skip_reason = f"only {len(train)} training rows (minimum {min_train_rows})"
        return result
    if result.validation_start <= result.train_end:
        result.skip_reason = "validation window does not start after training window"
        logger.error("cv.fold_ordering_violation", fold=fold_number)
        return result

    features = list(FEATURE_COLUMNS)
    try:
        model = engine.run(TrainRequest(train.reindex(columns=features), train["price"].tolist()))
        metrics = engine.run(ValidateRequest(model, valid.reindex(columns=features), valid["price"].tolist()))
    except Exception as exc:  # noqa: BLE001
        logger.exception("cv.fold_failed", fold=fold_number, error=str(exc))
        result.skip_reason = f"training failed: {exc}"
        return result

    result.status = FOLD_COMPLETED
    for key in METRIC_KEYS:
        value = metrics.get(key)
        setattr(result, key, None if value is None or not math.isfinite(value) else float(value))
    return result


def _average(folds: List[FoldResult]) -> dict:
    done = [f for f in folds if f.status == FOLD_COMPLETED]
    out = {}
    for key in METRIC_KEYS:
        vals = [getattr(f, key) for f in done if getattr(f, key) is not None]
        out[key] = float(np.mean(vals)) if vals else None
    return out


@log_job("model.cross_validation")
def run_cross_validation(
    db: Session,
    num_folds: int = 5,
    validation_window_hours: int = 168,
    *,
    engine: Optional[InferenceEngine] = None,
) -> CVResult:
    if num_folds < 1:
        raise ValueError("num_folds must be at least 1")
    if validation_window_hours < 1:
        raise ValueError("validation_window_hours must be at least 1")

    settings = get_settings()
    engine = engine or default_engine()
    frame = store.load_training_frame(db)
    result = CVResult(success=False, num_folds=num_folds, validation_window_hours=validation_window_hours)
    if len(frame) < num_folds:
        result.error = f"Need at least {num_folds} usable rows, got {len(frame)}"
        return result

    for fold_number, train, valid in split_blocked_folds(frame, num_folds, validation_window_hours):
        fold = _evaluate_fold(fold_number, train, valid, engine, settings.MIN_FOLD_TRAIN_ROWS)
        result.folds.append(fold)
        logger.info("cv.fold", fold=fold_number, status=fold.status, reason=fold.skip_reason, mae=fold.mae)

    result.completed_folds = sum(1 for f in result.folds if f.status == FOLD_COMPLETED)
    result.average_metrics = _average(result.folds)
    result.success = result.completed_folds > 0
    if not result.success:
        result.error = "No fold had enough data to train and validate"

    run = CVRun(
        num_folds=num_folds,
        validation_window_hours=validation_window_hours,
        completed_folds=result.completed_folds,
        avg_mae=result.average_metrics["mae"],
        avg_rmse=result.average_metrics["rmse"],
        avg_smape=result.average_metrics["smape"],
        avg_mape=result.average_metrics["mape"],
    )
    run.folds = [CVFold(**asdict(f)) for f in result.folds]
    db.add(run)
    db.commit()
    result.run_id = run.id
    return result

# poolcast/routers/model.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from poolcast.db.session import get_db
from poolcast.models.model_version import ModelVersion
from poolcast.schemas.common import fail, meta_now, ok
from poolcast.schemas.model import (
    CrossValidationIn,
    CrossValidationOut,
    FoldOut,
    ModelVersionOut,
    PerformanceMetrics,
    RetrainingEventOut,
    RetrainingOut,
    SearchIn,
    SearchOut,
    TrainIn,
    TrainOut,
)
from poolcast.services.cross_validation import run_cross_validation
from poolcast.services.errors import ModelNotAvailableError
from poolcast.services.inference import InferenceEngine, default_engine
from poolcast.services.retraining import check_auto_retraining, get_retraining_history, run_hyperparameter_search
from poolcast.services.trainer import get_active_model_version, rollback_active_model, train_model

router = APIRouter(prefix="/api/model", tags=["model"])


def _version_out(version: ModelVersion) -> ModelVersionOut:
    return ModelVersionOut(
        version_id=version.version_id,
        trained_at=version.trained_at,
        algorithm=version.algorithm,
        status=version.status,
        hyperparameters=version.hyperparameters or {},
        performance_metrics=PerformanceMetrics(**version.metrics()),
        training_start=version.training_start,
        training_end=version.training_end,
        feature_importance=version.feature_importance,
    )


@router.post("/train")
def train(
    body: Optional[TrainIn] = Body(None),
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    hyperparameters = body.hyperparameters if body else None
    result = train_model(db, hyperparameters, engine=engine)
    payload = TrainOut(
        success=result.success,
        model_version=result.model_version,
        performance_metrics=PerformanceMetrics(**result.metrics) if result.success else None,
        duration_seconds=round(result.duration_seconds, 3),
        error=result.error,
    )
    meta = meta_now(operation="train_model")
    if not result.success:
        return fail(code="TRAINING_FAILED", message=result.error or "Training failed", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)


@router.get("/active")
def active_model(db: Session = Depends(get_db)):
    version = get_active_model_version(db)
    meta = meta_now(operation="active_model")
    if version is None:
        return fail(code="MODEL_UNAVAILABLE", message="No trained model version is available", status_code=503, meta=meta)
    return ok(data=_version_out(version), meta=meta)


@router.post("/rollback")
def rollback(db: Session = Depends(get_db)):
    meta = meta_now(operation="rollback_model")
    try:
        version = rollback_active_model(db)
    except ModelNotAvailableError as exc:
        return fail(code="ROLLBACK_UNAVAILABLE", message=str(exc), status_code=409, meta=meta)
    return ok(data=_version_out(version), meta=meta)


@router.post("/cross-validation")
def cross_validation(
    body: Optional[CrossValidationIn] = Body(None),
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    body = body or CrossValidationIn()
    meta = meta_now(
        operation="cross_validation",
        num_folds=body.num_folds,
        validation_window_hours=body.validation_window_hours,
    )
    result = run_cross_validation(db, body.num_folds, body.validation_window_hours, engine=engine)
    payload = CrossValidationOut(
        success=result.success,
        run_id=result.run_id,
        num_folds=result.num_folds,
        validation_window_hours=result.validation_window_hours,
        completed_folds=result.completed_folds,
        fold_results=[FoldOut.model_validate(f) for f in result.folds],
        average_metrics=result.average_metrics,
        error=result.error,
    )
    if not result.success:
        return fail(code="CROSS_VALIDATION_FAILED", message=result.error or "No fold completed", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)


@router.post("/retraining/check")
def retraining_check(
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    outcome = check_auto_retraining(db, engine=engine)
    payload = RetrainingOut(
        success=outcome.success is not False,
        retraining_completed=bool(outcome.triggered and outcome.success),
        triggered=outcome.triggered,
        reason=outcome.reason,
        model_version=outcome.model_version,
        improvement=outcome.improvement,
        performance_before=outcome.performance_before,
        performance_after=outcome.performance_after,
        error=outcome.error,
    )
    meta = meta_now(operation="check_auto_retraining")
    if outcome.triggered and not outcome.success:
        return fail(code="RETRAINING_FAILED", message=outcome.error or "Retraining failed", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)


@router.get("/retraining/history")
def retraining_history(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    events = [RetrainingEventOut.model_validate(e) for e in get_retraining_history(db, limit)]
    return ok(data=events, meta=meta_now(operation="retraining_history", limit=limit))


@router.post("/hyperparameters/search")
def hyperparameter_search(
    body: Optional[SearchIn] = Body(None),
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    body = body or SearchIn()
    meta = meta_now(operation="hyperparameter_search", trials=body.trials, promote=body.promote)
    result = run_hyperparameter_search(db, body.trials, promote=body.promote, engine=engine)
    payload = SearchOut.model_validate(result)
    if not result.success:
        return fail(code="SEARCH_FAILED", message=result.error or "Search failed", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)

# poolcast/routers/forecast.py
"""
Forecast API (hourly horizon)

Public contract for GET/POST /api/forecast:
- Returns EXACTLY `horizon` hourly rows after the current hour, sorted by timestamp.
- Cached rows carry `cached: true`; hours that could not be resolved carry a null price.
- 422 on an invalid horizon, 503 when not a single hour could be resolved.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from poolcast.db.session import get_db
from poolcast.schemas.common import fail, meta_now, ok
from poolcast.schemas.forecast import ForecastOut, ForecastRequest, PerformanceRowOut
from poolcast.services.errors import InvalidHorizonError
from poolcast.services.inference import InferenceEngine, default_engine
from poolcast.services.predictor import get_forecast, get_recent_performance, parse_horizon

router = APIRouter(prefix="/api/forecast", tags=["forecast"])


def _respond(db: Session, horizon, force_refresh: bool, engine: InferenceEngine):
    meta = meta_now(operation="forecast", horizon=str(horizon), force_refresh=force_refresh)
    try:
        hours = parse_horizon(horizon)
    except InvalidHorizonError as exc:
        return fail(code="INVALID_HORIZON", message=str(exc), status_code=422, meta=meta)

    result = get_forecast(db, hours, force_refresh=force_refresh, engine=engine)
    payload = ForecastOut.model_validate(result)
    if not result.success:
        return fail(
            code="FORECAST_UNAVAILABLE",
            message=result.error or "No forecast available",
            status_code=503,
            meta=meta,
            data=payload,
        )
    return ok(data=payload, meta=meta)


@router.get("")
def forecast(
    horizon: str = Query("24h", description="'Nh', 'Nd' or a number of hours"),
    force_refresh: bool = Query(False),
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    return _respond(db, horizon, force_refresh, engine)


@router.post("")
def forecast_post(
    body: Optional[ForecastRequest] = Body(None),
    db: Session = Depends(get_db),
    engine: InferenceEngine = Depends(default_engine),
):
    body = body or ForecastRequest()
    return _respond(db, body.horizon, body.force_refresh, engine)


@router.get("/performance")
def forecast_performance(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    rows = [PerformanceRowOut.model_validate(r) for r in get_recent_performance(db, limit)]
    return ok(data=rows, meta=meta_now(operation="forecast_performance", limit=limit))

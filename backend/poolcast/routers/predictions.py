# poolcast/routers/predictions.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from poolcast.db.session import get_db
from poolcast.schemas.common import ok, meta_now
from poolcast.schemas.predictions import ValidateIn, ValidationOut
from poolcast.services.validation import validate_due_predictions

router = APIRouter(prefix="/api/predictions", tags=["predictions"])


@router.post("/validate")
def validate_predictions(
    body: Optional[ValidateIn] = Body(None),
    db: Session = Depends(get_db),
):
    """Partial progress is a success: `validated` and `errors` are reported together."""
    batch_limit = body.batch_limit if body else None
    result = validate_due_predictions(db, batch_limit)
    payload = ValidationOut(
        success=result.success,
        validated=result.validated,
        errors=result.errors,
        deferred=result.deferred,
        summary_by_horizon=result.summary_by_horizon,
        summary_by_regime=result.summary_by_regime,
        summary_by_model=result.summary_by_model,
        overall=result.overall or None,
    )
    return ok(data=payload, meta=meta_now(operation="validate_predictions", batch_limit=batch_limit))

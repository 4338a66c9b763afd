from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from poolcast.db.session import get_db
from poolcast.schemas.common import ok, fail, meta_now

router = APIRouter(prefix="/api/health", tags=["health"])

@router.get("")
def healthcheck(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:  # noqa: BLE001
        return fail(code="STORE_UNAVAILABLE", message=str(exc), status_code=503, meta=meta_now())
    return ok(
        data={"status": "ok"},
        meta=meta_now()
    )

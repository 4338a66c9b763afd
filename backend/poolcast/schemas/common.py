from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import status as http
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from fastapi.encoders import jsonable_encoder

class CamelModel(BaseModel):
    """Payload model serialized with camelCase keys; accepts either case on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

class ApiError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None

class ResponseMeta(BaseModel):
    operation: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    generated_at: str
    version: str = "1.0.0"

class Envelope(BaseModel):
    ok: bool
    data: Any | None = None
    error: ApiError | None = None
    meta: ResponseMeta

def _dump(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    if isinstance(data, list):
        return [_dump(d) for d in data]
    return data

def ok(data: Any = None, meta: Optional[ResponseMeta] = None, status_code: int = http.HTTP_200_OK) -> JSONResponse:
    """
    Return unified success envelope. Pydantic payloads are dumped by alias.
    """
    if meta is None:
        meta = meta_now()
    payload = Envelope(ok=True, data=_dump(data), error=None, meta=meta).model_dump()
    return JSONResponse(content=jsonable_encoder(payload), status_code=status_code)

def fail(
    code: str,
    message: str,
    status_code: int = http.HTTP_400_BAD_REQUEST,
    details: Optional[Dict[str, Any]] = None,
    meta: Optional[ResponseMeta] = None,
    data: Any = None,
) -> JSONResponse:
    """
    Return unified error envelope with ok=False. ``data`` carries a partial result when one exists.
    """
    if meta is None:
        meta = meta_now()
    payload = Envelope(
        ok=False,
        data=_dump(data),
        error=ApiError(code=code, message=message, details=details),
        meta=meta,
    ).model_dump()
    return JSONResponse(content=jsonable_encoder(payload), status_code=status_code)

def meta_now(*, operation: Optional[str] = None, **params) -> ResponseMeta:
    clean = {k: v for k, v in params.items() if v is not None}
    return ResponseMeta(
        operation=operation,
        params=clean or None,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )

# poolcast/main.py
from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

# Import router objects explicitly to avoid module name collisions
from poolcast.routers.health import router as health_router
from poolcast.routers.forecast import router as forecast_router
from poolcast.routers.model import router as model_router
from poolcast.routers.predictions import router as predictions_router
from poolcast.routers.data import router as data_router
from poolcast.db.session import init_db
from poolcast.observability.logging import configure_logging
from poolcast.observability.middleware import (
    register_request_middleware,
    unhandled_exception_handler,
    validation_exception_handler,
)
from poolcast.observability.metrics import router as observability_router
from poolcast.scheduler.setup import init_scheduler, shutdown_scheduler

configure_logging()

DEV_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def create_app() -> FastAPI:
    app = FastAPI(title="Pool Price Forecasting Service", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=DEV_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=86400
    )

    register_request_middleware(app)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.on_event("startup")
    async def _startup() -> None:
        init_db()
        await init_scheduler(app)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await shutdown_scheduler()

    app.include_router(health_router)
    app.include_router(observability_router)
    app.include_router(forecast_router)
    app.include_router(model_router)
    app.include_router(predictions_router)
    app.include_router(data_router)

    return app


app = create_app()

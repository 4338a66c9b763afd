# poolcast/scheduler/jobs.py
"""Recurring jobs. Each opens its own session and closes it; results are logged by the services."""
from __future__ import annotations

import structlog

from poolcast.db.session import SessionLocal
from poolcast.services.features import calculate_features
from poolcast.services.market_data import GasPriceClient, sync_gas_prices
from poolcast.services.quality import analyze_data_quality
from poolcast.services.retraining import check_auto_retraining
from poolcast.services.validation import validate_due_predictions

logger = structlog.get_logger(__name__)


def validate_predictions_job() -> None:
    """Match due predictions to actual prices (every few minutes)."""
    db = SessionLocal()
    try:
        validate_due_predictions(db)
    finally:
        db.close()


def sync_gas_prices_job() -> None:
    db = SessionLocal()
    client = GasPriceClient()
    try:
        sync_gas_prices(db, client)
    finally:
        client.close()
        db.close()


def calculate_features_job() -> None:
    db = SessionLocal()
    try:
        calculate_features(db)
    finally:
        db.close()


def data_quality_job() -> None:
    db = SessionLocal()
    try:
        analyze_data_quality(db)
    finally:
        db.close()


def retraining_check_job() -> None:
    """Daily retraining check; a failed retrain is recorded as an event, not raised."""
    db = SessionLocal()
    try:
        outcome = check_auto_retraining(db)
        if outcome.triggered and not outcome.success:
            logger.warning("retraining_job.failed", reason=outcome.reason, error=outcome.error)
    finally:
        db.close()

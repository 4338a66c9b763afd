from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Float, Integer, String, Text

from poolcast.db.base import Base
from poolcast.db.types import JSON_PAYLOAD, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetrainingEvent(Base):
    __tablename__ = "retraining_events"

    id = Column(Integer, primary_key=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    triggered = Column(Boolean, nullable=False, default=False)
    reason = Column(Text, nullable=False)
    success = Column(Boolean, nullable=True)
    error = Column(Text, nullable=True)
    performance_before = Column(JSON_PAYLOAD, nullable=True)
    performance_after = Column(JSON_PAYLOAD, nullable=True)
    improvement = Column(Float, nullable=True)   # MAE before minus MAE after
    duration_seconds = Column(Float, nullable=True)
    model_version = Column(String(64), nullable=True)


class HyperparameterTrial(Base):
    __tablename__ = "hyperparameter_trials"

    id = Column(Integer, primary_key=True)
    search_id = Column(String(64), nullable=False, index=True)
    trial_number = Column(Integer, nullable=False)
    hyperparameters = Column(JSON_PAYLOAD, nullable=False)
    performance_metrics = Column(JSON_PAYLOAD, nullable=True)
    training_duration_seconds = Column(Float, nullable=True)
    is_best_trial = Column(Boolean, nullable=False, default=False)
    model_version = Column(String(64), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow)

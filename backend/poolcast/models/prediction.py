from datetime import datetime, timezone

from sqlalchemy import Column, Float, Index, Integer, String

from poolcast.db.base import Base
from poolcast.db.types import JSON_PAYLOAD, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Prediction(Base):
    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True)
    created_at = Column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    target_timestamp = Column(UTCDateTime, nullable=False, index=True)
    horizon_hours = Column(Integer, nullable=False)
    predicted_price = Column(Float, nullable=False)
    confidence_lower = Column(Float, nullable=True)
    confidence_upper = Column(Float, nullable=True)
    confidence_score = Column(Float, nullable=True)
    model_version = Column(String(64), nullable=True, index=True)
    features_used = Column(JSON_PAYLOAD, nullable=True)
    # set once by the accuracy tracker
    validated_at = Column(UTCDateTime, nullable=True)

    __table_args__ = (
        Index("ix_predictions_due", "validated_at", "target_timestamp"),
    )


class PredictionPerformance(Base):
    __tablename__ = "prediction_performance"

    id = Column(Integer, primary_key=True)
    request_timestamp = Column(UTCDateTime, nullable=False, default=_utcnow, index=True)
    horizon_hours = Column(Integer, nullable=False)
    total_duration_ms = Column(Float, nullable=False)
    cache_hit_count = Column(Integer, nullable=False, default=0)
    cache_miss_count = Column(Integer, nullable=False, default=0)
    cache_hit_rate = Column(Float, nullable=False, default=0.0)
    predictions_generated = Column(Integer, nullable=False, default=0)
    batch_count = Column(Integer, nullable=False, default=0)
    failed_batches = Column(Integer, nullable=False, default=0)

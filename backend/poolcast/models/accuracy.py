from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String

from poolcast.db.base import Base
from poolcast.db.types import UTCDateTime


class PredictionAccuracy(Base):
    __tablename__ = "prediction_accuracy"

    id = Column(Integer, primary_key=True)
    prediction_id = Column(
        Integer,
        ForeignKey("predictions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    target_timestamp = Column(UTCDateTime, nullable=False, index=True)
    predicted_price = Column(Float, nullable=False)
    actual_price = Column(Float, nullable=False)
    absolute_error = Column(Float, nullable=False)
    percent_error = Column(Float, nullable=True)     # null when |actual| ~ 0
    symmetric_percent_error = Column(Float, nullable=False)
    horizon_hours = Column(Integer, nullable=False)
    model_version = Column(String(64), nullable=True)
    within_confidence_interval = Column(Boolean, nullable=False, default=False)
    actual_regime = Column(String(16), nullable=False)
    validated_at = Column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True
    )

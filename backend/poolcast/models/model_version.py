from __future__ import annotations

from sqlalchemy import Column, Float, Integer, LargeBinary, String

from poolcast.db.base import Base
from poolcast.db.types import JSON_PAYLOAD, UTCDateTime

STATUS_READY = "ready"
STATUS_ROLLED_BACK = "rolled_back"


class ModelVersion(Base):
    __tablename__ = "model_versions"

    id = Column(Integer, primary_key=True)
    version_id = Column(String(64), nullable=False, unique=True, index=True)
    trained_at = Column(UTCDateTime, nullable=False, index=True)
    algorithm = Column(String(64), nullable=False, default="gradient_boosting")
    hyperparameters = Column(JSON_PAYLOAD, nullable=False, default=dict)
    mae = Column(Float, nullable=True)
    rmse = Column(Float, nullable=True)
    smape = Column(Float, nullable=True)
    r_squared = Column(Float, nullable=True)
    training_record_count = Column(Integer, nullable=False, default=0)
    training_start = Column(UTCDateTime, nullable=True)
    training_end = Column(UTCDateTime, nullable=True)
    feature_names = Column(JSON_PAYLOAD, nullable=False, default=list)
    feature_importance = Column(JSON_PAYLOAD, nullable=True)
    residual_std = Column(Float, nullable=True)
    artifact = Column(LargeBinary, nullable=False)   # joblib-serialised fitted model
    status = Column(String(16), nullable=False, default=STATUS_READY, index=True)

    def metrics(self) -> dict:
        return {
            "mae": self.mae,
            "rmse": self.rmse,
            "smape": self.smape,
            "r_squared": self.r_squared,
            "training_records": self.training_record_count,
        }

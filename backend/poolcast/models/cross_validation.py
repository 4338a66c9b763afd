from datetime import datetime, timezone

from sqlalchemy import Column, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from poolcast.db.base import Base
from poolcast.db.types import UTCDateTime


class CVRun(Base):
    __tablename__ = "cv_runs"

    id = Column(Integer, primary_key=True)
    created_at = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    num_folds = Column(Integer, nullable=False)
    validation_window_hours = Column(Integer, nullable=False)
    completed_folds = Column(Integer, nullable=False, default=0)
    avg_mae = Column(Float, nullable=True)
    avg_rmse = Column(Float, nullable=True)
    avg_smape = Column(Float, nullable=True)
    avg_mape = Column(Float, nullable=True)
    folds = relationship(
        "CVFold",
        cascade="all,delete-orphan",
        order_by="CVFold.fold_number",
        back_populates="run",
    )


class CVFold(Base):
    __tablename__ = "cv_folds"

    id = Column(Integer, primary_key=True)
    run_id = Column(Integer, ForeignKey("cv_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    fold_number = Column(Integer, nullable=False)
    train_start = Column(UTCDateTime, nullable=True)
    train_end = Column(UTCDateTime, nullable=True)
    validation_start = Column(UTCDateTime, nullable=True)
    validation_end = Column(UTCDateTime, nullable=True)
    train_rows = Column(Integer, nullable=False, default=0)
    validation_rows = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False)   # completed | skipped
    skip_reason = Column(Text, nullable=True)
    mae = Column(Float, nullable=True)
    rmse = Column(Float, nullable=True)
    smape = Column(Float, nullable=True)
    mape = Column(Float, nullable=True)

    run = relationship("CVRun", back_populates="folds")

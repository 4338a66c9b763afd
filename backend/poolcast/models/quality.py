from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer

from poolcast.db.base import Base
from poolcast.db.types import JSON_PAYLOAD, UTCDateTime


class DataQualityReport(Base):
    __tablename__ = "data_quality_reports"

    id = Column(Integer, primary_key=True)
    report_date = Column(UTCDateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
    total_records = Column(Integer, nullable=False, default=0)
    quality_score = Column(Float, nullable=False)   # 0–100
    missing_data_analysis = Column(JSON_PAYLOAD, nullable=False, default=dict)
    outlier_analysis = Column(JSON_PAYLOAD, nullable=False, default=dict)
    price_statistics = Column(JSON_PAYLOAD, nullable=True)
    enhanced_feature_coverage = Column(JSON_PAYLOAD, nullable=False, default=dict)
    quality_factors = Column(JSON_PAYLOAD, nullable=False, default=dict)
    recent_completeness = Column(Float, nullable=True)
    temporal_gaps = Column(Integer, nullable=False, default=0)
    recommendations = Column(JSON_PAYLOAD, nullable=False, default=list)

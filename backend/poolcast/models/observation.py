from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Float, Integer, String, UniqueConstraint

from poolcast.db.base import Base
from poolcast.db.types import JSON_PAYLOAD, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Observation(Base):
    __tablename__ = "observations"

    id = Column(Integer, primary_key=True)
    timestamp = Column(UTCDateTime, nullable=False, unique=True, index=True)
    price = Column(Float, nullable=True)             # pool price, $/MWh
    demand_mw = Column(Float, nullable=True)
    interchange_net = Column(Float, nullable=True)
    generation_by_fuel = Column(JSON_PAYLOAD, nullable=False, default=dict)
    weather_by_station = Column(JSON_PAYLOAD, nullable=False, default=dict)
    is_valid = Column(Boolean, nullable=False, default=True, index=True)
    ingested_at = Column(UTCDateTime, nullable=False, default=_utcnow)


class AuxiliaryPrice(Base):
    __tablename__ = "auxiliary_prices"

    id = Column(Integer, primary_key=True)
    series = Column(String(64), nullable=False, index=True)
    timestamp = Column(UTCDateTime, nullable=False)
    price = Column(Float, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (UniqueConstraint("series", "timestamp", name="uq_auxiliary_series_hour"),)

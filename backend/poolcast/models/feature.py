from sqlalchemy import Column, Float, Integer

from poolcast.db.base import Base
from poolcast.db.types import UTCDateTime


class EngineeredFeature(Base):
    """Derived per-hour feature row, keyed 1:1 by observation timestamp."""

    __tablename__ = "engineered_features"

    id = Column(Integer, primary_key=True)
    timestamp = Column(UTCDateTime, nullable=False, unique=True, index=True)

    # autoregressive price lags
    price_lag_1h = Column(Float)
    price_lag_2h = Column(Float)
    price_lag_3h = Column(Float)
    price_lag_6h = Column(Float)
    price_lag_12h = Column(Float)
    price_lag_24h = Column(Float)

    wind_lag_1h = Column(Float)
    wind_lag_6h = Column(Float)
    wind_lag_24h = Column(Float)
    wind_lag_168h = Column(Float)
    demand_lag_1h = Column(Float)
    demand_lag_24h = Column(Float)
    demand_lag_168h = Column(Float)
    temperature_lag_1h = Column(Float)
    temperature_lag_6h = Column(Float)
    temperature_lag_24h = Column(Float)

    price_volatility_1h = Column(Float)
    price_volatility_6h = Column(Float)
    price_volatility_24h = Column(Float)
    price_momentum_3h = Column(Float)
    price_momentum_24h = Column(Float)

    price_rolling_avg_6h = Column(Float)
    price_rolling_avg_24h = Column(Float)
    price_rolling_std_24h = Column(Float)
    price_rolling_min_24h = Column(Float)
    price_rolling_max_24h = Column(Float)
    wind_rolling_avg_24h = Column(Float)
    demand_rolling_avg_24h = Column(Float)

    hour_sin = Column(Float)
    hour_cos = Column(Float)
    day_of_week_sin = Column(Float)
    day_of_week_cos = Column(Float)
    month_sin = Column(Float)
    month_cos = Column(Float)

    natural_gas_price = Column(Float)
    natural_gas_price_lag_1d = Column(Float)
    natural_gas_price_lag_7d = Column(Float)
    natural_gas_price_lag_30d = Column(Float)

    renewable_curtailment = Column(Float)
    net_imports = Column(Float)
    renewable_penetration = Column(Float)   # percent of total generation

    wind_hour_interaction = Column(Float)
    temp_demand_interaction = Column(Float)
    gas_price_gas_gen_interaction = Column(Float)
    weekend_hour_interaction = Column(Float)
    temp_extreme_hour_interaction = Column(Float)


# Model inputs, in table order.
FEATURE_COLUMNS: tuple[str, ...] = tuple(
    c.name for c in EngineeredFeature.__table__.columns if c.name not in ("id", "timestamp")
)

# poolcast/services/store.py
"""Time-series store: observations, auxiliary hourly series and the frames built from them."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Generic, Iterable, Iterator, List, Mapping, Optional, Sequence, TypeVar

import pandas as pd
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.models.feature import FEATURE_COLUMNS, EngineeredFeature
from poolcast.models.observation import AuxiliaryPrice, Observation
from poolcast.utils.numeric import coerce_float
from poolcast.utils.timeutils import ensure_utc, floor_hour, utcnow

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# keeps multi-row VALUES under the sqlite bound-parameter limit
_ROWS_PER_STATEMENT = 250

FUEL_TYPES = ("wind", "solar", "gas", "hydro", "coal")
RENEWABLE_FUELS = ("wind", "solar", "hydro")

OBSERVATION_COLUMNS = [
    "timestamp",
    "price",
    "demand_mw",
    "interchange_net",
    *[f"generation_{fuel}" for fuel in FUEL_TYPES],
    "temperature",
    "wind_speed",
    "cloud_cover",
    "is_valid",
]


# ---------- Paging ----------


@dataclass(frozen=True)
class Page(Generic[T]):
    offset: int
    items: Sequence[T]


def iter_pages(seq: Sequence[T], size: int, start_offset: int = 0) -> Iterator[Page[T]]:
    """Yield consecutive slices of ``seq`` tagged with their offset, starting at ``start_offset``."""
    if size <= 0:
        raise ValueError("page size must be positive")
    offset = max(0, int(start_offset))
    while offset < len(seq):
        yield Page(offset=offset, items=seq[offset : offset + size])
        offset += size


class ObservationCursor:
    """Keyset cursor over observations ordered by timestamp.

    Each iteration step issues one bounded query for rows strictly after the last
    timestamp seen, so a consumer can stop and resume from ``last_timestamp``.
    """

    def __init__(
        self,
        db: Session,
        page_size: int = 1000,
        *,
        after: Optional[datetime] = None,
        until: Optional[datetime] = None,
        valid_only: bool = False,
    ) -> None:
        self.db = db
        self.page_size = page_size
        self.last_timestamp = ensure_utc(after) if after else None
        self.until = ensure_utc(until) if until else None
        self.valid_only = valid_only

    def __iter__(self) -> Iterator[List[Observation]]:
        while True:
            stmt = select(Observation).order_by(Observation.timestamp.asc()).limit(self.page_size)
            if self.last_timestamp is not None:
                stmt = stmt.where(Observation.timestamp > self.last_timestamp)
            if self.until is not None:
                stmt = stmt.where(Observation.timestamp <= self.until)
            if self.valid_only:
                stmt = stmt.where(Observation.is_valid.is_(True))
            rows = list(self.db.execute(stmt).scalars().all())
            if not rows:
                return
            self.last_timestamp = rows[-1].timestamp
            yield rows
            if len(rows) < self.page_size:
                return


# ---------- Ingest ----------


@dataclass
class IngestResult:
    inserted: int = 0
    skipped: int = 0
    invalid: int = 0


def is_physically_valid(record: Mapping[str, Any]) -> bool:
    """Quality gate applied once at ingest."""
    price = coerce_float(record.get("price"))
    if price is None or price < 0:
        return False
    demand = coerce_float(record.get("demand_mw"))
    if demand is not None and demand < 0:
        return False
    for value in (record.get("generation_by_fuel") or {}).values():
        mw = coerce_float(value)
        if mw is not None and mw < 0:
            return False
    return True


def _dialect_insert(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:  # pragma: no cover - only sqlite/postgres are deployed
        raise NotImplementedError(f"upserts not supported on {dialect}")
    return insert


def _clean_mapping(raw: Optional[Mapping[str, Any]]) -> dict:
    return {str(k): coerce_float(v) for k, v in (raw or {}).items()}


def append_observations(db: Session, records: Iterable[Mapping[str, Any]]) -> IngestResult:
    """Insert observations whose hour is not stored yet; existing hours are never touched."""
    result = IngestResult()
    by_hour: dict[datetime, dict] = {}
    for rec in records:
        hour = floor_hour(rec["timestamp"])
        if hour in by_hour:
            result.skipped += 1
            continue
        by_hour[hour] = {
            "timestamp": hour,
            "price": coerce_float(rec.get("price")),
            "demand_mw": coerce_float(rec.get("demand_mw")),
            "interchange_net": coerce_float(rec.get("interchange_net")),
            "generation_by_fuel": _clean_mapping(rec.get("generation_by_fuel")),
            "weather_by_station": {
                str(station): _clean_mapping(values)
                for station, values in (rec.get("weather_by_station") or {}).items()
            },
            "is_valid": is_physically_valid(rec),
            "ingested_at": utcnow(),
        }

    if not by_hour:
        return result

    existing = set(
        db.execute(
            select(Observation.timestamp).where(Observation.timestamp.in_(list(by_hour)))
        ).scalars()
    )
    rows = [row for hour, row in by_hour.items() if hour not in existing]
    result.skipped += len(by_hour) - len(rows)
    if rows:
        insert = _dialect_insert(db)
        for chunk in iter_pages(rows, _ROWS_PER_STATEMENT):
            stmt = insert(Observation).values(list(chunk.items))
            db.execute(stmt.on_conflict_do_nothing(index_elements=["timestamp"]))
        db.commit()
    result.inserted = len(rows)
    result.invalid = sum(1 for row in rows if not row["is_valid"])
    logger.info(
        "store.observations_appended",
        inserted=result.inserted,
        skipped=result.skipped,
        invalid=result.invalid,
    )
    return result


def upsert_auxiliary_prices(db: Session, series: str, points: Iterable[Mapping[str, Any]]) -> int:
    """Upsert hourly auxiliary prices keyed by (series, hour). Returns rows written."""
    by_hour: dict[datetime, float] = {}
    for point in points:
        price = coerce_float(point.get("price"))
        if price is None:
            continue
        by_hour[floor_hour(point["timestamp"])] = price
    if not by_hour:
        return 0

    now = utcnow()
    rows = [{"series": series, "timestamp": ts, "price": p, "updated_at": now} for ts, p in by_hour.items()]
    insert = _dialect_insert(db)
    for chunk in iter_pages(rows, _ROWS_PER_STATEMENT):
        stmt = insert(AuxiliaryPrice).values(list(chunk.items))
        stmt = stmt.on_conflict_do_update(
            index_elements=["series", "timestamp"],
            set_={"price": stmt.excluded.price, "updated_at": stmt.excluded.updated_at},
        )
        db.execute(stmt)
    db.commit()
    logger.info("store.auxiliary_upserted", series=series, rows=len(rows))
    return len(rows)


def upsert_feature_rows(db: Session, rows: Sequence[Mapping[str, Any]]) -> int:
    """Upsert engineered feature rows keyed by timestamp. The caller owns the commit."""
    if not rows:
        return 0
    insert = _dialect_insert(db)
    for chunk in iter_pages(rows, _ROWS_PER_STATEMENT):
        stmt = insert(EngineeredFeature).values([dict(r) for r in chunk.items])
        stmt = stmt.on_conflict_do_update(
            index_elements=["timestamp"],
            set_={col: getattr(stmt.excluded, col) for col in FEATURE_COLUMNS},
        )
        db.execute(stmt)
    return len(rows)


# ---------- Frames ----------


def _flatten(obs: Observation, station: str) -> dict:
    gen = obs.generation_by_fuel or {}
    weather = (obs.weather_by_station or {}).get(station) or {}
    row = {
        "timestamp": obs.timestamp,
        "price": obs.price,
        "demand_mw": obs.demand_mw,
        "interchange_net": obs.interchange_net,
        "temperature": coerce_float(weather.get("temperature_c")),
        "wind_speed": coerce_float(weather.get("wind_speed_kmh")),
        "cloud_cover": coerce_float(weather.get("cloud_cover_pct")),
        "is_valid": bool(obs.is_valid),
    }
    for fuel in FUEL_TYPES:
        row[f"generation_{fuel}"] = coerce_float(gen.get(fuel))
    return row


def load_observation_frame(
    db: Session,
    *,
    valid_only: bool = False,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    page_size: int = 5000,
) -> pd.DataFrame:
    """Ordered observation frame with generation/weather flattened for the primary station."""
    station = get_settings().PRIMARY_WEATHER_STATION
    after = None
    if start is not None:
        # keyset cursor is exclusive; step back one microsecond to include ``start``
        after = ensure_utc(start) - timedelta(microseconds=1)
    rows: List[dict] = []
    for page in ObservationCursor(db, page_size, after=after, until=end, valid_only=valid_only):
        rows.extend(_flatten(obs, station) for obs in page)
    if not rows:
        return pd.DataFrame(columns=OBSERVATION_COLUMNS)
    return pd.DataFrame(rows, columns=OBSERVATION_COLUMNS)


def load_recent_observations(db: Session, *, until: datetime, limit: int) -> pd.DataFrame:
    """The ``limit`` most recent observations at or before ``until``, oldest first."""
    station = get_settings().PRIMARY_WEATHER_STATION
    stmt = (
        select(Observation)
        .where(Observation.timestamp <= ensure_utc(until))
        .order_by(Observation.timestamp.desc())
        .limit(limit)
    )
    rows = [_flatten(obs, station) for obs in db.execute(stmt).scalars().all()]
    rows.reverse()
    return pd.DataFrame(rows, columns=OBSERVATION_COLUMNS)


def load_auxiliary_series(db: Session, series: str) -> dict[datetime, float]:
    stmt = select(AuxiliaryPrice.timestamp, AuxiliaryPrice.price).where(AuxiliaryPrice.series == series)
    return {floor_hour(ts): float(price) for ts, price in db.execute(stmt).all()}


def load_training_frame(db: Session) -> pd.DataFrame:
    """Valid observations joined 1:1 with their features, restricted to rows with a target
    and the core price lags; ordered by timestamp."""
    feature_cols = [getattr(EngineeredFeature, name) for name in FEATURE_COLUMNS]
    stmt = (
        select(Observation.timestamp, Observation.price, *feature_cols)
        .join(EngineeredFeature, EngineeredFeature.timestamp == Observation.timestamp)
        .where(
            Observation.is_valid.is_(True),
            Observation.price.isnot(None),
            EngineeredFeature.price_lag_1h.isnot(None),
            EngineeredFeature.price_lag_24h.isnot(None),
        )
        .order_by(Observation.timestamp.asc())
    )
    columns = ["timestamp", "price", *FEATURE_COLUMNS]
    records = [tuple(r) for r in db.execute(stmt).all()]
    frame = pd.DataFrame.from_records(records, columns=columns)
    if not frame.empty:
        frame[list(FEATURE_COLUMNS)] = frame[list(FEATURE_COLUMNS)].astype(float)
        frame["price"] = frame["price"].astype(float)
    return frame

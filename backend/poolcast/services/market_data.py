# poolcast/services/market_data.py
"""Natural-gas price feed client and the sync into ``auxiliary_prices``."""
from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import httpx
import structlog
from sqlalchemy.orm import Session

from poolcast.config import Settings, get_settings
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.services.errors import UpstreamError
from poolcast.services.features import GAS_SERIES
from poolcast.utils.numeric import coerce_float
from poolcast.utils.timeutils import ensure_utc, floor_hour, utcnow

logger = structlog.get_logger(__name__)

TOKEN_SKEW_SECONDS = 30.0


@dataclass
class PricePoint:
    timestamp: datetime
    price: float


class TokenCache:
    """Holds one bearer token until ``TOKEN_SKEW_SECONDS`` before it expires."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0

    def get(self) -> Optional[str]:
        if self._token is None or self._clock() >= self._expires_at - TOKEN_SKEW_SECONDS:
            return None
        return self._token

    def set(self, token: str, expires_in: float) -> None:
        self._token = token
        self._expires_at = self._clock() + float(expires_in)

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0


class GasPriceClient:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
        token_cache: Optional[TokenCache] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.timeout = httpx.Timeout(self.settings.UPSTREAM_TIMEOUT_SECONDS)
        self.http = http_client or httpx.Client(base_url=self.settings.GAS_PRICE_API_URL, timeout=self.timeout)
        self.tokens = token_cache or TokenCache()

    def close(self) -> None:
        self.http.close()

    def default_prices(self, start: datetime, end: datetime) -> List[PricePoint]:
        hour = floor_hour(start)
        end = floor_hour(end)
        points = []
        while hour <= end:
            points.append(PricePoint(hour, self.settings.DEFAULT_GAS_PRICE))
            hour += timedelta(hours=1)
        return points

    def _token(self) -> str:
        token = self.tokens.get()
        if token:
            return token
        resp = self.http.post(
            "/oauth/token",
            data={"grant_type": "client_credentials", "client_secret": self.settings.GAS_PRICE_API_KEY},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json()
        self.tokens.set(body["access_token"], body.get("expires_in", 3600))
        return body["access_token"]

    def fetch_hourly_prices(self, start: datetime, end: datetime) -> Optional[List[PricePoint]]:
        """Hourly prices in [start, end], or None when the feed times out or errors."""
        start, end = ensure_utc(start), ensure_utc(end)
        if not self.settings.GAS_PRICE_API_KEY:
            logger.warning("gas_prices.default_table", reason="no API key configured", price=self.settings.DEFAULT_GAS_PRICE)
            return self.default_prices(start, end)

        try:
            resp = self.http.get(
                "/v1/prices/hourly",
                params={"start": start.isoformat(), "end": end.isoformat()},
                headers={"Authorization": f"Bearer {self._token()}"},
                timeout=self.timeout,
            )
            if resp.status_code == 401:
                self.tokens.clear()
            resp.raise_for_status()
            rows = resp.json().get("data")
            if not isinstance(rows, list):
                raise UpstreamError("gas price payload has no data list")
        except httpx.TimeoutException as exc:
            logger.error("gas_prices.timeout", error=str(exc), timeout_s=self.settings.UPSTREAM_TIMEOUT_SECONDS)
            return None
        except (httpx.HTTPError, UpstreamError, ValueError, KeyError) as exc:
            logger.error("gas_prices.fetch_failed", error=str(exc))
            return None

        points = []
        for row in rows:
            try:
                price = coerce_float(row.get("price"))
                if price is None or row.get("timestamp") is None:
                    continue
                points.append(PricePoint(floor_hour(datetime.fromisoformat(row["timestamp"])), price))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("gas_prices.bad_row", row=repr(row)[:200], error=str(exc))
                continue
        return points


@dataclass
class SyncResult:
    success: bool
    upserted: int = 0
    used_default: bool = False


@log_job("market_data.sync_gas")
def sync_gas_prices(
    db: Session,
    client: GasPriceClient,
    *,
    now: Optional[datetime] = None,
    lookback_hours: int = 48,
) -> SyncResult:
    now = ensure_utc(now) if now else utcnow()
    start = now - timedelta(hours=lookback_hours)
    points = client.fetch_hourly_prices(start, now)
    if points is None:
        return SyncResult(success=False)
    upserted = store.upsert_auxiliary_prices(db, GAS_SERIES, [{"timestamp": p.timestamp, "price": p.price} for p in points])
    return SyncResult(success=True, upserted=upserted, used_default=not client.settings.GAS_PRICE_API_KEY)

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from poolcast.config import Settings
from poolcast.services.market_data import GasPriceClient, TokenCache, sync_gas_prices
from poolcast.services.store import load_auxiliary_series

BASE_URL = "https://gas.test"
START = datetime(2024, 3, 4, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _settings(**overrides):
    values = {"GAS_PRICE_API_URL": BASE_URL, "GAS_PRICE_API_KEY": "secret", "DEFAULT_GAS_PRICE": 2.5}
    values.update(overrides)
    return Settings(**values)


def _client(handler, settings=None, tokens=None):
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return GasPriceClient(settings or _settings(), http_client=http, token_cache=tokens)


def test_token_cache_expires_before_deadline():
    clock = FakeClock()
    cache = TokenCache(clock=clock)
    assert cache.get() is None

    cache.set("abc", expires_in=100)
    assert cache.get() == "abc"
    clock.now += 69
    assert cache.get() == "abc"
    clock.now += 1
    assert cache.get() is None


def test_default_table_without_api_key():
    client = GasPriceClient(_settings(GAS_PRICE_API_KEY=None))
    points = client.fetch_hourly_prices(START, START + timedelta(hours=3))
    client.close()

    assert [p.timestamp for p in points] == [START + timedelta(hours=h) for h in range(4)]
    assert all(p.price == 2.5 for p in points)


def test_fetch_uses_bearer_token_once():
    calls = {"token": 0, "prices": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            calls["token"] += 1
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
        calls["prices"] += 1
        assert request.headers["Authorization"] == "Bearer tok-1"
        return httpx.Response(
            200,
            json={"data": [
                {"timestamp": "2024-03-04T00:00:00+00:00", "price": 2.9},
                {"timestamp": "2024-03-04T01:00:00+00:00", "price": "3.1"},
                {"timestamp": "2024-03-04T02:00:00+00:00", "price": None},
            ]},
        )

    client = _client(handler)
    first = client.fetch_hourly_prices(START, START + timedelta(hours=2))
    client.fetch_hourly_prices(START, START + timedelta(hours=2))

    assert [(p.timestamp.hour, p.price) for p in first] == [(0, 2.9), (1, 3.1)]
    assert calls == {"token": 1, "prices": 2}


def test_timeout_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        raise httpx.ReadTimeout("upstream too slow", request=request)

    assert _client(handler).fetch_hourly_prices(START, START + timedelta(hours=1)) is None


def test_unauthorized_clears_token():
    tokens = TokenCache()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "stale", "expires_in": 3600})
        return httpx.Response(401, json={"error": "expired"})

    assert _client(handler, tokens=tokens).fetch_hourly_prices(START, START + timedelta(hours=1)) is None
    assert tokens.get() is None


def test_sync_upserts_fetched_prices(db):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return httpx.Response(200, json={"data": [{"timestamp": "2024-03-04T05:00:00+00:00", "price": 3.3}]})

    result = sync_gas_prices(db, _client(handler), now=START + timedelta(hours=6))

    assert result.success
    assert result.upserted == 1
    assert not result.used_default
    assert load_auxiliary_series(db, "natural_gas") == {START + timedelta(hours=5): pytest.approx(3.3)}


def test_sync_reports_upstream_failure(db):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    result = sync_gas_prices(db, _client(handler), now=START)

    assert not result.success
    assert load_auxiliary_series(db, "natural_gas") == {}


def test_payload_without_data_list_returns_none():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return httpx.Response(200, json={"prices": []})

    assert _client(handler).fetch_hourly_prices(START, START + timedelta(hours=1)) is None


def test_malformed_rows_are_skipped():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        return httpx.Response(
            200,
            json={"data": [
                {"timestamp": "2024-03-04T00:00:00+00:00", "price": 2.9},
                {"timestamp": "not-a-date", "price": 3.0},
                ["2024-03-04T02:00:00+00:00", 3.1],
                {"timestamp": 1709517600, "price": 3.2},
            ]},
        )

    points = _client(handler).fetch_hourly_prices(START, START + timedelta(hours=3))
    assert [(p.timestamp, p.price) for p in points] == [(START, 2.9)]

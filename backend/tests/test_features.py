from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from poolcast.models.feature import FEATURE_COLUMNS, EngineeredFeature
from poolcast.services import features, store

from _helpers import make_observations

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _frame(db, records):
    store.append_observations(db, records)
    return store.load_observation_frame(db)


def test_flat_price_day_has_zero_volatility_and_momentum(db):
    frame = _frame(db, make_observations(T0, 24, price=lambda i: 50.0))
    rows = features.compute_feature_rows(frame, {})
    last = rows[23]
    assert last["timestamp"] == T0 + timedelta(hours=23)
    assert last["price_volatility_24h"] == 0.0
    assert last["price_momentum_3h"] == 0.0
    assert last["price_rolling_avg_24h"] == 50.0


def test_window_helpers_edge_cases():
    prices = [50.0, None, 0.0, 10.0]
    assert features.momentum(prices, 0, 3) == 0.0
    assert features.momentum(prices, 1, 1) is None
    # a $0 base price reports the absolute move scaled by 10
    assert features.momentum(prices, 3, 1) == 100.0
    assert features.volatility(prices, 0, 24) is None
    assert features.rolling_mean(prices, 0, 6) is None
    assert features.rolling_min(prices, 3, 24) == 0.0


def test_features_never_read_future_rows(db):
    records = make_observations(T0, 72)
    frame = _frame(db, records)
    baseline = features.compute_feature_rows(frame, {})

    shocked = frame.copy()
    shocked.loc[40:, "price"] = 10_000.0
    shocked.loc[40:, "demand_mw"] = 1.0
    shocked.loc[40:, "generation_wind"] = 0.0
    after = features.compute_feature_rows(shocked, {})

    for i in range(40):
        assert after[i] == baseline[i], f"row {i} changed when only later rows changed"
    assert after[41]["price_lag_1h"] == 10_000.0


def test_lags_use_exact_offsets(db):
    frame = _frame(db, make_observations(T0, 30, price=lambda i: float(i)))
    row = features.compute_feature_rows(frame, {})[29]
    assert row["price_lag_1h"] == 28.0
    assert row["price_lag_24h"] == 5.0
    assert row["wind_lag_168h"] is None
    assert row["net_imports"] == 150.0


def test_gas_price_lags_read_daily_offsets(db):
    frame = _frame(db, make_observations(T0 + timedelta(days=7), 1))
    gas = {T0 + timedelta(days=7): 3.0, T0 + timedelta(days=6): 2.8, T0: 2.1}
    row = features.compute_feature_rows(frame, gas)[0]
    assert row["natural_gas_price"] == 3.0
    assert row["natural_gas_price_lag_1d"] == 2.8
    assert row["natural_gas_price_lag_7d"] == 2.1
    assert row["natural_gas_price_lag_30d"] is None
    assert row["gas_price_gas_gen_interaction"] == pytest.approx(3.0 * 6000.0)


def test_calendar_and_penetration_features(db):
    # 2024-01-06 is a Saturday
    saturday = datetime(2024, 1, 6, 18, tzinfo=timezone.utc)
    frame = _frame(db, make_observations(saturday, 1))
    row = features.compute_feature_rows(frame, {})[0]
    assert row["weekend_hour_interaction"] == 18.0
    # first synthetic hour is before sunrise: no solar
    assert row["renewable_penetration"] == pytest.approx((1200 + 400) / (1200 + 6000 + 400) * 100)
    assert -1.0 <= row["hour_sin"] <= 1.0


def test_calculate_features_is_idempotent(db):
    store.append_observations(db, make_observations(T0, 50))
    first = features.calculate_features(db, batch_size=20)
    assert first.success
    assert first.features_calculated == 50
    assert first.batches_committed == 3
    snapshot = {
        r.timestamp: tuple(getattr(r, c) for c in FEATURE_COLUMNS)
        for r in db.execute(select(EngineeredFeature)).scalars()
    }

    second = features.calculate_features(db, batch_size=20)
    assert second.features_calculated == 50
    db.expire_all()
    again = {
        r.timestamp: tuple(getattr(r, c) for c in FEATURE_COLUMNS)
        for r in db.execute(select(EngineeredFeature)).scalars()
    }
    assert db.execute(select(func.count(EngineeredFeature.id))).scalar_one() == 50
    assert again == snapshot


def test_failed_batch_does_not_block_other_batches(db, monkeypatch):
    store.append_observations(db, make_observations(T0, 30))
    real_upsert = store.upsert_feature_rows
    calls = {"n": 0}

    def flaky(session, rows):
        calls["n"] += 1
        written = real_upsert(session, rows)
        if calls["n"] == 2:
            raise RuntimeError("write failed mid-batch")
        return written

    monkeypatch.setattr(store, "upsert_feature_rows", flaky)
    result = features.calculate_features(db, batch_size=10)

    assert not result.success
    assert result.failed_batches == [10]
    assert result.batches_committed == 2
    stamps = set(db.execute(select(EngineeredFeature.timestamp)).scalars())
    assert T0 in stamps
    assert T0 + timedelta(hours=25) in stamps
    # the failed batch was rolled back as a unit
    assert not any(T0 + timedelta(hours=h) in stamps for h in range(10, 20))

    # resuming from the failed offset fills the gap
    monkeypatch.setattr(store, "upsert_feature_rows", real_upsert)
    resumed = features.calculate_features(db, batch_size=10, start_offset=10)
    assert resumed.success
    assert db.execute(select(func.count(EngineeredFeature.id))).scalar_one() == 30


def test_calculate_features_without_observations(db):
    result = features.calculate_features(db)
    assert result.features_calculated == 0
    assert result.error

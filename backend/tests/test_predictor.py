from datetime import timedelta

import pytest
from sqlalchemy import func, select

from poolcast.models.prediction import Prediction
from poolcast.services.errors import InvalidHorizonError
from poolcast.services.predictor import get_forecast, get_recent_performance, parse_horizon, target_hours

from _helpers import FakeEngine, seed_model


@pytest.mark.parametrize("raw,expected", [("24h", 24), ("2d", 48), ("7d", 168), (" 6H ", 6), (12, 12), ("3", 3)])
def test_parse_horizon_accepts_hours_and_days(raw, expected):
    assert parse_horizon(raw) == expected


@pytest.mark.parametrize("raw", ["", "soon", "-1h", "0h", "169h", "8d", 0, True])
def test_parse_horizon_rejects_invalid(raw):
    with pytest.raises(InvalidHorizonError):
        parse_horizon(raw)


def test_target_hours_start_after_current_hour(now):
    hours = target_hours(now, 3)
    assert [h.hour for h in hours] == [11, 12, 13]
    assert all(h.minute == 0 for h in hours)


def test_first_forecast_generates_every_hour(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    engine = FakeEngine()

    result = get_forecast(db, 24, now=now, engine=engine)

    assert result.success
    assert len(result.predictions) == 24
    stamps = [p.timestamp for p in result.predictions]
    assert stamps == sorted(stamps)
    assert stamps[0] == now.replace(minute=0) + timedelta(hours=1)
    assert [p.horizon_hours for p in result.predictions] == list(range(1, 25))
    assert not any(p.cached for p in result.predictions)
    assert all(p.price is not None for p in result.predictions)
    assert all(p.confidence_lower <= p.price <= p.confidence_upper for p in result.predictions)

    perf = result.performance
    assert (perf.cache_hit_count, perf.cache_miss_count) == (0, 24)
    assert perf.new_predictions_generated == 24
    assert perf.batch_count == 1
    assert perf.cache_hit_rate_percent == 0.0
    assert engine.predicted_rows == 24


def test_second_forecast_within_ttl_is_served_from_cache(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    first = get_forecast(db, 24, now=now, engine=FakeEngine())
    engine = FakeEngine()

    second = get_forecast(db, 24, now=now + timedelta(minutes=5), engine=engine)

    assert all(p.cached for p in second.predictions)
    assert [p.price for p in second.predictions] == [p.price for p in first.predictions]
    assert second.performance.cache_hit_count == 24
    assert second.performance.cache_hit_rate_percent == 100.0
    assert second.performance.batch_count == 0
    assert engine.predict_calls == 0
    assert db.execute(select(func.count(Prediction.id))).scalar_one() == 24


def test_partial_cache_only_generates_missing_hours(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    get_forecast(db, 12, now=now, engine=FakeEngine())
    engine = FakeEngine()

    result = get_forecast(db, 24, now=now, engine=engine)

    assert [p.cached for p in result.predictions] == [True] * 12 + [False] * 12
    assert engine.predicted_rows == 12
    assert result.performance.cache_hit_rate_percent == 50.0


def test_force_refresh_bypasses_cache(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    get_forecast(db, 24, now=now, engine=FakeEngine())
    engine = FakeEngine()

    result = get_forecast(db, 24, True, now=now, engine=engine)

    assert not any(p.cached for p in result.predictions)
    assert result.performance.cache_hit_count == 0
    assert engine.predicted_rows == 24


def test_expired_cache_entries_are_regenerated(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    get_forecast(db, 24, now=now, engine=FakeEngine())
    engine = FakeEngine()

    result = get_forecast(db, 24, now=now + timedelta(minutes=16), engine=engine)

    assert result.performance.cache_hit_count == 0
    assert engine.predicted_rows == 24


def test_no_model_returns_padded_failure(db, history, now):
    result = get_forecast(db, 24, now=now, engine=FakeEngine())

    assert not result.success
    assert result.error
    assert len(result.predictions) == 24
    assert all(p.price is None and not p.cached and p.confidence_score == 0.0 for p in result.predictions)
    assert result.performance.failed_batches == 1


def test_failed_batch_keeps_other_batches(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    engine = FakeEngine(fail_predict_calls={2})

    result = get_forecast(db, 48, now=now, engine=engine)

    assert result.success
    assert len(result.predictions) == 48
    resolved = [p for p in result.predictions if p.price is not None]
    assert len(resolved) == 24
    assert all(p.horizon_hours <= 24 for p in resolved)
    assert result.performance.batch_count == 2
    assert result.performance.failed_batches == 1
    assert db.execute(select(func.count(Prediction.id))).scalar_one() == 24


def test_forecast_records_performance_row(db, history, now):
    seed_model(db, now=now - timedelta(hours=1))
    get_forecast(db, 24, now=now, engine=FakeEngine())
    get_forecast(db, 24, now=now + timedelta(minutes=1), engine=FakeEngine())

    rows = get_recent_performance(db, limit=5)
    assert len(rows) == 2
    assert rows[0].cache_hit_count == 24
    assert rows[1].cache_miss_count == 24

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from poolcast.models.observation import AuxiliaryPrice, Observation
from poolcast.services import store

from _helpers import make_observations

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_append_observations_is_append_only(db):
    first = store.append_observations(db, make_observations(T0, 5))
    assert (first.inserted, first.skipped, first.invalid) == (5, 0, 0)

    changed = make_observations(T0, 7, price=lambda i: 999.0)
    second = store.append_observations(db, changed)
    assert second.inserted == 2
    assert second.skipped == 5

    # the stored price of an existing hour is never overwritten
    price = db.execute(select(Observation.price).where(Observation.timestamp == T0)).scalar_one()
    assert price != 999.0
    assert db.execute(select(func.count(Observation.id))).scalar_one() == 7


def test_append_observations_floors_to_hour_and_dedupes_within_batch(db):
    records = make_observations(T0 + timedelta(minutes=5), 1) + make_observations(T0 + timedelta(minutes=40), 1)
    result = store.append_observations(db, records)
    assert result.inserted == 1
    assert result.skipped == 1
    stamp = db.execute(select(Observation.timestamp)).scalar_one()
    assert stamp == T0


def test_negative_values_are_stored_but_flagged_invalid(db):
    records = make_observations(T0, 3)
    records[1]["price"] = -5.0
    records[2]["generation_by_fuel"]["wind"] = -1.0
    result = store.append_observations(db, records)
    assert result.inserted == 3
    assert result.invalid == 2

    frame = store.load_observation_frame(db, valid_only=True)
    assert len(frame) == 1


def test_observation_cursor_pages_in_timestamp_order(db):
    store.append_observations(db, make_observations(T0, 25))
    cursor = store.ObservationCursor(db, page_size=10)
    pages = [len(page) for page in cursor]
    assert pages == [10, 10, 5]
    assert cursor.last_timestamp == T0 + timedelta(hours=24)

    resumed = store.ObservationCursor(db, page_size=10, after=T0 + timedelta(hours=19))
    assert sum(len(p) for p in resumed) == 5


def test_iter_pages_resumes_from_offset():
    pages = list(store.iter_pages(list(range(10)), 4, start_offset=4))
    assert [p.offset for p in pages] == [4, 8]
    assert list(pages[-1].items) == [8, 9]


def test_upsert_auxiliary_prices_overwrites_by_hour(db):
    assert store.upsert_auxiliary_prices(db, "natural_gas", [{"timestamp": T0, "price": 2.0}]) == 1
    store.upsert_auxiliary_prices(db, "natural_gas", [{"timestamp": T0 + timedelta(minutes=30), "price": 3.1}])

    assert db.execute(select(func.count(AuxiliaryPrice.id))).scalar_one() == 1
    assert store.load_auxiliary_series(db, "natural_gas") == {T0: 3.1}


def test_observation_frame_flattens_primary_station(db):
    store.append_observations(db, make_observations(T0, 2))
    frame = store.load_observation_frame(db)
    assert list(frame.columns) == store.OBSERVATION_COLUMNS
    assert frame["generation_wind"].iloc[0] == 1200.0
    assert frame["temperature"].iloc[1] == -3.5

from __future__ import annotations

from datetime import timedelta

import pandas as pd
import pytest
from sqlalchemy import func, select

from poolcast.models.model_version import STATUS_ROLLED_BACK, ModelVersion
from poolcast.services import trainer
from poolcast.services.errors import ModelNotAvailableError
from poolcast.services.features import calculate_features
from poolcast.services.inference import FittedModel, GradientBoostingEngine, TrainRequest, PredictRequest

from _helpers import FakeEngine, seed_model


def test_chronological_split_keeps_order():
    frame = pd.DataFrame({"timestamp": range(10), "price": range(10)})
    train, test = trainer.chronological_split(frame, 0.8)
    assert list(train["timestamp"]) == list(range(8))
    assert list(test["timestamp"]) == [8, 9]


def test_train_requires_minimum_records(db):
    result = trainer.train_model(db, engine=FakeEngine())
    assert not result.success
    assert "training rows" in result.error
    assert db.execute(select(func.count(ModelVersion.id))).scalar_one() == 0


def test_train_persists_version_with_metrics(db, history, now):
    calculate_features(db)
    engine = FakeEngine()
    result = trainer.train_model(db, engine=engine, now=now)

    assert result.success
    assert set(result.metrics) == {"mae", "rmse", "smape", "r_squared", "training_records"}
    version = trainer.get_active_model_version(db)
    assert version.version_id == result.model_version
    assert version.residual_std == pytest.approx(result.metrics["rmse"])
    # training stops at the split; hold-out rows come later
    assert version.training_end < now - timedelta(hours=1)

    loaded_version, model = trainer.load_active_model(db)
    assert loaded_version.id == version.id
    assert isinstance(model, FittedModel)


def test_training_failure_leaves_active_version_unchanged(db, history, now):
    first = seed_model(db, now=now)
    failed = trainer.train_model(db, engine=FakeEngine(fail_fit=True), now=now + timedelta(hours=1))

    assert not failed.success
    assert "fit exploded" in failed.error
    assert trainer.get_active_model_version(db).version_id == first.model_version
    assert db.execute(select(func.count(ModelVersion.id))).scalar_one() == 1


def test_rollback_activates_previous_version(db, history, now):
    first = seed_model(db, now=now)
    second = trainer.train_model(db, engine=FakeEngine(price=80.0), now=now + timedelta(hours=1))
    assert trainer.get_active_model_version(db).version_id == second.model_version

    restored = trainer.rollback_active_model(db)
    assert restored.version_id == first.model_version
    assert trainer.get_active_model_version(db).version_id == first.model_version
    retired = db.execute(
        select(ModelVersion).where(ModelVersion.version_id == second.model_version)
    ).scalar_one()
    assert retired.status == STATUS_ROLLED_BACK


def test_rollback_needs_two_versions(db, history, now):
    seed_model(db, now=now)
    with pytest.raises(ModelNotAvailableError):
        trainer.rollback_active_model(db)


def test_load_active_model_without_versions(db):
    with pytest.raises(ModelNotAvailableError):
        trainer.load_active_model(db)


def test_gradient_boosting_engine_round_trip():
    features = pd.DataFrame({"a": [float(i) for i in range(40)], "b": [None] * 40})
    target = [2.0 * i for i in range(40)]
    engine = GradientBoostingEngine(random_state=0)
    model = engine.run(TrainRequest(features, target, {"n_estimators": 20}))

    restored = FittedModel.from_bytes(model.to_bytes())
    forecasts = engine.run(PredictRequest(restored, features.head(3), [1, 12, 48]))
    assert len(forecasts) == 3
    for fc in forecasts:
        assert fc.price >= 0.0
        assert fc.lower <= fc.price <= fc.upper
        assert 0.0 <= fc.confidence_score <= 100.0
    assert forecasts[2].upper - forecasts[2].lower >= forecasts[0].upper - forecasts[0].lower

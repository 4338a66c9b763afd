import pandas as pd
import pytest
from sqlalchemy import select

from poolcast.models.cross_validation import CVRun
from poolcast.services.cross_validation import FOLD_COMPLETED, FOLD_SKIPPED, run_cross_validation, split_blocked_folds
from poolcast.services.features import calculate_features

from _helpers import FakeEngine


def _frame(hours):
    stamps = pd.date_range("2024-01-01", periods=hours, freq="h", tz="UTC")
    return pd.DataFrame({"timestamp": stamps, "price": range(hours)})


def test_blocked_folds_validate_after_training_and_never_overlap():
    folds = split_blocked_folds(_frame(120), 3, 10)
    assert [number for number, _, _ in folds] == [1, 2, 3]

    previous_end = None
    for _, train, valid in folds:
        assert len(valid) == 10
        assert valid["timestamp"].iloc[0] > train["timestamp"].iloc[-1]
        if previous_end is not None:
            assert train["timestamp"].iloc[0] > previous_end
        previous_end = valid["timestamp"].iloc[-1]


def test_cross_validation_completes_folds(db, history):
    calculate_features(db)
    result = run_cross_validation(db, num_folds=2, validation_window_hours=24, engine=FakeEngine())

    assert result.success
    assert result.completed_folds == 2
    for fold in result.folds:
        assert fold.status == FOLD_COMPLETED
        assert fold.validation_start > fold.train_end
        assert fold.validation_rows == 24
        assert fold.mae is not None
    assert result.folds[1].train_start > result.folds[0].validation_end
    assert result.average_metrics["mae"] == pytest.approx((result.folds[0].mae + result.folds[1].mae) / 2)

    run = db.execute(select(CVRun)).scalar_one()
    assert run.id == result.run_id
    assert run.completed_folds == 2
    assert [f.fold_number for f in run.folds] == [1, 2]


def test_short_folds_are_skipped_and_excluded(db, history):
    calculate_features(db)
    result = run_cross_validation(db, num_folds=4, validation_window_hours=24, engine=FakeEngine())

    assert not result.success
    assert result.completed_folds == 0
    assert all(f.status == FOLD_SKIPPED and "training rows" in f.skip_reason for f in result.folds)
    assert result.average_metrics["mae"] is None
    assert db.execute(select(CVRun)).scalar_one().completed_folds == 0


def test_cross_validation_on_empty_store(db):
    result = run_cross_validation(db, num_folds=3, validation_window_hours=24, engine=FakeEngine())
    assert not result.success
    assert "usable rows" in result.error


@pytest.mark.parametrize("folds,window", [(0, 24), (3, 0)])
def test_cross_validation_rejects_bad_arguments(db, folds, window):
    with pytest.raises(ValueError):
        run_cross_validation(db, num_folds=folds, validation_window_hours=window, engine=FakeEngine())

from datetime import timedelta

from fastapi.encoders import jsonable_encoder

from poolcast.services.store import append_observations
from poolcast.utils.timeutils import floor_hour, utcnow

from _helpers import is_enveloped, make_observations, unwrap


def _load_recent_history(db, hours=240):
    end = floor_hour(utcnow()) - timedelta(hours=1)
    append_observations(db, make_observations(end - timedelta(hours=hours - 1), hours))


def _train(client):
    assert client.post("/api/data/features").status_code == 200
    resp = client.post("/api/model/train")
    assert resp.status_code == 200, resp.text
    return unwrap(resp.json())


def test_health_is_enveloped(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert is_enveloped(body)
    assert body["ok"] is True
    assert body["data"] == {"status": "ok"}
    assert body["meta"]["generated_at"]


def test_forecast_rejects_invalid_horizon(client):
    resp = client.get("/api/forecast", params={"horizon": "tomorrow"})
    assert resp.status_code == 422
    body = resp.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "INVALID_HORIZON"

    resp = client.get("/api/forecast", params={"horizon": "400h"})
    assert resp.status_code == 422


def test_forecast_without_model_is_unavailable(client, db):
    _load_recent_history(db, hours=48)
    resp = client.get("/api/forecast", params={"horizon": "6h"})

    assert resp.status_code == 503
    body = resp.json()
    assert body["error"]["code"] == "FORECAST_UNAVAILABLE"
    rows = body["data"]["predictions"]
    assert len(rows) == 6
    assert all(r["price"] is None and r["cached"] is False for r in rows)


def test_ingest_features_train_and_forecast(client, db, fake_engine):
    start = floor_hour(utcnow()) - timedelta(hours=3)
    payload = {"observations": jsonable_encoder(make_observations(start, 2))}
    resp = client.post("/api/data/observations", json=payload)
    assert resp.status_code == 200
    assert unwrap(resp.json()) == {"success": True, "inserted": 2, "skipped": 0, "invalid": 0}

    _load_recent_history(db)
    trained = _train(client)
    assert trained["success"] is True
    assert trained["modelVersion"]
    assert set(trained["performanceMetrics"]) == {"mae", "rmse", "smape", "r_squared", "trainingRecords"}

    resp = client.get("/api/forecast", params={"horizon": "24h"})
    assert resp.status_code == 200, resp.text
    data = unwrap(resp.json())
    assert data["horizonHours"] == 24
    assert data["modelVersion"] == trained["modelVersion"]
    rows = data["predictions"]
    assert len(rows) == 24
    assert [r["horizonHours"] for r in rows] == list(range(1, 25))
    assert {"timestamp", "price", "confidenceLower", "confidenceUpper", "confidenceScore", "cached"} <= set(rows[0])
    assert data["performance"]["cacheMissCount"] == 24

    again = unwrap(client.post("/api/forecast", json={"horizon": 24}).json())
    assert all(r["cached"] for r in again["predictions"])
    assert again["performance"]["cacheHitRatePercent"] == 100.0

    refreshed = unwrap(client.get("/api/forecast", params={"horizon": "24h", "force_refresh": "true"}).json())
    assert not any(r["cached"] for r in refreshed["predictions"])

    perf = unwrap(client.get("/api/forecast/performance", params={"limit": 10}).json())
    assert len(perf) == 3


def test_active_model_and_rollback(client, db):
    assert client.get("/api/model/active").status_code == 503

    _load_recent_history(db)
    first = _train(client)
    resp = client.post("/api/model/rollback")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "ROLLBACK_UNAVAILABLE"

    second = unwrap(client.post("/api/model/train", json={"hyperparameters": {"max_depth": 3}}).json())
    active = unwrap(client.get("/api/model/active").json())
    assert active["versionId"] == second["modelVersion"]

    restored = unwrap(client.post("/api/model/rollback").json())
    assert restored["versionId"] == first["modelVersion"]
    assert unwrap(client.get("/api/model/active").json())["versionId"] == first["modelVersion"]


def test_training_without_data_fails(client):
    resp = client.post("/api/model/train")
    assert resp.status_code == 503
    body = resp.json()
    assert body["error"]["code"] == "TRAINING_FAILED"
    assert body["data"]["success"] is False


def test_cross_validation_endpoint(client, db):
    _load_recent_history(db)
    client.post("/api/data/features")

    resp = client.post("/api/model/cross-validation", json={"numFolds": 2, "validationWindowHours": 24})
    assert resp.status_code == 200, resp.text
    data = unwrap(resp.json())
    assert data["completedFolds"] == 2
    assert len(data["foldResults"]) == 2
    assert data["averageMetrics"]["mae"] is not None

    bad = client.post("/api/model/cross-validation", json={"numFolds": 0})
    assert bad.status_code == 422
    assert bad.json()["error"]["code"] == "INVALID_ARGUMENT"


def test_validate_predictions_endpoint(client):
    resp = client.post("/api/predictions/validate", json={"batchLimit": 10})
    assert resp.status_code == 200
    data = unwrap(resp.json())
    assert data["validated"] == 0
    assert data["errors"] == 0


def test_quality_endpoint(client, db):
    _load_recent_history(db, hours=48)
    resp = client.post("/api/data/quality")
    assert resp.status_code == 200
    data = unwrap(resp.json())
    assert data["totalRecords"] == 48
    assert 0 <= data["overallQualityScore"] <= 100
    assert data["reportId"] is not None


def test_retraining_check_and_history(client, db):
    _load_recent_history(db)
    client.post("/api/data/features")

    first = unwrap(client.post("/api/model/retraining/check").json())
    assert first["triggered"] is True
    assert first["retrainingCompleted"] is True
    assert "no active model" in first["reason"]

    second = unwrap(client.post("/api/model/retraining/check").json())
    assert second["triggered"] is False
    assert second["success"] is True

    history = unwrap(client.get("/api/model/retraining/history").json())
    assert len(history) == 2
    assert history[0]["triggered"] is False


def test_failed_retraining_returns_503_with_outcome(client):
    resp = client.post("/api/model/retraining/check")
    assert resp.status_code == 503
    body = resp.json()
    assert body["ok"] is False
    assert body["error"]["code"] == "RETRAINING_FAILED"
    assert body["data"]["triggered"] is True
    assert body["data"]["success"] is False
    assert body["data"]["retrainingCompleted"] is False

    history = unwrap(client.get("/api/model/retraining/history").json())
    assert history[0]["success"] is False


def test_hyperparameter_search_endpoint(client, db):
    _load_recent_history(db)
    client.post("/api/data/features")

    data = unwrap(client.post("/api/model/hyperparameters/search", json={"trials": 2}).json())
    assert data["success"] is True
    assert len(data["trials"]) == 2
    assert sum(1 for t in data["trials"] if t["isBest"]) == 1
    assert unwrap(client.get("/api/model/active").json())["versionId"] == data["modelVersion"]


def test_auxiliary_upsert_and_sync(client):
    now = floor_hour(utcnow())
    points = [{"timestamp": (now - timedelta(hours=i)).isoformat(), "price": 2.1} for i in range(3)]
    resp = client.post("/api/data/auxiliary/natural_gas", json={"points": points})
    assert unwrap(resp.json())["upserted"] == 3

    synced = client.post("/api/data/auxiliary/natural_gas/sync")
    assert synced.status_code == 200
    data = unwrap(synced.json())
    assert data["usedDefault"] is True
    assert data["upserted"] == 49

    unknown = client.post("/api/data/auxiliary/coal/sync")
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "UNKNOWN_SERIES"


def test_features_endpoint_on_empty_store(client):
    resp = client.post("/api/data/features")
    data = unwrap(resp.json())
    assert data["featuresCalculated"] == 0

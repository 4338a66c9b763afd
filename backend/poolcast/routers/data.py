# poolcast/routers/data.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from poolcast.config import get_settings
from poolcast.db.session import get_db
from poolcast.schemas.common import fail, meta_now, ok
from poolcast.schemas.data import (
    AuxiliaryIn,
    FeaturesIn,
    FeaturesOut,
    IngestOut,
    ObservationsIn,
    QualityOut,
    UpsertOut,
)
from poolcast.services import store
from poolcast.services.features import GAS_SERIES, calculate_features
from poolcast.services.market_data import GasPriceClient, sync_gas_prices
from poolcast.services.quality import analyze_data_quality

router = APIRouter(prefix="/api/data", tags=["data"])


def get_gas_client():
    client = GasPriceClient(get_settings())
    try:
        yield client
    finally:
        client.close()


@router.post("/quality")
def data_quality(db: Session = Depends(get_db)):
    report = analyze_data_quality(db)
    payload = QualityOut(
        success=report.success,
        report_id=report.report_id,
        total_records=report.total_records,
        overall_quality_score=report.quality_score,
        missing_data_analysis=report.missing_data_analysis,
        outlier_analysis=report.outlier_analysis,
        price_statistics=report.price_statistics,
        enhanced_feature_coverage=report.enhanced_feature_coverage,
        quality_factors=report.quality_factors,
        recent_completeness=report.recent_completeness,
        temporal_gaps=report.temporal_gaps,
        recommendations=report.recommendations,
    )
    return ok(data=payload, meta=meta_now(operation="analyze_data_quality"))


@router.post("/features")
def features(
    body: Optional[FeaturesIn] = Body(None),
    db: Session = Depends(get_db),
):
    body = body or FeaturesIn()
    meta = meta_now(operation="calculate_features", batch_size=body.batch_size, start_offset=body.start_offset)
    result = calculate_features(db, batch_size=body.batch_size, start_offset=body.start_offset)
    payload = FeaturesOut(
        success=result.success,
        total_observations=result.total_observations,
        features_calculated=result.features_calculated,
        batches_committed=result.batches_committed,
        failed_batches=result.failed_batches,
        error=result.error,
    )
    if result.features_calculated == 0 and not result.success:
        return fail(code="FEATURES_FAILED", message=result.error or "Every batch failed", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)


@router.post("/observations")
def ingest_observations(body: ObservationsIn, db: Session = Depends(get_db)):
    result = store.append_observations(db, [o.model_dump() for o in body.observations])
    payload = IngestOut(success=True, inserted=result.inserted, skipped=result.skipped, invalid=result.invalid)
    return ok(data=payload, meta=meta_now(operation="ingest_observations", received=len(body.observations)))


@router.post("/auxiliary/{series}/sync")
def sync_auxiliary(
    series: str,
    db: Session = Depends(get_db),
    client: GasPriceClient = Depends(get_gas_client),
):
    meta = meta_now(operation="sync_auxiliary", series=series)
    if series != GAS_SERIES:
        return fail(code="UNKNOWN_SERIES", message=f"No upstream feed for series '{series}'", status_code=404, meta=meta)
    result = sync_gas_prices(db, client)
    payload = UpsertOut(success=result.success, series=series, upserted=result.upserted, used_default=result.used_default)
    if not result.success:
        return fail(code="UPSTREAM_UNAVAILABLE", message="Gas price feed did not respond", status_code=503, meta=meta, data=payload)
    return ok(data=payload, meta=meta)


@router.post("/auxiliary/{series}")
def upsert_auxiliary(series: str, body: AuxiliaryIn, db: Session = Depends(get_db)):
    written = store.upsert_auxiliary_prices(db, series, [p.model_dump() for p in body.points])
    payload = UpsertOut(success=True, series=series, upserted=written)
    return ok(data=payload, meta=meta_now(operation="upsert_auxiliary", series=series))

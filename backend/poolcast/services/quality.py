# poolcast/services/quality.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
import structlog
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from poolcast.models.feature import EngineeredFeature
from poolcast.models.quality import DataQualityReport
from poolcast.observability.instrument import log_job
from poolcast.services import store
from poolcast.utils.numeric import round_or_none, safe_divide
from poolcast.utils.timeutils import utcnow

logger = structlog.get_logger(__name__)

CRITICAL_FIELDS = ("price", "demand_mw", "generation_wind", "generation_gas", "temperature")
COVERAGE_FEATURES = (
    "price_lag_1h",
    "price_lag_24h",
    "price_volatility_24h",
    "price_rolling_avg_24h",
    "natural_gas_price",
    "wind_lag_24h",
    "demand_lag_24h",
)
NON_NEGATIVE_FIELDS = ("price", "demand_mw", *[f"generation_{fuel}" for fuel in store.FUEL_TYPES])

TUKEY_K = 3.0
GAP_HOURS = 1.5
RECENT_DAYS = 30

# recommendation thresholds
MAX_MISSING_RATE = 5.0
MAX_OUTLIER_RATE = 5.0
MIN_RECENT_COMPLETENESS = 95.0
MIN_FEATURE_COVERAGE = 90.0
MIN_CONTINUITY = 95.0
MIN_RECORDS = 24 * 30


@dataclass
class QualityReport:
    success: bool
    total_records: int
    quality_score: float
    missing_data_analysis: Dict[str, float] = field(default_factory=dict)
    outlier_analysis: dict = field(default_factory=dict)
    price_statistics: Optional[dict] = None
    enhanced_feature_coverage: Dict[str, float] = field(default_factory=dict)
    quality_factors: Dict[str, float] = field(default_factory=dict)
    recent_completeness: Optional[float] = None
    temporal_gaps: int = 0
    recommendations: List[str] = field(default_factory=list)
    report_id: Optional[int] = None


def missing_rates(frame: pd.DataFrame) -> Dict[str, float]:
    n = len(frame)
    return {col: round(100.0 * frame[col].isna().sum() / n, 2) for col in CRITICAL_FIELDS}


def tukey_outliers(prices: pd.Series, k: float = TUKEY_K) -> dict:
    """Outliers outside [Q1 - k*IQR, Q3 + k*IQR]."""
    vals = prices.dropna().astype(float)
    if vals.empty:
        return {"lower_bound": None, "upper_bound": None, "outlier_count": 0, "outlier_rate": 0.0}
    q1, q3 = float(vals.quantile(0.25)), float(vals.quantile(0.75))
    iqr = q3 - q1
    lower, upper = q1 - k * iqr, q3 + k * iqr
    count = int(((vals < lower) | (vals > upper)).sum())
    return {
        "lower_bound": round(lower, 2),
        "upper_bound": round(upper, 2),
        "outlier_count": count,
        "outlier_rate": round(100.0 * count / len(vals), 2),
    }


def price_statistics(prices: pd.Series) -> Optional[dict]:
    vals = prices.dropna().astype(float)
    if vals.empty:
        return None
    return {
        "mean": round_or_none(vals.mean(), 2),
        "median": round_or_none(vals.median(), 2),
        "std": round_or_none(vals.std(ddof=1) if len(vals) > 1 else 0.0, 2),
        "min": round_or_none(vals.min(), 2),
        "max": round_or_none(vals.max(), 2),
        "q1": round_or_none(vals.quantile(0.25), 2),
        "q3": round_or_none(vals.quantile(0.75), 2),
    }


def temporal_gaps(timestamps: pd.Series, gap_hours: float = GAP_HOURS) -> int:
    stamps = pd.to_datetime(timestamps, utc=True).sort_values()
    deltas = stamps.diff().dropna()
    return int((deltas > pd.Timedelta(hours=gap_hours)).sum())


def continuity_score(n: int, gaps: int) -> float:
    if n < 2:
        return 100.0
    return round(100.0 * (1 - gaps / (n - 1)), 2)


def negative_rate(frame: pd.DataFrame) -> float:
    mask = np.zeros(len(frame), dtype=bool)
    for col in NON_NEGATIVE_FIELDS:
        mask |= (pd.to_numeric(frame[col], errors="coerce") < 0).to_numpy()
    return round(100.0 * mask.sum() / len(frame), 2)


def feature_coverage(db: Session, observation_count: int) -> Dict[str, float]:
    counts = db.execute(
        select(*[func.count(getattr(EngineeredFeature, name)) for name in COVERAGE_FEATURES])
    ).one()
    return {
        name: round(min(100.0, 100.0 * (safe_divide(count, observation_count) or 0.0)), 2)
        for name, count in zip(COVERAGE_FEATURES, counts)
    }


def recent_completeness(db: Session, frame: pd.DataFrame, days: int = RECENT_DAYS) -> Optional[float]:
    """Share of the last ``days`` days with price, demand, a renewable field and a lag feature."""
    stamps = pd.to_datetime(frame["timestamp"], utc=True)
    cutoff = stamps.max() - pd.Timedelta(days=days)
    recent = frame[stamps > cutoff]
    if recent.empty:
        return None
    lagged = {
        pd.Timestamp(ts)
        for ts in db.execute(
            select(EngineeredFeature.timestamp).where(
                EngineeredFeature.price_lag_1h.isnot(None),
                EngineeredFeature.timestamp > cutoff.to_pydatetime(),
            )
        ).scalars()
    }
    complete = (
        recent["price"].notna()
        & recent["demand_mw"].notna()
        & (recent["generation_wind"].notna() | recent["generation_solar"].notna())
        & pd.to_datetime(recent["timestamp"], utc=True).isin(lagged)
    )
    return round(100.0 * complete.sum() / len(recent), 2)


def build_recommendations(report: QualityReport) -> List[str]:
    recs: List[str] = []
    worst_field = max(report.missing_data_analysis, key=report.missing_data_analysis.get, default=None)
    if worst_field and report.missing_data_analysis[worst_field] > MAX_MISSING_RATE:
        recs.append(
            f"Backfill {worst_field}: {report.missing_data_analysis[worst_field]:.1f}% of records are missing it."
        )
    if report.outlier_analysis.get("outlier_rate", 0.0) > MAX_OUTLIER_RATE:
        recs.append("Review extreme prices: outlier rate exceeds 5% under the 3xIQR rule.")
    if report.recent_completeness is not None and report.recent_completeness < MIN_RECENT_COMPLETENESS:
        recs.append(f"Recent 30-day completeness is {report.recent_completeness:.1f}%; check the ingest feed.")
    for name, pct in report.enhanced_feature_coverage.items():
        if pct < MIN_FEATURE_COVERAGE:
            recs.append(f"Feature {name} covers only {pct:.1f}% of observations; recalculate features.")
    if report.quality_factors.get("negative_value_rate", 0.0) > 0:
        recs.append("Physically impossible negative values found in price, demand or generation.")
    if report.quality_factors.get("temporal_continuity", 100.0) < MIN_CONTINUITY:
        recs.append(f"{report.temporal_gaps} gaps longer than {GAP_HOURS} hours break hourly continuity.")
    if report.total_records < MIN_RECORDS:
        recs.append(f"Only {report.total_records} records; at least {MIN_RECORDS} (30 days) are recommended for training.")
    return recs


def _persist(db: Session, report: QualityReport) -> None:
    row = DataQualityReport(
        report_date=utcnow(),
        total_records=report.total_records,
        quality_score=report.quality_score,
        missing_data_analysis=report.missing_data_analysis,
        outlier_analysis=report.outlier_analysis,
        price_statistics=report.price_statistics,
        enhanced_feature_coverage=report.enhanced_feature_coverage,
        quality_factors=report.quality_factors,
        recent_completeness=report.recent_completeness,
        temporal_gaps=report.temporal_gaps,
        recommendations=report.recommendations,
    )
    db.add(row)
    db.commit()
    report.report_id = row.id


@log_job("data.quality")
def analyze_data_quality(db: Session) -> QualityReport:
    """Score the observation store and persist one report; source rows are only read."""
    frame = store.load_observation_frame(db)
    n = len(frame)
    if n == 0:
        report = QualityReport(
            success=True,
            total_records=0,
            quality_score=0.0,
            recommendations=["No data: ingest observations before training."],
        )
        _persist(db, report)
        return report

    missing = missing_rates(frame)
    outliers = tukey_outliers(frame["price"])
    coverage = feature_coverage(db, n)
    recent = recent_completeness(db, frame)
    gaps = temporal_gaps(frame["timestamp"])

    factors = {
        "completeness": round(100.0 - max(missing.values()), 2),
        "outlier_free": round(100.0 - outliers["outlier_rate"], 2),
        "recent_completeness": recent if recent is not None else 0.0,
        "feature_coverage": round(float(np.mean(list(coverage.values()))), 2),
        "validity": round(100.0 - negative_rate(frame), 2),
        "temporal_continuity": continuity_score(n, gaps),
    }
    score = round(float(np.mean(list(factors.values()))), 2)
    factors["negative_value_rate"] = round(100.0 - factors["validity"], 2)

    report = QualityReport(
        success=True,
        total_records=n,
        quality_score=score,
        missing_data_analysis=missing,
        outlier_analysis=outliers,
        price_statistics=price_statistics(frame["price"]),
        enhanced_feature_coverage=coverage,
        quality_factors=factors,
        recent_completeness=recent,
        temporal_gaps=gaps,
    )
    report.recommendations = build_recommendations(report)
    _persist(db, report)
    logger.info("quality.report", score=score, records=n, recommendations=len(report.recommendations))
    return report


def latest_quality_score(db: Session) -> Optional[float]:
    stmt = select(DataQualityReport.quality_score).order_by(DataQualityReport.report_date.desc()).limit(1)
    return db.execute(stmt).scalars().first()

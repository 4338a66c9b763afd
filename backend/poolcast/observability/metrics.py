from __future__ import annotations

from collections import defaultdict, deque
from typing import Deque, Dict, List

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

router = APIRouter()

REQUEST_COUNTER = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["path", "method"],
)
FORECAST_CACHE_LOOKUPS = Counter(
    "forecast_cache_lookups_total",
    "Forecast target hours resolved from the prediction cache or by generation",
    ["result"],
)
PREDICTIONS_GENERATED = Counter(
    "forecast_predictions_generated_total",
    "Predictions written by the forecast batcher",
)
FORECAST_BATCH_FAILURES = Counter(
    "forecast_batch_failures_total",
    "Forecast generation batches that failed and were skipped",
)
VALIDATED_PREDICTIONS = Counter(
    "predictions_validated_total",
    "Predictions matched to actual prices",
    ["regime"],
)

_LATENCY_SAMPLES: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=200))


def record_latency(path: str, duration_ms: float) -> None:
    _LATENCY_SAMPLES[path].append(duration_ms)


def record_cache_lookup(hits: int, misses: int) -> None:
    if hits:
        FORECAST_CACHE_LOOKUPS.labels(result="hit").inc(hits)
    if misses:
        FORECAST_CACHE_LOOKUPS.labels(result="miss").inc(misses)


@router.get("/metrics")
async def metrics_endpoint() -> PlainTextResponse:
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/api/health/latency")
async def latency_health() -> dict[str, List[dict[str, float | str]]]:
    payload: List[dict[str, float | str]] = []
    for path, samples in _LATENCY_SAMPLES.items():
        if not samples:
            continue
        ordered = sorted(samples)
        payload.append({
            "path": path,
            "p50_ms": round(_percentile(ordered, 50), 2),
            "p95_ms": round(_percentile(ordered, 95), 2),
            "sample_size": len(samples),
        })
    return {"paths": payload}


def _percentile(ordered: List[float], pct: int) -> float:
    if not ordered:
        return 0.0
    k = (len(ordered) - 1) * (pct / 100)
    f = int(k)
    c = min(f + 1, len(ordered) - 1)
    if f == c:
        return ordered[f]
    d0 = ordered[f] * (c - k)
    d1 = ordered[c] * (k - f)
    return d0 + d1

from __future__ import annotations

import logging

from prometheus_client import Counter, Histogram

from core.config import settings

logger = logging.getLogger(__name__)

JOBS_TOTAL = Counter(
    "adscraper_jobs_total",
    "Total jobs by state and source.",
    ["state", "source"],
)
JOB_DURATION = Histogram(
    "adscraper_job_duration_seconds",
    "Job duration in seconds.",
    ["source"],
)
PAGES_TOTAL = Counter(
    "adscraper_pages_total",
    "Batches fetched from upstream sources.",
    ["source"],
)
RECORDS_TOTAL = Counter(
    "adscraper_records_total",
    "Normalized records by source and outcome.",
    ["source", "outcome"],
)
RATE_LIMITED_TOTAL = Counter(
    "adscraper_rate_limited_total",
    "Upstream 429 responses that were retried.",
    ["source"],
)
UPSTREAM_DURATION = Histogram(
    "adscraper_upstream_duration_seconds",
    "Upstream request duration in seconds.",
    ["source"],
)
VISION_CALLS_TOTAL = Counter(
    "adscraper_vision_calls_total",
    "Vision extraction calls by model and outcome.",
    ["model", "outcome"],
)
VISION_TOKENS_TOTAL = Counter(
    "adscraper_vision_tokens_total",
    "Total vision tokens consumed by model.",
    ["model"],
)


def record_job_state(state: str, source: str | None) -> None:
    if not settings.metrics_enabled:
        return
    JOBS_TOTAL.labels(state=_label(state, "unknown"), source=_label(source, "unknown")).inc()


def record_job_duration(source: str | None, seconds: float) -> None:
    if not settings.metrics_enabled:
        return
    JOB_DURATION.labels(source=_label(source, "unknown")).observe(seconds)


def record_page(source: str | None, accepted: int, dropped: int) -> None:
    if not settings.metrics_enabled:
        return
    label = _label(source, "unknown")
    PAGES_TOTAL.labels(source=label).inc()
    if accepted:
        RECORDS_TOTAL.labels(source=label, outcome="accepted").inc(accepted)
    if dropped:
        RECORDS_TOTAL.labels(source=label, outcome="dropped").inc(dropped)


def record_rate_limited(source: str | None) -> None:
    if not settings.metrics_enabled:
        return
    RATE_LIMITED_TOTAL.labels(source=_label(source, "unknown")).inc()


def record_upstream_duration(source: str | None, seconds: float) -> None:
    if not settings.metrics_enabled:
        return
    UPSTREAM_DURATION.labels(source=_label(source, "unknown")).observe(seconds)


def record_vision_call(model: str | None, outcome: str, tokens: int | None = None) -> None:
    if not settings.metrics_enabled:
        return
    model_label = _label(model, "unknown")
    VISION_CALLS_TOTAL.labels(model=model_label, outcome=_label(outcome, "unknown")).inc()
    if tokens:
        VISION_TOKENS_TOTAL.labels(model=model_label).inc(tokens)


def _label(value: str | None, default: str) -> str:
    if value is None:
        return default
    cleaned = str(value).strip()
    return cleaned or default

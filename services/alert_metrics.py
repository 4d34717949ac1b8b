"""Prometheus helpers for alert delivery and tenant run health."""

from __future__ import annotations

from typing import Optional

from prometheus_client import Counter, Histogram

from core.logging import get_logger

logger = get_logger(__name__)

_RUN_HISTOGRAM: Optional[Histogram] = None
_DELIVERY_COUNTER: Optional[Counter] = None
_DUPLICATE_COUNTER: Optional[Counter] = None
_SUPPRESSED_COUNTER: Optional[Counter] = None
_RUN_BUCKETS = (
    0.1,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
)

try:
    _RUN_HISTOGRAM = Histogram(
        "alert_tenant_run_seconds",
        "Seconds spent running one tenant for one alert occasion.",
        ("occasion", "outcome"),
        buckets=_RUN_BUCKETS,
    )
    _DELIVERY_COUNTER = Counter(
        "alert_delivery_total",
        "Alert delivery attempts by rule type, channel kind and final status.",
        ("rule_type", "channel_kind", "status"),
    )
    _DUPLICATE_COUNTER = Counter(
        "alert_duplicate_total",
        "Alert candidates skipped because the ledger already holds a pending or sent row.",
        ("rule_type",),
    )
    _SUPPRESSED_COUNTER = Counter(
        "alert_quiet_hours_suppressed_total",
        "Tenant runs skipped because the tenant was inside quiet hours.",
        ("occasion", "deferred"),
    )
except ValueError:  # pragma: no cover - duplicate registration during reload
    logger.debug("Alert metrics already registered; reusing collectors.")


def observe_tenant_run(occasion: str, outcome: str, seconds: float) -> None:
    if _RUN_HISTOGRAM is None or seconds < 0:
        return
    _RUN_HISTOGRAM.labels(occasion=occasion or "unknown", outcome=outcome or "unknown").observe(seconds)


def record_delivery(rule_type: str, channel_kind: str, status: str) -> None:
    if _DELIVERY_COUNTER is None:
        return
    _DELIVERY_COUNTER.labels(
        rule_type=rule_type or "unknown",
        channel_kind=channel_kind or "unknown",
        status=status or "unknown",
    ).inc()


def record_duplicate(rule_type: str) -> None:
    if _DUPLICATE_COUNTER is None:
        return
    _DUPLICATE_COUNTER.labels(rule_type=rule_type or "unknown").inc()


def record_suppressed(occasion: str, *, deferred: bool) -> None:
    if _SUPPRESSED_COUNTER is None:
        return
    _SUPPRESSED_COUNTER.labels(occasion=occasion or "unknown", deferred="yes" if deferred else "no").inc()


__all__ = ["observe_tenant_run", "record_delivery", "record_duplicate", "record_suppressed"]

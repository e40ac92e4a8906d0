"""Prometheus metrics for the notification engine.

The exporter is started explicitly by the runner (``--metrics-port`` or the
``METRICS_PORT`` environment variable); importing this module only registers
the collectors.
"""

from __future__ import annotations

import os
import threading
from typing import Final

from prometheus_client import Counter, Histogram, start_http_server

from src.config.logging_config import get_logger

logger = get_logger(__name__)

ACTIVITIES_PROCESSED_TOTAL: Final[Counter] = Counter(
    "activity_notifier_activities_processed_total",
    "Activities processed, by final status",
    labelnames=("status",),
)

NOTIFICATIONS_TOTAL: Final[Counter] = Counter(
    "activity_notifier_notifications_total",
    "Slack notification attempts, by result",
    labelnames=("result",),
)

ORGANIZATIONS_SKIPPED_TOTAL: Final[Counter] = Counter(
    "activity_notifier_organizations_skipped_total",
    "Organizations skipped during a tick, by reason",
    labelnames=("reason",),
)

TICK_DURATION_SECONDS: Final[Histogram] = Histogram(
    "activity_notifier_tick_duration_seconds",
    "Duration of scheduler ticks in seconds",
)

_EXPORTER_LOCK = threading.Lock()
_EXPORTER_STARTED = False
_DEFAULT_METRICS_PORT: Final[int] = 9000
_METRICS_PORT_ENV: Final[str] = "METRICS_PORT"


def resolve_metrics_port(port: int | None = None) -> int:
    """Return the explicit port, else ``METRICS_PORT``, else the default."""

    if port is not None:
        return port
    port_raw = os.getenv(_METRICS_PORT_ENV)
    try:
        return int(port_raw) if port_raw else _DEFAULT_METRICS_PORT
    except ValueError:
        logger.warning("invalid_metrics_port", port=port_raw)
        return _DEFAULT_METRICS_PORT


def ensure_metrics_exporter(port: int | None = None) -> None:
    """Start Prometheus HTTP exporter once per process."""

    global _EXPORTER_STARTED
    with _EXPORTER_LOCK:
        if _EXPORTER_STARTED:
            return

        resolved_port = resolve_metrics_port(port)

        try:
            start_http_server(resolved_port)
        except OSError as exc:
            logger.error(
                "metrics_exporter_start_failed",
                port=resolved_port,
                error=str(exc),
            )
            raise

        _EXPORTER_STARTED = True
        logger.info("metrics_exporter_started", port=resolved_port)


__all__ = [
    "ACTIVITIES_PROCESSED_TOTAL",
    "NOTIFICATIONS_TOTAL",
    "ORGANIZATIONS_SKIPPED_TOTAL",
    "TICK_DURATION_SECONDS",
    "ensure_metrics_exporter",
    "resolve_metrics_port",
]

"""
Prometheus metrics for monitoring the watcher.

Defines and exposes metrics for:
- Tick counts and durations per platform
- Status check outcomes
- Session transitions
- Notification delivery
- Ledger commits
- Tracked creator counts and adapter health

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from telescope.config.settings import get_settings
from telescope.platforms.schemas import Platform

logger = logging.getLogger(__name__)

# Buckets for tick duration histograms (in seconds)
TICK_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)


def _label(platform: Platform | str) -> str:
    return platform.value if isinstance(platform, Platform) else platform


class MetricsCollector:
    """
    Prometheus metrics collector for the telescope watcher.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_tick(Platform.BILIBILI_LIVE, duration=1.2)
        metrics.record_notification(Platform.BILIBILI_LIVE, "started", sent=True)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.ticks = Counter(
            "telescope_ticks_total",
            "Total number of reconciliation passes",
            ["platform"],
        )

        self.tick_duration = Histogram(
            "telescope_tick_duration_seconds",
            "Time spent reconciling one platform",
            ["platform"],
            buckets=TICK_BUCKETS,
        )

        self.tick_errors = Counter(
            "telescope_tick_errors_total",
            "Reconciliation passes aborted by an error",
            ["platform", "error_type"],
        )

        self.status_checks = Counter(
            "telescope_status_checks_total",
            "Status checks of in-flight sessions",
            ["platform", "result"],
        )

        self.transitions = Counter(
            "telescope_transitions_total",
            "Session transitions observed",
            ["platform", "transition"],
        )

        self.notifications = Counter(
            "telescope_notifications_total",
            "Notifications delivered or failed",
            ["platform", "kind", "result"],
        )

        self.ledger_commits = Counter(
            "telescope_ledger_commits_total",
            "Ledger commits by operation and outcome",
            ["operation", "result"],
        )

        self.tracked_creators = Gauge(
            "telescope_tracked_creators",
            "Creators in the tracked index",
            ["platform", "state"],
        )

        self.adapter_health = Gauge(
            "telescope_adapter_health",
            "Adapter health status (1=healthy, 0=unhealthy)",
            ["platform"],
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_tick(self, platform: Platform | str, duration: float) -> None:
        platform_str = _label(platform)
        self.ticks.labels(platform=platform_str).inc()
        self.tick_duration.labels(platform=platform_str).observe(duration)

    def record_tick_error(self, platform: Platform | str, error_type: str) -> None:
        self.tick_errors.labels(
            platform=_label(platform),
            error_type=error_type,
        ).inc()

    def record_status_check(self, platform: Platform | str, ok: bool) -> None:
        self.status_checks.labels(
            platform=_label(platform),
            result="ok" if ok else "failed",
        ).inc()

    def record_transition(self, platform: Platform | str, transition: str) -> None:
        """
        Record a session transition.

        Args:
            platform: Source platform
            transition: One of started, ended, unknown, catch_up
        """
        self.transitions.labels(
            platform=_label(platform),
            transition=transition,
        ).inc()

    def record_notification(
        self,
        platform: Platform | str,
        kind: str,
        sent: bool,
    ) -> None:
        self.notifications.labels(
            platform=_label(platform),
            kind=kind,
            result="sent" if sent else "failed",
        ).inc()

    def record_commit(self, operation: str, result: str) -> None:
        """
        Record a ledger commit.

        Args:
            operation: session_start or session_end
            result: ok, skipped or failed
        """
        self.ledger_commits.labels(operation=operation, result=result).inc()

    def set_tracked_creators(
        self,
        platform: Platform | str,
        idle: int,
        live: int,
    ) -> None:
        platform_str = _label(platform)
        self.tracked_creators.labels(platform=platform_str, state="idle").set(idle)
        self.tracked_creators.labels(platform=platform_str, state="live").set(live)

    def set_adapter_health(self, platform: Platform | str, healthy: bool) -> None:
        self.adapter_health.labels(platform=_label(platform)).set(1 if healthy else 0)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics

"""
Metrics Collection with Prometheus.

Callback outcomes are labelled by ad network so a broken signing secret or a
key rotation problem on one platform shows up on its own series.
"""

from enum import Enum

from prometheus_client import Counter, Histogram, Info

from app.config import settings

CALLBACK_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PLATFORM = "platform"
    OUTCOME = "outcome"
    REWARD_TYPE = "reward_type"
    ERROR_TYPE = "error_type"


class RewardMetrics:
    """
    Prometheus metrics for the Ad Rewards API.

    - HTTP requests by route template and status
    - SSV callbacks by platform and outcome (granted, already_processed, or the
      error class that rejected the callback)
    - Entitlement grants by reward type
    - AdMob verifier key fetches
    """

    def __init__(self) -> None:
        Info("rewards_service", "Service information").info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
                "reward_platforms": ",".join(settings.reward_platforms),
            }
        )

        self.http_requests_total = Counter(
            "rewards_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )
        self.http_request_duration_seconds = Histogram(
            "rewards_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=CALLBACK_BUCKETS,
        )

        self.reward_callbacks_total = Counter(
            "rewards_callbacks_total",
            "SSV callbacks processed",
            [MetricLabels.PLATFORM, MetricLabels.OUTCOME],
        )
        self.reward_callback_duration_seconds = Histogram(
            "rewards_callback_duration_seconds",
            "SSV callback processing duration in seconds",
            [MetricLabels.PLATFORM],
            buckets=CALLBACK_BUCKETS,
        )
        self.reward_grants_total = Counter(
            "rewards_grants_total",
            "Entitlements granted or extended",
            [MetricLabels.REWARD_TYPE],
        )

        self.key_refreshes_total = Counter(
            "rewards_admob_key_refreshes_total",
            "AdMob verifier key fetches",
            ["success"],
        )

        self.errors_total = Counter(
            "rewards_errors_total",
            "Unhandled errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_reward_callback(self, platform: str, outcome: str, duration: float) -> None:
        """Record a processed callback."""
        self.reward_callbacks_total.labels(platform=platform, outcome=outcome).inc()
        self.reward_callback_duration_seconds.labels(platform=platform).observe(duration)

    def record_reward_grant(self, reward_type: str) -> None:
        self.reward_grants_total.labels(reward_type=reward_type).inc()

    def record_key_refresh(self, success: bool) -> None:
        self.key_refreshes_total.labels(success=str(success).lower()).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = RewardMetrics()

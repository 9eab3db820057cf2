import logging
from typing import Optional

from storyprint.config import settings
from storyprint.exceptions import ProviderError
from storyprint.jobs.periodic import PeriodicTask
from storyprint.services.webhook_subscription_service import WebhookSubscriptionService

logger = logging.getLogger(__name__)


class WebhookMonitor:
    """Owns the two webhook timers: health check and delivery burst scan."""

    def __init__(
        self,
        subscriptions: WebhookSubscriptionService,
        health_interval_seconds: Optional[float] = None,
        burst_interval_seconds: Optional[float] = None,
    ):
        self.subscriptions = subscriptions
        self.health_check = PeriodicTask(
            "WebhookHealthCheck",
            subscriptions.perform_health_check,
            health_interval_seconds or settings.webhook_health_check_interval_seconds,
        )
        self.burst_check = PeriodicTask(
            "WebhookBurstCheck",
            subscriptions.monitor_delivery_bursts,
            burst_interval_seconds or settings.webhook_burst_check_interval_seconds,
        )

    @property
    def is_running(self) -> bool:
        return self.health_check.is_running or self.burst_check.is_running

    def start(self, initialize: bool = True) -> None:
        if initialize:
            try:
                self.subscriptions.initialize()
            except ProviderError as e:
                # the first health check registers from scratch
                logger.error(f"Webhook initialization failed: {e}")

        self.health_check.start()
        self.burst_check.start()

    def stop(self) -> None:
        self.health_check.stop()
        self.burst_check.stop()

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "health_check": {
                "running": self.health_check.is_running,
                "interval_seconds": self.health_check.interval_seconds,
                "runs": self.health_check.runs,
                "last_result": self.health_check.last_result,
            },
            "burst_check": {
                "running": self.burst_check.is_running,
                "interval_seconds": self.burst_check.interval_seconds,
                "runs": self.burst_check.runs,
                "last_result": self.burst_check.last_result,
            },
        }

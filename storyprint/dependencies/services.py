from functools import lru_cache

from storyprint.jobs.webhook_monitor import WebhookMonitor
from storyprint.services.alert_service import AlertService
from storyprint.services.artifact_service import ArtifactService
from storyprint.services.cost_service import CostService
from storyprint.services.payment_service import PaymentService
from storyprint.services.print_order_service import PrintOrderService
from storyprint.services.provider_client import PrintProviderClient
from storyprint.services.webhook_subscription_service import WebhookSubscriptionService


# One instance of each per process; routes receive them through Depends
# so tests can swap them with app.dependency_overrides.

@lru_cache
def get_provider_client() -> PrintProviderClient:
    return PrintProviderClient()


@lru_cache
def get_cost_service() -> CostService:
    return CostService(get_provider_client())


@lru_cache
def get_print_order_service() -> PrintOrderService:
    return PrintOrderService(
        provider=get_provider_client(),
        cost_service=get_cost_service(),
        artifacts=ArtifactService(),
    )


@lru_cache
def get_payment_service() -> PaymentService:
    return PaymentService(get_print_order_service())


@lru_cache
def get_alert_service() -> AlertService:
    return AlertService()


@lru_cache
def get_webhook_service() -> WebhookSubscriptionService:
    return WebhookSubscriptionService(get_provider_client(), get_alert_service())


@lru_cache
def get_webhook_monitor() -> WebhookMonitor:
    return WebhookMonitor(get_webhook_service())

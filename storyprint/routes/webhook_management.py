from typing import Optional

from fastapi import APIRouter, Depends, Query

from storyprint.dependencies.services import get_webhook_monitor, get_webhook_service
from storyprint.jobs.webhook_monitor import WebhookMonitor
from storyprint.models.user import User
from storyprint.services.webhook_subscription_service import WebhookSubscriptionService
from storyprint.utils.token import require_admin

router = APIRouter()


@router.get("/status")
def webhook_status(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.get_status()}


@router.post("/register")
def register_webhook(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.initialize()}


@router.post("/test")
def test_webhook(
    topic: str = "PRINT_JOB_STATUS_CHANGED",
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.test_webhook(topic)}


@router.get("/submissions")
def webhook_submissions(
    hours: int = Query(24, ge=1, le=24 * 30),
    page_size: int = Query(50, ge=1, le=100),
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.get_submissions(hours, page_size)}


@router.get("/list")
def list_webhooks(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.list_webhooks()}


@router.post("/reactivate")
def reactivate_webhook(
    webhook_id: Optional[str] = None,
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    webhook = webhooks.reactivate(webhook_id)
    return {
        "success": True,
        "data": {"webhook_id": webhook.id, "is_active": webhook.is_active},
    }


@router.post("/health-check")
def run_health_check(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.perform_health_check()}


@router.post("/monitor")
def run_burst_monitor(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.monitor_delivery_bursts()}


@router.get("/analytics")
def webhook_analytics(
    time_range: str = Query("24h", alias="timeRange"),
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
):
    return {"success": True, "data": webhooks.get_analytics(time_range)}


@router.get("/config")
def webhook_config(
    admin: User = Depends(require_admin),
    webhooks: WebhookSubscriptionService = Depends(get_webhook_service),
    monitor: WebhookMonitor = Depends(get_webhook_monitor),
):
    return {"success": True, "data": {**webhooks.get_config(), "monitor": monitor.status()}}

"""
Keeps exactly one active provider webhook subscription for our status URL.

The provider deactivates a subscription after 5 consecutive failed
deliveries, and a deactivated subscription means order status stops
converging. This service adopts or registers the subscription at startup,
checks its health periodically, and recovers it by reactivation first and
full re-registration second.

Health checks and burst monitoring run on separate timer threads, so the
cached subscription id is only read and written under a lock.
"""

import hashlib
import hmac
import logging
import threading
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from storyprint.config import settings
from storyprint.exceptions import (
    InvalidWebhookRequestError,
    ProviderError,
    ProviderNotFoundError,
    WebhookNotRegisteredError,
    WebhookSignatureError,
)
from storyprint.services.alert_service import AlertService
from storyprint.services.provider_client import (
    DeliveryRecord,
    PrintProviderClient,
    WebhookSubscription,
)
from storyprint.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Lulu-HMAC-SHA256"

ANALYTICS_RANGES = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

CONSECUTIVE_WINDOW = 10


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> None:
    """HMAC-SHA256 of the raw body, compared in constant time."""
    secret = secret if secret is not None else settings.provider_webhook_secret
    if not secret:
        if settings.ENV == "production":
            raise WebhookSignatureError("Webhook secret is not configured")
        logger.warning("provider_webhook_secret not set, accepting unsigned provider webhook")
        return

    if not signature:
        raise WebhookSignatureError("Missing webhook signature")

    received = signature.strip()
    if "=" in received:
        # tolerate "sha256=<hex>"
        received = received.split("=", 1)[1]

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, received.lower()):
        raise WebhookSignatureError()


def _newest_first(records: List[DeliveryRecord]) -> List[DeliveryRecord]:
    return sorted(
        records,
        key=lambda r: r.date_created.timestamp() if r.date_created else 0,
        reverse=True,
    )


def count_consecutive_failures(records: List[DeliveryRecord], window: int = CONSECUTIVE_WINDOW) -> int:
    """Failures at the head of the newest `window` records, up to the first success."""
    count = 0
    for record in _newest_first(records)[:window]:
        if record.is_success:
            break
        count += 1
    return count


def record_as_dict(record: DeliveryRecord) -> Dict[str, Any]:
    return {
        "is_success": record.is_success,
        "response_code": record.response_code,
        "attempts": record.attempts,
        "topic": record.topic,
        "date_created": record.date_created.isoformat() if record.date_created else None,
    }


def submission_stats(records: List[DeliveryRecord]) -> Dict[str, Any]:
    total = len(records)
    successful = sum(1 for r in records if r.is_success)
    failed = total - successful
    success_rate = (successful / total) * 100 if total else 0
    return {
        "total": total,
        "successful": successful,
        "failed": failed,
        "success_rate": round(success_rate, 2),
        "recent_failures": [record_as_dict(r) for r in _newest_first(records) if not r.is_success][:5],
    }


def _code_key(record: DeliveryRecord) -> str:
    return str(record.response_code) if record.response_code is not None else "unknown"


class WebhookSubscriptionService:
    def __init__(
        self,
        provider: PrintProviderClient,
        alerts: AlertService,
        url: Optional[str] = None,
        topics: Optional[List[str]] = None,
        registration_attempts: Optional[int] = None,
        registration_retry_delay: Optional[float] = None,
        warning_threshold: Optional[int] = None,
        reactivation_threshold: Optional[int] = None,
        burst_threshold: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = utcnow,
    ):
        self.provider = provider
        self.alerts = alerts
        self.url = url or settings.webhook_url
        self.topics = list(topics or settings.provider_webhook_topics)
        self.registration_attempts = max(
            1, registration_attempts or settings.webhook_registration_attempts
        )
        self.registration_retry_delay = (
            registration_retry_delay
            if registration_retry_delay is not None
            else settings.webhook_registration_retry_delay_seconds
        )
        self.warning_threshold = warning_threshold or settings.webhook_failure_warning_threshold
        self.reactivation_threshold = reactivation_threshold or settings.webhook_reactivation_threshold
        self.burst_threshold = burst_threshold or settings.webhook_burst_failure_threshold
        self._sleep = sleep
        self._now = now

        self._lock = threading.RLock()
        self.subscription_id: Optional[str] = None
        self.last_health_check: Optional[datetime] = None
        self.registrations = 0
        # set once this process has held a subscription, adopted or registered
        self._known_subscription = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> Dict[str, Any]:
        with self._lock:
            logger.info(f"Initializing provider webhook for {self.url}")
            ours = [s for s in self.provider.list_webhooks() if s.url == self.url]

            if not ours:
                webhook = self.register()
                return {"success": True, "webhook_id": webhook.id, "url": self.url, "action": "registered"}

            primary = next((s for s in ours if s.is_active), ours[0])
            for duplicate in ours:
                if duplicate.id == primary.id:
                    continue
                try:
                    self.provider.delete_webhook(duplicate.id)
                    logger.info(f"Deleted duplicate webhook {duplicate.id} for {self.url}")
                except ProviderError as e:
                    logger.warning(f"Could not delete duplicate webhook {duplicate.id}: {e}")

            self.subscription_id = primary.id
            self._known_subscription = True
            action = "adopted"

            if not primary.is_active:
                self.reactivate(primary.id)
                action = "reactivated"

            if sorted(primary.topics) != sorted(self.topics):
                self.provider.update_webhook(primary.id, {"topics": self.topics})
                logger.info(f"Updated webhook {primary.id} topics to {self.topics}")

            logger.info(f"Webhook {primary.id} {action} for {self.url}")
            return {"success": True, "webhook_id": primary.id, "url": self.url, "action": action}

    def register(self) -> WebhookSubscription:
        with self._lock:
            last_error: Optional[ProviderError] = None

            for attempt in range(1, self.registration_attempts + 1):
                try:
                    logger.info(
                        f"Registering webhook (attempt {attempt}/{self.registration_attempts}) "
                        f"url={self.url} topics={self.topics}"
                    )
                    webhook = self.provider.create_webhook(self.url, self.topics)
                except ProviderError as e:
                    last_error = e
                    logger.warning(f"Webhook registration attempt {attempt} failed: {e}")
                    if attempt < self.registration_attempts:
                        self._sleep(self.registration_retry_delay)
                    continue

                replacing = self._known_subscription
                self.subscription_id = webhook.id
                self.registrations += 1
                self._known_subscription = True
                logger.info(f"Webhook {webhook.id} registered for {webhook.url}")
                if replacing:
                    self.alerts.send_registration_alert(webhook.id, webhook.url, webhook.topics)
                return webhook

            logger.error(f"Failed to register webhook after {self.registration_attempts} attempts")
            raise last_error

    def reactivate(self, subscription_id: Optional[str] = None) -> WebhookSubscription:
        with self._lock:
            subscription_id = subscription_id or self.subscription_id
            if not subscription_id:
                raise WebhookNotRegisteredError()
            logger.info(f"Reactivating webhook {subscription_id}")
            webhook = self.provider.update_webhook(subscription_id, {"is_active": True})
            logger.info(f"Webhook {webhook.id} active={webhook.is_active}")
            return webhook

    def _forget_subscription(self):
        if self.subscription_id:
            self._known_subscription = True
        self.subscription_id = None

    def _recover(self, webhook_id: str, failures: int) -> str:
        """Reactivate, fall back to a fresh registration. Returns how it recovered."""
        try:
            self.reactivate(webhook_id)
            method = "reactivation"
        except ProviderError as e:
            logger.error(f"Reactivation of webhook {webhook_id} failed: {e}; re-registering")
            self._forget_subscription()
            try:
                self.register()
                method = "re-registration"
            except ProviderError as register_error:
                logger.error(f"Webhook recovery failed: {register_error}")
                return "failed"

        self.alerts.send_recovery_alert(self.subscription_id or webhook_id, method, failures)
        return method

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def perform_health_check(self) -> Dict[str, Any]:
        with self._lock:
            report: Dict[str, Any] = {"checked_at": self._now().isoformat(), "actions": []}
            try:
                if not self.subscription_id:
                    logger.warning("No registered webhook at health check, registering")
                    self.register()
                    report["actions"].append("registered")

                try:
                    webhook = self.provider.get_webhook(self.subscription_id)
                except ProviderNotFoundError:
                    logger.warning(f"Webhook {self.subscription_id} not found, re-registering")
                    self._forget_subscription()
                    webhook = self.register()
                    report["actions"].append("re-registered")

                if not webhook.is_active:
                    logger.warning(f"Webhook {webhook.id} is inactive, reactivating")
                    self.reactivate(webhook.id)
                    report["actions"].append("reactivated")

                records = self.provider.get_webhook_submissions(
                    webhook.id, created_after=self._now() - timedelta(hours=24), page_size=50
                )
                consecutive = count_consecutive_failures(records)
                report.update(
                    webhook_id=webhook.id,
                    consecutive_failures=consecutive,
                    submissions=len(records),
                )

                if consecutive >= self.reactivation_threshold:
                    logger.error(
                        f"Webhook {webhook.id} has {consecutive} consecutive failures; "
                        f"the provider deactivates it at 5"
                    )
                    self.alerts.send_consecutive_failure_alert(webhook.id, consecutive, "high")
                    report["actions"].append(self._recover(webhook.id, consecutive))
                elif consecutive >= self.warning_threshold:
                    logger.warning(f"Webhook {webhook.id} has {consecutive} consecutive failures")
                    self.alerts.send_consecutive_failure_alert(webhook.id, consecutive, "low")

                self.last_health_check = self._now()
                report["healthy"] = consecutive < self.warning_threshold
            except ProviderError as e:
                logger.error(f"Webhook health check failed: {e}")
                report.update(healthy=False, error=e.message)
            return report

    def monitor_delivery_bursts(self) -> Dict[str, Any]:
        with self._lock:
            if not self.subscription_id:
                return {"checked": False, "reason": "not_registered"}

            webhook_id = self.subscription_id
            try:
                records = self.provider.get_webhook_submissions(
                    webhook_id, created_after=self._now() - timedelta(hours=1), page_size=100
                )
            except ProviderError as e:
                logger.error(f"Webhook burst check failed: {e}")
                return {"checked": False, "error": e.message}

            failures = [r for r in records if not r.is_success]
            report: Dict[str, Any] = {
                "checked": True,
                "webhook_id": webhook_id,
                "total": len(records),
                "failed": len(failures),
                "actions": [],
            }
            if len(failures) < self.burst_threshold:
                return report

            failure_rate = len(failures) / len(records) * 100
            codes = dict(Counter(_code_key(r) for r in failures))
            last_failure = record_as_dict(_newest_first(failures)[0])
            logger.warning(
                f"Webhook {webhook_id}: {len(failures)} failed deliveries in the last hour "
                f"({failure_rate:.1f}%), codes {codes}"
            )

            self.alerts.send_failure_alert(webhook_id, len(failures), failure_rate, codes, last_failure)
            report["failure_rate"] = round(failure_rate, 2)
            report["response_codes"] = codes
            report["actions"].append(self._recover(webhook_id, len(failures)))
            return report

    # -------------------------------------------------------------------------
    # Operator views
    # -------------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        if not self.subscription_id:
            return {"registered": False, "webhook_id": None, "status": "not_registered"}

        webhook = self.provider.get_webhook(self.subscription_id)
        records = self.provider.get_webhook_submissions(
            webhook.id, created_after=self._now() - timedelta(hours=24), page_size=100
        )
        return {
            "registered": True,
            "webhook_id": webhook.id,
            "url": webhook.url,
            "topics": webhook.topics,
            "is_active": webhook.is_active,
            "last_health_check": self.last_health_check.isoformat() if self.last_health_check else None,
            "stats": submission_stats(records),
        }

    def get_submissions(self, hours: int = 24, page_size: int = 50) -> List[Dict[str, Any]]:
        if not self.subscription_id:
            raise WebhookNotRegisteredError()
        records = self.provider.get_webhook_submissions(
            self.subscription_id,
            created_after=self._now() - timedelta(hours=hours),
            page_size=page_size,
        )
        return [record_as_dict(r) for r in _newest_first(records)]

    def list_webhooks(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": s.id,
                "url": s.url,
                "topics": s.topics,
                "is_active": s.is_active,
                "is_ours": s.url == self.url,
            }
            for s in self.provider.list_webhooks()
        ]

    def test_webhook(self, topic: str = "PRINT_JOB_STATUS_CHANGED") -> Dict[str, Any]:
        if not self.subscription_id:
            raise WebhookNotRegisteredError()
        if topic not in self.topics:
            raise InvalidWebhookRequestError(
                f"Invalid topic. Valid topics are: {', '.join(self.topics)}", {"topic": topic}
            )
        logger.info(f"Testing webhook {self.subscription_id} with topic {topic}")
        result = self.provider.test_webhook(self.subscription_id, topic)
        return {"success": True, "webhook_id": self.subscription_id, "topic": topic, "result": result}

    def get_config(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "topics": self.topics,
            "webhook_id": self.subscription_id,
            "signature_header": SIGNATURE_HEADER,
            "has_secret": bool(settings.provider_webhook_secret),
            "registration_attempts": self.registration_attempts,
            "registration_retry_delay_seconds": self.registration_retry_delay,
            "warning_threshold": self.warning_threshold,
            "reactivation_threshold": self.reactivation_threshold,
            "burst_threshold": self.burst_threshold,
            "health_check_interval_seconds": settings.webhook_health_check_interval_seconds,
            "burst_check_interval_seconds": settings.webhook_burst_check_interval_seconds,
        }

    def get_analytics(self, time_range: str = "24h") -> Dict[str, Any]:
        if time_range not in ANALYTICS_RANGES:
            raise InvalidWebhookRequestError(
                f"Invalid time range. Use one of: {', '.join(ANALYTICS_RANGES)}",
                {"time_range": time_range},
            )
        if not self.subscription_id:
            raise WebhookNotRegisteredError()

        since = self._now() - ANALYTICS_RANGES[time_range]
        records = _newest_first(
            self.provider.get_webhook_submissions(self.subscription_id, created_after=since, page_size=100)
        )
        failures = [r for r in records if not r.is_success]
        total = len(records)
        success_rate = (total - len(failures)) / total * 100 if total else 0

        response_codes: Dict[str, Dict[str, int]] = {}
        topics: Dict[str, Dict[str, int]] = {}
        for record in records:
            code = response_codes.setdefault(_code_key(record), {"count": 0, "successful": 0, "failed": 0})
            topic = topics.setdefault(record.topic or "unknown", {"total": 0, "successful": 0, "failed": 0})
            code["count"] += 1
            topic["total"] += 1
            outcome = "successful" if record.is_success else "failed"
            code[outcome] += 1
            topic[outcome] += 1

        longest_streak = streak = 0
        hourly: Counter = Counter()
        for record in reversed(records):
            streak = 0 if record.is_success else streak + 1
            longest_streak = max(longest_streak, streak)
            if not record.is_success and record.date_created:
                hourly[record.date_created.strftime("%Y-%m-%d %H:00")] += 1

        return {
            "time_range": time_range,
            "since": since.isoformat(),
            "summary": {
                "total": total,
                "successful": total - len(failures),
                "failed": len(failures),
                "success_rate": round(success_rate, 2),
                "uptime_percentage": round(success_rate, 2),
                "average_attempts": round(sum(r.attempts for r in records) / total, 2) if total else 0,
            },
            "response_codes": response_codes,
            "topics": topics,
            "failure_patterns": {
                "consecutive_failures": count_consecutive_failures(records),
                "longest_failure_streak": longest_streak,
                "failures_by_hour": dict(hourly),
            },
            "recent_failures": [record_as_dict(r) for r in failures[:10]],
        }

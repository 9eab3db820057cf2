"""
Operator alerts for the provider webhook subscription.

Alerts are rate limited per (alert_type, subject): once an alert went out,
the same pair is suppressed until the cooldown has elapsed. Recovery and
registration notices are informational and bypass the cooldown.

Two background timers share one AlertService, so the check-and-record step
runs under a lock.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from storyprint.config import settings
from storyprint.services.email_service import send_email
from storyprint.utils.template import render_template
from storyprint.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

# dispatched alerts kept in memory, oldest dropped first
RECENT_ALERTS = 100

LEVEL_LOGGING = {
    "critical": logging.CRITICAL,
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.WARNING,
    "info": logging.INFO,
}


def determine_alert_level(failure_count: int, failure_rate: float) -> str:
    if failure_rate >= 90 or failure_count >= 10:
        return "critical"
    if failure_rate >= 70 or failure_count >= 7:
        return "high"
    if failure_rate >= 50 or failure_count >= 5:
        return "medium"
    return "low"


@dataclass
class Alert:
    alert_type: str
    subject: str
    level: str
    title: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class AlertService:
    def __init__(
        self,
        cooldown_seconds: Optional[float] = None,
        recipient: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        send: Callable[..., bool] = send_email,
    ):
        self.cooldown_seconds = (
            cooldown_seconds if cooldown_seconds is not None else settings.alert_cooldown_seconds
        )
        self.recipient = recipient if recipient is not None else settings.alert_email
        self._clock = clock
        self._send = send
        self._lock = threading.Lock()
        self._last_sent: Dict[Tuple[str, str], float] = {}
        self.sent: Deque[Alert] = deque(maxlen=RECENT_ALERTS)

    def should_send(self, alert_type: str, subject: str) -> bool:
        with self._lock:
            return self._is_cool(alert_type, subject)

    def _is_cool(self, alert_type: str, subject: str) -> bool:
        last = self._last_sent.get((alert_type, subject))
        return last is None or self._clock() - last >= self.cooldown_seconds

    def dispatch(self, alert: Alert, rate_limited: bool = True) -> bool:
        """Deliver an alert. Returns False when it was suppressed by the cooldown."""
        if rate_limited:
            with self._lock:
                if not self._is_cool(alert.alert_type, alert.subject):
                    logger.debug(
                        f"Skipping {alert.alert_type} alert for {alert.subject} due to cooldown"
                    )
                    return False
                self._last_sent[(alert.alert_type, alert.subject)] = self._clock()

        logger.log(
            LEVEL_LOGGING.get(alert.level, logging.WARNING),
            f"WEBHOOK ALERT [{alert.level.upper()}] {alert.title}: {alert.message} {alert.details}",
        )
        self.sent.append(alert)

        if self.recipient:
            html = render_template(
                "admin_emails/webhook_alert.html",
                level=alert.level,
                title=alert.title,
                message=alert.message,
                details=alert.details,
                timestamp=utcnow().isoformat(),
            )
            self._send(
                to=self.recipient,
                subject=f"[{alert.level.upper()}] {settings.STORE_NAME} webhook alert: {alert.title}",
                html=html,
            )
        return True

    def reset(self):
        with self._lock:
            self._last_sent.clear()
        self.sent.clear()

    # -------------------------------------------------------------------------
    # Alert kinds
    # -------------------------------------------------------------------------

    def send_failure_alert(
        self,
        webhook_id: str,
        failure_count: int,
        failure_rate: float,
        response_codes: Optional[Dict[str, int]] = None,
        last_failure: Optional[Dict[str, Any]] = None,
    ) -> bool:
        level = determine_alert_level(failure_count, failure_rate)
        return self.dispatch(
            Alert(
                alert_type="failure",
                subject=webhook_id,
                level=level,
                title="Webhook delivery failures",
                message=f"{failure_count} failed deliveries ({failure_rate:.1f}% failure rate)",
                details={
                    "webhook_id": webhook_id,
                    "failure_count": failure_count,
                    "failure_rate": round(failure_rate, 2),
                    "response_codes": response_codes or {},
                    "last_failure": last_failure or {},
                },
            )
        )

    def send_consecutive_failure_alert(
        self, webhook_id: str, consecutive_failures: int, level: str
    ) -> bool:
        return self.dispatch(
            Alert(
                alert_type=f"consecutive_failures_{level}",
                subject=webhook_id,
                level=level,
                title="Consecutive webhook failures",
                message=f"{consecutive_failures} consecutive failed deliveries",
                details={"webhook_id": webhook_id, "consecutive_failures": consecutive_failures},
            )
        )

    def send_recovery_alert(
        self, webhook_id: str, recovery_method: str, previous_failures: int
    ) -> bool:
        return self.dispatch(
            Alert(
                alert_type="recovery",
                subject=webhook_id,
                level="info",
                title="Webhook restored",
                message=f"Webhook recovered via {recovery_method}",
                details={
                    "webhook_id": webhook_id,
                    "recovery_method": recovery_method,
                    "previous_failures": previous_failures,
                },
            ),
            rate_limited=False,
        )

    def send_registration_alert(self, webhook_id: str, url: str, topics: List[str]) -> bool:
        return self.dispatch(
            Alert(
                alert_type="registration",
                subject=webhook_id,
                level="info",
                title="Webhook re-registered",
                message=f"Webhook {webhook_id} was registered again for {url}",
                details={"webhook_id": webhook_id, "url": url, "topics": list(topics)},
            ),
            rate_limited=False,
        )

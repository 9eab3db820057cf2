import logging

from storyprint.config import settings
from storyprint.notifications.channels import Channel
from storyprint.notifications.email_handlers import send_admin_email, send_user_email
from storyprint.notifications.events import PrintEvent
from storyprint.notifications.rules import EVENT_COPY, NOTIFICATION_RULES

logger = logging.getLogger(__name__)


def dispatch_print_event(
    *,
    event: PrintEvent,
    order,
    user,
    book_title: str = "",
    extra: dict | None = None,
    notify_user: bool = True,
    notify_admin: bool = True,
):
    """
    Central notification dispatcher for print order transitions.

    Handles:
    - user email
    - admin email

    Runs after the state change has been committed; a failed email is
    logged and never propagates back into the order flow.
    """

    rules = NOTIFICATION_RULES.get(event, {})
    extra = extra or {}
    subject, headline, message = EVENT_COPY[event]

    context = {
        "order": order,
        "book_title": book_title,
        "headline": headline,
        "message": extra.pop("message", message),
        "first_name": getattr(user, "first_name", None),
        "user_email": getattr(user, "email", None),
        "tracking": order.tracking_info,
        "web_url": settings.web_url,
        "store_name": settings.STORE_NAME,
        **extra,
    }

    # -------------------------
    # USER EMAIL
    # -------------------------
    if notify_user and rules.get(Channel.EMAIL_USER) and user:
        try:
            send_user_email(
                template="user_emails/print_order_update.html",
                subject=subject,
                user=user,
                **context,
            )
        except Exception:
            logger.exception(f"User email for {event.value} on order {order.id} failed")

    # -------------------------
    # ADMIN EMAIL
    # -------------------------
    if notify_admin and rules.get(Channel.EMAIL_ADMIN):
        try:
            send_admin_email(
                template="admin_emails/print_order_update.html",
                subject=f"[{settings.STORE_NAME}] {headline} #{order.id}",
                **context,
            )
        except Exception:
            logger.exception(f"Admin email for {event.value} on order {order.id} failed")

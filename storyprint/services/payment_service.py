"""
Razorpay checkouts for print orders and credit packs.

What a checkout is for travels in the gateway order's `notes`:

    type=print            user_id, book_id, quantity, shipping_level,
                          shipping_address (JSON), total_cost_credits,
                          total_cost, currency (+ internal cost snapshot)
    type=credit_purchase  user_id, credit_amount

Payment callbacks (`payment.captured`, `order.paid`) are dispatched on that
type. Unknown or missing types are logged and ignored. Both paths are
idempotent by gateway payment id, so redelivered or doubled callbacks are
harmless.
"""

import json
import logging
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, Optional

import razorpay
import requests
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from storyprint.config import settings
from storyprint.constants.order_status import CheckoutType
from storyprint.exceptions import (
    InvalidOrderRequestError,
    MalformedWebhookError,
    PaymentGatewayError,
    WebhookSignatureError,
)
from storyprint.models.user import User
from storyprint.services.credit_service import CreditService, credit_service
from storyprint.services.print_order_service import PrintOrderService, serialize_order

logger = logging.getLogger(__name__)

HANDLED_EVENTS = {"payment.captured", "order.paid"}
GATEWAY_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.ServerError,
    razorpay.errors.GatewayError,
    requests.RequestException,
)
MIN_CREDIT_PURCHASE = 100


def _minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value(rounding=ROUND_CEILING))


class PaymentService:
    def __init__(
        self,
        print_orders: PrintOrderService,
        client: Optional[razorpay.Client] = None,
        credits: CreditService = credit_service,
        webhook_secret: Optional[str] = None,
    ):
        self.print_orders = print_orders
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )
        self.credits = credits
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
        )

    def _create_gateway_order(self, amount: int, currency: str, receipt: str, notes: Dict[str, Any]) -> dict:
        try:
            return self.client.order.create({
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes,
            })
        except GATEWAY_ERRORS as e:
            logger.error(f"Razorpay order creation failed for {receipt}: {e}")
            raise PaymentGatewayError("Could not start checkout", {"receipt": receipt}) from e

    # -------------------------------------------------------------------------
    # Checkout
    # -------------------------------------------------------------------------

    def create_print_checkout(
        self,
        session: Session,
        user: User,
        book_id: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
    ) -> dict:
        book, quote = self.print_orders.quote_for_book(
            session, user.id, book_id, quantity, shipping_address, shipping_level
        )

        notes = {
            "type": CheckoutType.PRINT.value,
            "user_id": user.id,
            "book_id": book.id,
            "quantity": quantity,
            "shipping_level": shipping_level,
            "shipping_address": json.dumps(shipping_address, separators=(",", ":")),
            "total_cost_credits": quote.total_cost_credits,
            "total_cost": str(quote.total_cost),
            "currency": quote.currency,
            "provider_cost": str(quote.provider_cost),
            "print_markup_percentage": str(quote.print_markup_percentage),
            "shipping_markup_percentage": str(quote.shipping_markup_percentage),
        }
        amount = _minor_units(quote.total_cost)
        gateway_order = self._create_gateway_order(
            amount, quote.currency, f"print_{user.id}_{book.id}", notes
        )

        logger.info(
            f"Print checkout {gateway_order['id']} started by user {user.id} "
            f"for book {book.id} ({quote.total_cost_credits} credits)"
        )
        return {
            "razorpay_order_id": gateway_order["id"],
            "razorpay_key": settings.RAZORPAY_KEY_ID,
            "amount": amount,
            "currency": quote.currency,
            "quote": quote.public(),
            "user_email": user.email,
            "user_name": f"{user.first_name} {user.last_name}".strip(),
        }

    def create_credit_checkout(self, user: User, credit_amount: int) -> dict:
        if credit_amount < MIN_CREDIT_PURCHASE:
            raise InvalidOrderRequestError(
                f"Minimum credit purchase is {MIN_CREDIT_PURCHASE} credits",
                {"credit_amount": credit_amount},
            )

        price = Decimal(credit_amount) * Decimal(settings.credit_value)
        amount = _minor_units(price)
        gateway_order = self._create_gateway_order(
            amount,
            "USD",
            f"credits_{user.id}_{credit_amount}",
            {
                "type": CheckoutType.CREDIT_PURCHASE.value,
                "user_id": user.id,
                "credit_amount": credit_amount,
            },
        )

        logger.info(f"Credit checkout {gateway_order['id']} started by user {user.id} for {credit_amount} credits")
        return {
            "razorpay_order_id": gateway_order["id"],
            "razorpay_key": settings.RAZORPAY_KEY_ID,
            "amount": amount,
            "currency": "USD",
            "credit_amount": credit_amount,
            "user_email": user.email,
            "user_name": f"{user.first_name} {user.last_name}".strip(),
        }

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def verify_webhook_signature(self, body: bytes, signature: Optional[str]) -> None:
        if not self.webhook_secret:
            if settings.ENV == "production":
                raise WebhookSignatureError("Payment webhook secret is not configured")
            logger.warning("RAZORPAY_WEBHOOK_SECRET not set, accepting unsigned payment webhook")
            return

        if not signature:
            raise WebhookSignatureError("Missing payment webhook signature")

        try:
            self.client.utility.verify_webhook_signature(
                body.decode("utf-8"), signature, self.webhook_secret
            )
        except razorpay.errors.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid payment webhook signature") from e

    def _payment_and_notes(self, event: Dict[str, Any]):
        payload = event.get("payload") or {}
        payment = ((payload.get("payment") or {}).get("entity")) or {}
        order = ((payload.get("order") or {}).get("entity")) or {}

        payment_id = payment.get("id")
        if not payment_id:
            raise MalformedWebhookError("Payment event carries no payment id", {"event": event.get("event")})

        notes = order.get("notes") or payment.get("notes") or {}
        if not notes.get("type") and payment.get("order_id"):
            try:
                notes = self.client.order.fetch(payment["order_id"]).get("notes") or {}
            except GATEWAY_ERRORS as e:
                raise PaymentGatewayError(
                    "Could not load checkout metadata", {"order_id": payment["order_id"]}
                ) from e
        return payment_id, notes

    def handle_payment_event(self, session: Session, event: Dict[str, Any]) -> dict:
        event_type = event.get("event")
        if event_type not in HANDLED_EVENTS:
            logger.info(f"Ignoring payment event {event_type}")
            return {"handled": False, "event": event_type}

        payment_id, notes = self._payment_and_notes(event)
        checkout_type = notes.get("type")

        if checkout_type == CheckoutType.PRINT.value:
            order = self.print_orders.create_order_from_checkout(session, notes, payment_id)
            return {
                "handled": True,
                "event": event_type,
                "type": checkout_type,
                "order": serialize_order(order),
            }

        if checkout_type == CheckoutType.CREDIT_PURCHASE.value:
            balance = self._fulfill_credit_purchase(session, notes, payment_id)
            return {
                "handled": True,
                "event": event_type,
                "type": checkout_type,
                "credits_balance": balance,
            }

        if checkout_type == CheckoutType.DIGITAL_DOWNLOAD.value:
            logger.info(f"Payment {payment_id} is a digital download; nothing to fulfil here")
        else:
            logger.warning(f"Payment {payment_id} has unknown checkout type {checkout_type!r}; ignoring")
        return {"handled": False, "event": event_type, "type": checkout_type}

    def _fulfill_credit_purchase(self, session: Session, notes: Dict[str, Any], payment_id: str) -> int:
        try:
            user_id = int(notes["user_id"])
            credit_amount = int(notes["credit_amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedWebhookError("Credit checkout metadata is incomplete", {"error": str(e)}) from e

        existing = self.credits.find_purchase(session, payment_id)
        if existing is not None:
            logger.info(f"Payment {payment_id} already credited ({existing.id})")
            return self.credits.get_balance(session, user_id)

        try:
            self.credits.add_credits(
                session,
                user_id,
                credit_amount,
                f"Purchased {credit_amount} credits",
                payment_reference=payment_id,
            )
        except IntegrityError:
            # the same payment was credited by a concurrent delivery
            logger.info(f"Payment {payment_id} credited concurrently")
        return self.credits.get_balance(session, user_id)

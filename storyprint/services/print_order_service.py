"""
Print order lifecycle.

    created -> preparing -> submitted -> {unpaid, payment_in_progress,
    production_delayed, production_ready, in_production} -> shipped

`rejected` and `canceled` can end any order that has not shipped;
`failed_submit` ends an order whose print files or job submission failed.
Terminal orders never change status again, in-progress states only move
forward, and every path into rejected/canceled/failed_submit refunds the
order's credits at most once.

Every state change is committed together with its timeline event and any
ledger rows; notifications go out after the commit.
"""

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from storyprint.config import settings
from storyprint.constants.order_status import (
    PROGRESS_RANK,
    CreditTransactionType,
    PrintOrderStatus,
    map_provider_status,
)
from storyprint.exceptions import (
    ArtifactGenerationError,
    BookNotFoundError,
    BookNotPrintableError,
    InsufficientCreditsError,
    MalformedWebhookError,
    OrderNotCancelableError,
    OrderStateConflictError,
    PrintOrderNotFoundError,
    ProviderError,
    ProviderUnavailableError,
    UnknownPrintJobError,
)
from storyprint.models.book import Book
from storyprint.models.credit_transaction import CreditTransaction
from storyprint.models.print_order import PrintOrder
from storyprint.models.user import User
from storyprint.notifications import PrintEvent, dispatch_print_event
from storyprint.schemas.print_order_schemas import PrintOrderRead
from storyprint.services.artifact_service import ArtifactService
from storyprint.services.cost_service import CostQuote, CostService
from storyprint.services.credit_service import CreditService, credit_service
from storyprint.services.order_event_service import log_print_order_event
from storyprint.services.provider_client import PrintJob, PrintProviderClient, TrackingInfo, parse_tracking
from storyprint.utils.pagination import paginate
from storyprint.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

FOUR_PLACES = Decimal("0.0001")


class StatusEventOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    HELD = "held"


@dataclass(frozen=True)
class StatusEvent:
    provider_job_id: str
    status_name: str
    status_message: Optional[str] = None
    tracking: Optional[TrackingInfo] = None

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> "StatusEvent":
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise MalformedWebhookError("Webhook payload has no data object")

        job_id = data.get("id")
        status = data.get("status")
        if job_id in (None, "") or not isinstance(status, dict) or not status.get("name"):
            raise MalformedWebhookError(
                "Webhook payload is missing the print job id or status",
                {"topic": payload.get("topic")},
            )

        try:
            tracking = parse_tracking(data.get("line_item_statuses"))
        except ValueError as e:
            raise MalformedWebhookError(
                "Webhook payload has malformed line item statuses",
                {"topic": payload.get("topic"), "error": str(e)},
            ) from e

        return cls(
            provider_job_id=str(job_id),
            status_name=str(status["name"]),
            status_message=status.get("message"),
            tracking=tracking,
        )

    @classmethod
    def from_print_job(cls, job: PrintJob) -> "StatusEvent":
        return cls(
            provider_job_id=job.id,
            status_name=job.status_name,
            status_message=job.status_message,
            tracking=job.tracking,
        )


NOTIFY_ON = {
    PrintOrderStatus.IN_PRODUCTION: PrintEvent.IN_PRODUCTION,
    PrintOrderStatus.SHIPPED: PrintEvent.SHIPPED,
    PrintOrderStatus.REJECTED: PrintEvent.REJECTED,
    PrintOrderStatus.CANCELED: PrintEvent.CANCELED,
}


def serialize_order(order: PrintOrder) -> dict:
    return PrintOrderRead.model_validate(order).model_dump(mode="json")


def _parse_checkout_notes(notes: Dict[str, Any]) -> Dict[str, Any]:
    try:
        address = notes["shipping_address"]
        if isinstance(address, str):
            address = json.loads(address)
        return {
            "user_id": int(notes["user_id"]),
            "book_id": int(notes["book_id"]),
            "quantity": int(notes["quantity"]),
            "shipping_level": str(notes["shipping_level"]),
            "shipping_address": address,
            "total_cost_credits": int(notes["total_cost_credits"]),
            "total_cost": Decimal(str(notes["total_cost"])),
            "currency": str(notes.get("currency") or "USD"),
            "provider_cost": Decimal(str(notes.get("provider_cost") or "0")),
            "print_markup_percentage": Decimal(
                str(notes.get("print_markup_percentage") or settings.print_markup_percentage)
            ),
            "shipping_markup_percentage": Decimal(
                str(notes.get("shipping_markup_percentage") or settings.shipping_markup_percentage)
            ),
        }
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise MalformedWebhookError(
            "Print checkout metadata is incomplete", {"error": str(e)}
        ) from e


class PrintOrderService:
    def __init__(
        self,
        provider: PrintProviderClient,
        cost_service: CostService,
        artifacts: ArtifactService,
        credits: CreditService = credit_service,
        notify: Callable[..., Any] = dispatch_print_event,
    ):
        self.provider = provider
        self.cost_service = cost_service
        self.artifacts = artifacts
        self.credits = credits
        self.notify = notify

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_order(self, session: Session, order_id: int, user_id: Optional[int] = None) -> PrintOrder:
        order = session.get(PrintOrder, order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise PrintOrderNotFoundError(order_id)
        return order

    def list_orders(
        self,
        session: Session,
        user_id: int,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> dict:
        query = select(PrintOrder).where(PrintOrder.user_id == user_id)
        if status:
            query = query.where(PrintOrder.status == status)
        query = query.order_by(PrintOrder.created_at.desc(), PrintOrder.id.desc())
        return paginate(session=session, query=query, page=page, limit=limit, transform=serialize_order)

    def find_by_provider_job(self, session: Session, provider_job_id: str) -> Optional[PrintOrder]:
        return session.exec(
            select(PrintOrder).where(PrintOrder.provider_job_id == provider_job_id)
        ).first()

    def find_by_payment_reference(self, session: Session, payment_reference: str) -> Optional[PrintOrder]:
        return session.exec(
            select(PrintOrder).where(PrintOrder.payment_reference == payment_reference)
        ).first()

    def load_printable_book(self, session: Session, book_id: int, user_id: int) -> Book:
        book = session.get(Book, book_id)
        if book is None or book.user_id != user_id:
            raise BookNotFoundError(book_id)
        if not book.is_printable:
            raise BookNotPrintableError(book_id, book.generation_status)
        return book

    def _book_title(self, session: Session, order: PrintOrder) -> str:
        book = session.get(Book, order.book_id)
        return book.title if book else ""

    def _notify(self, session: Session, event: PrintEvent, order: PrintOrder, **extra):
        user = session.get(User, order.user_id)
        self.notify(
            event=event,
            order=order,
            user=user,
            book_title=self._book_title(session, order),
            extra=extra or None,
        )

    # -------------------------------------------------------------------------
    # Quote
    # -------------------------------------------------------------------------

    def quote_for_book(
        self,
        session: Session,
        user_id: int,
        book_id: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
    ) -> Tuple[Book, CostQuote]:
        book = self.load_printable_book(session, book_id, user_id)
        quote = self.cost_service.quote(book.page_count, quantity, shipping_address, shipping_level)
        return book, quote

    def _new_order(
        self,
        *,
        user_id: int,
        book_id: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
        total_cost_credits: int,
        total_cost: Decimal,
        currency: str,
        provider_cost: Decimal,
        print_markup_percentage: Decimal,
        shipping_markup_percentage: Decimal,
        payment_reference: Optional[str] = None,
    ) -> PrintOrder:
        return PrintOrder(
            user_id=user_id,
            book_id=book_id,
            quantity=quantity,
            shipping_address=shipping_address,
            shipping_level=shipping_level,
            total_cost_credits=total_cost_credits,
            total_cost=total_cost.quantize(FOUR_PLACES, rounding=ROUND_CEILING),
            currency=currency,
            provider_cost=provider_cost.quantize(FOUR_PLACES),
            print_markup_percentage=print_markup_percentage,
            shipping_markup_percentage=shipping_markup_percentage,
            payment_reference=payment_reference,
            status=PrintOrderStatus.CREATED.value,
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_order(
        self,
        session: Session,
        user: User,
        book_id: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
        submit: bool = True,
    ) -> PrintOrder:
        """
        Spend credits on a print order.

        The quote is read-only; nothing is written and no job is created
        unless the user can pay the quoted credits.
        """
        book, quote = self.quote_for_book(
            session, user.id, book_id, quantity, shipping_address, shipping_level
        )

        if not self.credits.has_sufficient_credits(session, user.id, quote.total_cost_credits):
            raise InsufficientCreditsError(
                required=quote.total_cost_credits,
                available=self.credits.get_balance(session, user.id),
            )

        order = self._new_order(
            user_id=user.id,
            book_id=book.id,
            quantity=quantity,
            shipping_address=shipping_address,
            shipping_level=shipping_level,
            total_cost_credits=quote.total_cost_credits,
            total_cost=quote.total_cost,
            currency=quote.currency,
            provider_cost=quote.provider_cost,
            print_markup_percentage=quote.print_markup_percentage,
            shipping_markup_percentage=quote.shipping_markup_percentage,
        )

        try:
            session.add(order)
            session.flush()

            self.credits.deduct_credits(
                session,
                user.id,
                quote.total_cost_credits,
                f'Print order for "{book.title}" - {quantity} copies',
                print_order_id=order.id,
                book_id=book.id,
                commit=False,
            )
            log_print_order_event(
                session,
                order.id,
                "order_created",
                "Print order created",
                created_by="user",
                meta={"credits": quote.total_cost_credits, "external_id": order.external_id},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(
            f"Print order {order.id} ({order.external_id}) created for user {user.id}: "
            f"{quantity} x book {book.id}, {quote.total_cost_credits} credits"
        )
        self._notify(session, PrintEvent.ORDER_PLACED, order)

        if submit:
            self.submit_order(session, order)
        return order

    def create_order_from_checkout(
        self,
        session: Session,
        notes: Dict[str, Any],
        payment_reference: str,
        submit: bool = True,
    ) -> PrintOrder:
        """
        Turn a captured print checkout into an order.

        Redelivered payment callbacks return the order created the first
        time. The paid credits are added and the quoted credits from the
        checkout metadata debited in the same transaction as the insert.
        """
        existing = self.find_by_payment_reference(session, payment_reference)
        if existing is not None:
            logger.info(
                f"Payment {payment_reference} already produced print order {existing.id}"
            )
            return existing

        data = _parse_checkout_notes(notes)
        order = self._new_order(payment_reference=payment_reference, **data)

        try:
            self.credits.add_credits(
                session,
                data["user_id"],
                data["total_cost_credits"],
                f"Credits purchased for print order (payment {payment_reference})",
                payment_reference=payment_reference,
                commit=False,
            )
            session.add(order)
            session.flush()

            self.credits.deduct_credits(
                session,
                data["user_id"],
                data["total_cost_credits"],
                f"Print order {order.external_id} - {data['quantity']} copies",
                print_order_id=order.id,
                book_id=data["book_id"],
                commit=False,
            )
            log_print_order_event(
                session,
                order.id,
                "order_created",
                "Print order created from checkout",
                created_by="payment",
                meta={"payment_reference": payment_reference},
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            existing = self.find_by_payment_reference(session, payment_reference)
            if existing is None:
                raise
            return existing
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(f"Print order {order.id} created from payment {payment_reference}")
        self._notify(session, PrintEvent.ORDER_PLACED, order)

        if submit:
            self.submit_order(session, order)
        return order

    # -------------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------------

    def submit_order(self, session: Session, order: PrintOrder) -> PrintOrder:
        if order.status != PrintOrderStatus.CREATED.value:
            logger.info(f"Print order {order.id} is {order.status}, not submitting again")
            return order

        order.status = PrintOrderStatus.PREPARING.value
        order.submission_attempts += 1
        order.touch()
        log_print_order_event(session, order.id, "preparing", "Preparing print files")
        session.add(order)
        session.commit()
        session.refresh(order)

        try:
            artifacts = self.artifacts.generate(order.book_id)
            order.cover_pdf_url = artifacts.cover_url
            order.interior_pdf_url = artifacts.interior_url
            session.add(order)
            session.commit()
            session.refresh(order)

            job = self._create_job(session, order)
        except (ArtifactGenerationError, ProviderError) as e:
            return self._fail_submission(session, order, e)
        except Exception as e:
            # unexpected failure: still release the credits before surfacing it
            self._fail_submission(session, order, e)
            raise

        # A cancel may have landed while the job was being created
        session.refresh(order)
        if order.status == PrintOrderStatus.CANCELED.value:
            logger.warning(
                f"Print order {order.id} was canceled during submission, canceling job {job.id}"
            )
            self._cancel_remote(job.id)
            order.provider_job_id = job.id
            order.provider_status = job.status_name
            order.touch()
            session.add(order)
            session.commit()
            return order

        order.status = PrintOrderStatus.SUBMITTED.value
        order.provider_job_id = job.id
        order.provider_status = job.status_name
        order.submitted_at = utcnow()
        order.error_message = None
        order.touch()
        log_print_order_event(
            session,
            order.id,
            "submitted",
            "Submitted to print provider",
            meta={"provider_job_id": job.id, "provider_status": job.status_name},
        )
        session.add(order)
        session.commit()
        session.refresh(order)

        logger.info(f"Print order {order.id} submitted as provider job {job.id}")
        self._notify(session, PrintEvent.SUBMITTED, order)
        return order

    def _create_job(self, session: Session, order: PrintOrder) -> PrintJob:
        user = session.get(User, order.user_id)
        kwargs = dict(
            external_id=order.external_id,
            title=self._book_title(session, order),
            quantity=order.quantity,
            cover_url=order.cover_pdf_url,
            interior_url=order.interior_pdf_url,
            shipping_address=order.shipping_address,
            shipping_level=order.shipping_level,
            contact_email=(order.shipping_address or {}).get("email") or (user.email if user else None),
        )
        try:
            return self.provider.create_print_job(**kwargs)
        except ProviderUnavailableError:
            # The job may exist even though every response was lost
            existing = self.provider.find_print_job_by_external_id(order.external_id)
            if existing is None:
                raise
            logger.info(f"Recovered provider job {existing.id} for order {order.external_id}")
            return existing

    def _fail_submission(self, session: Session, order: PrintOrder, error: Exception) -> PrintOrder:
        logger.error(f"Print order {order.id} submission failed: {error}")
        session.rollback()
        session.refresh(order)

        if order.is_terminal:
            # canceled meanwhile; its refund already happened
            return order

        try:
            order.status = PrintOrderStatus.FAILED_SUBMIT.value
            order.error_message = getattr(error, "message", str(error))
            order.touch()
            self.refund_order(session, order, "Print submission failed", commit=False)
            log_print_order_event(
                session,
                order.id,
                "failed_submit",
                "Print submission failed",
                meta={"error": order.error_message, "error_type": type(error).__name__},
            )
            session.add(order)
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        self._notify(session, PrintEvent.SUBMISSION_FAILED, order, refunded_credits=order.total_cost_credits)
        return order

    # -------------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------------

    def refund_order(
        self, session: Session, order: PrintOrder, reason: str, commit: bool = True
    ) -> Optional[CreditTransaction]:
        """Refund the order's credits once. Later calls return the first refund."""
        existing = self.credits.find_order_transaction(
            session, order.id, CreditTransactionType.REFUND
        )
        if existing is not None:
            logger.info(f"Print order {order.external_id} already refunded ({existing.id})")
            return existing

        if order.total_cost_credits <= 0:
            return None

        try:
            return self.credits.refund_credits(
                session,
                order.user_id,
                order.total_cost_credits,
                f"Refund for print order {order.external_id} - {reason}",
                print_order_id=order.id,
                book_id=order.book_id,
                commit=commit,
            )
        except IntegrityError:
            if not commit:
                raise
            # a concurrent refund won the unique (print_order_id, type) race
            return self.credits.find_order_transaction(
                session, order.id, CreditTransactionType.REFUND
            )

    def _cancel_remote(self, provider_job_id: str) -> bool:
        try:
            self.provider.cancel_print_job(provider_job_id)
            return True
        except ProviderError as e:
            logger.warning(f"Remote cancel of provider job {provider_job_id} failed: {e}")
            return False

    # -------------------------------------------------------------------------
    # Cancel
    # -------------------------------------------------------------------------

    def cancel_order(self, session: Session, order_id: int, user_id: int) -> PrintOrder:
        order = self.get_order(session, order_id, user_id)
        if not order.can_be_canceled:
            raise OrderNotCancelableError(order.id, order.status)

        remote_canceled = None
        if order.provider_job_id:
            remote_canceled = self._cancel_remote(order.provider_job_id)

        try:
            previous = order.status
            order.status = PrintOrderStatus.CANCELED.value
            order.canceled_at = utcnow()
            order.pending_status = None
            order.touch()
            self.refund_order(session, order, "Canceled by user", commit=False)
            log_print_order_event(
                session,
                order.id,
                "canceled",
                "Canceled by user",
                created_by="user",
                meta={"from": previous, "remote_canceled": remote_canceled},
            )
            session.add(order)
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(f"Print order {order.id} canceled by user {user_id}")
        self._notify(session, PrintEvent.CANCELED, order, refunded_credits=order.total_cost_credits)
        return order

    def operator_refund(
        self, session: Session, order_id: int, reason: str
    ) -> Tuple[PrintOrder, Optional[CreditTransaction]]:
        order = self.get_order(session, order_id)
        if order.status == PrintOrderStatus.SHIPPED.value:
            raise OrderStateConflictError(
                "Shipped print orders cannot be refunded",
                {"order_id": order.id, "status": order.status},
            )

        if not order.is_terminal and order.provider_job_id:
            self._cancel_remote(order.provider_job_id)

        try:
            previous = order.status
            if not order.is_terminal:
                order.status = PrintOrderStatus.CANCELED.value
                order.canceled_at = utcnow()
                order.pending_status = None
                order.touch()
                session.add(order)
            refund = self.refund_order(session, order, reason, commit=False)
            log_print_order_event(
                session,
                order.id,
                "operator_refund",
                "Refunded by operator",
                created_by="admin",
                meta={"from": previous, "reason": reason},
            )
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        if refund is not None:
            session.refresh(refund)
        logger.info(f"Operator refunded print order {order.id}: {reason}")
        self._notify(session, PrintEvent.REFUND_PROCESSED, order, refunded_credits=order.total_cost_credits)
        return order, refund

    # -------------------------------------------------------------------------
    # Provider status
    # -------------------------------------------------------------------------

    def apply_status_event(self, session: Session, event: StatusEvent) -> StatusEventOutcome:
        order = self.find_by_provider_job(session, event.provider_job_id)
        if order is None:
            raise UnknownPrintJobError(event.provider_job_id)

        new_status = map_provider_status(event.status_name)
        if new_status is None:
            logger.warning(
                f"Ignoring unknown provider status {event.status_name!r} for order {order.id}"
            )
            return StatusEventOutcome.IGNORED

        current = PrintOrderStatus(order.status)

        if order.is_terminal:
            if new_status == current:
                return StatusEventOutcome.DUPLICATE
            logger.info(
                f"Order {order.id} is {current.value}; ignoring provider status {event.status_name}"
            )
            return StatusEventOutcome.IGNORED

        if new_status == current:
            return StatusEventOutcome.DUPLICATE

        if new_status in PROGRESS_RANK and PROGRESS_RANK[new_status] < PROGRESS_RANK[current]:
            logger.info(
                f"Stale provider status {event.status_name} for order {order.id} "
                f"(currently {current.value})"
            )
            return StatusEventOutcome.IGNORED

        if new_status == PrintOrderStatus.SHIPPED and not (event.tracking and event.tracking.is_present):
            return self._hold_shipment(session, order, event)

        try:
            order.status = new_status.value
            order.provider_status = event.status_name
            order.touch()
            meta = {"from": current.value, "to": new_status.value, "provider_status": event.status_name}

            if new_status == PrintOrderStatus.SHIPPED:
                order.tracking_info = event.tracking.as_dict()
                order.shipped_at = utcnow()
                order.pending_status = None
                meta["tracking"] = order.tracking_info
            elif new_status == PrintOrderStatus.REJECTED:
                order.error_message = event.status_message or "Order was rejected by the print provider"
                order.pending_status = None
                self.refund_order(session, order, "Rejected by print provider", commit=False)
                meta["message"] = order.error_message
            elif new_status == PrintOrderStatus.CANCELED:
                order.canceled_at = utcnow()
                order.pending_status = None
                self.refund_order(session, order, "Canceled by print provider", commit=False)

            log_print_order_event(
                session,
                order.id,
                f"status_{new_status.value}",
                f"Status changed to {new_status.value}",
                created_by="provider",
                meta=meta,
            )
            session.add(order)
            session.commit()
        except Exception:
            session.rollback()
            raise

        session.refresh(order)
        logger.info(
            f"Print order {order.id} moved {current.value} -> {new_status.value} "
            f"(provider {event.status_name})"
        )

        notice = NOTIFY_ON.get(new_status, PrintEvent.STATUS_UPDATED)
        extra = {}
        if new_status in (PrintOrderStatus.REJECTED, PrintOrderStatus.CANCELED):
            extra["refunded_credits"] = order.total_cost_credits
        self._notify(session, notice, order, **extra)
        return StatusEventOutcome.APPLIED

    def _hold_shipment(self, session: Session, order: PrintOrder, event: StatusEvent) -> StatusEventOutcome:
        if order.pending_status == PrintOrderStatus.SHIPPED.value:
            return StatusEventOutcome.HELD

        logger.warning(f"Order {order.id} reported shipped without tracking; holding transition")
        order.pending_status = PrintOrderStatus.SHIPPED.value
        order.provider_status = event.status_name
        order.touch()
        log_print_order_event(
            session,
            order.id,
            "shipment_held",
            "Shipped reported without tracking",
            created_by="provider",
            meta={"provider_status": event.status_name},
        )
        session.add(order)
        session.commit()
        return StatusEventOutcome.HELD

    def sync_status(
        self, session: Session, order_id: int, user_id: Optional[int] = None
    ) -> Tuple[PrintOrder, StatusEventOutcome]:
        """Pull the job from the provider and reconcile it like a webhook."""
        order = self.get_order(session, order_id, user_id)
        if not order.provider_job_id:
            return order, StatusEventOutcome.IGNORED

        job = self.provider.get_print_job(order.provider_job_id)
        outcome = self.apply_status_event(session, StatusEvent.from_print_job(job))
        session.refresh(order)
        return order, outcome

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session

from storyprint.database import get_session
from storyprint.dependencies.services import (
    get_cost_service,
    get_payment_service,
    get_print_order_service,
)
from storyprint.models.user import User
from storyprint.schemas.print_order_schemas import (
    CostRequest,
    CreatePrintOrderRequest,
    ShippingOptionsRequest,
)
from storyprint.services.cost_service import CostService
from storyprint.services.order_event_service import get_order_timeline
from storyprint.services.payment_service import PaymentService
from storyprint.services.print_order_service import PrintOrderService, serialize_order
from storyprint.utils.token import get_current_user

router = APIRouter()


@router.post("/calculate-cost")
def calculate_cost(
    payload: CostRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    _, quote = print_orders.quote_for_book(
        session,
        current_user.id,
        payload.book_id,
        payload.quantity,
        payload.shipping_address.model_dump(),
        payload.shipping_level,
    )
    return {"success": True, "data": quote.public()}


@router.post("/shipping-options")
def shipping_options(
    payload: ShippingOptionsRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
    cost_service: CostService = Depends(get_cost_service),
):
    book = print_orders.load_printable_book(session, payload.book_id, current_user.id)
    options = cost_service.shipping_options(
        book.page_count, payload.quantity, payload.shipping_address.model_dump()
    )
    return {
        "success": True,
        "data": {
            "country_code": payload.shipping_address.country_code,
            "options": options,
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_print_order(
    payload: CreatePrintOrderRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    order = print_orders.create_order(
        session,
        current_user,
        payload.book_id,
        payload.quantity,
        payload.shipping_address.model_dump(),
        payload.shipping_level,
    )
    return {
        "success": order.status != "failed_submit",
        "message": order.error_message or "Print order created",
        "data": serialize_order(order),
    }


@router.post("/checkout")
def create_print_checkout(
    payload: CreatePrintOrderRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    checkout = payments.create_print_checkout(
        session,
        current_user,
        payload.book_id,
        payload.quantity,
        payload.shipping_address.model_dump(),
        payload.shipping_level,
    )
    return {"success": True, "data": checkout}


@router.get("")
def list_print_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    return {
        "success": True,
        "data": print_orders.list_orders(session, current_user.id, page, limit, status),
    }


@router.get("/{order_id}")
def get_print_order(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    order = print_orders.get_order(session, order_id, current_user.id)
    timeline = [
        {
            "event_type": event.event_type,
            "label": event.label,
            "created_at": event.created_at.isoformat(),
            "created_by": event.created_by,
        }
        for event in get_order_timeline(session, order.id)
    ]
    return {"success": True, "data": {**serialize_order(order), "timeline": timeline}}


@router.get("/{order_id}/status")
def sync_print_order_status(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    order, outcome = print_orders.sync_status(session, order_id, current_user.id)
    return {
        "success": True,
        "data": {
            "order_id": order.id,
            "status": order.status,
            "pending_status": order.pending_status,
            "provider_status": order.provider_status,
            "tracking_info": order.tracking_info,
            "sync": outcome.value,
        },
    }


@router.delete("/{order_id}")
def cancel_print_order(
    order_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    order = print_orders.cancel_order(session, order_id, current_user.id)
    return {
        "success": True,
        "message": "Print order canceled and credits refunded",
        "data": {
            "order_id": order.id,
            "status": order.status,
            "credits_refunded": order.total_cost_credits,
        },
    }

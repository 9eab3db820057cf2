from fastapi import APIRouter, Depends
from sqlmodel import Session

from storyprint.database import get_session
from storyprint.dependencies.services import get_print_order_service
from storyprint.models.user import User
from storyprint.schemas.print_order_schemas import OperatorRefundRequest
from storyprint.services.print_order_service import PrintOrderService, serialize_order
from storyprint.utils.token import require_admin

router = APIRouter()


@router.post("/{order_id}/refund")
def refund_print_order(
    order_id: int,
    payload: OperatorRefundRequest,
    session: Session = Depends(get_session),
    admin: User = Depends(require_admin),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    order, refund = print_orders.operator_refund(session, order_id, payload.reason)
    return {
        "success": True,
        "message": "Print order refunded",
        "data": {
            "order": serialize_order(order),
            "refund_transaction_id": refund.id if refund else None,
            "credits_refunded": refund.amount if refund else 0,
        },
    }

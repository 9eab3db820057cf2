from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from storyprint.config import settings
from storyprint.database import get_session
from storyprint.dependencies.services import get_payment_service
from storyprint.models.user import User
from storyprint.schemas.credit_schemas import CreditCheckoutRequest
from storyprint.services.credit_service import credit_service
from storyprint.services.payment_service import PaymentService
from storyprint.utils.token import get_current_user

router = APIRouter()


def _transaction_dict(txn) -> dict:
    return {
        "id": txn.id,
        "type": txn.type,
        "amount": txn.amount,
        "description": txn.description,
        "print_order_id": txn.print_order_id,
        "book_id": txn.book_id,
        "created_at": txn.created_at.isoformat(),
    }


@router.get("/balance")
def get_balance(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return {
        "success": True,
        "data": {
            "credits_balance": credit_service.get_balance(session, current_user.id),
            "credit_value": str(settings.credit_value),
        },
    }


@router.get("/history")
def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    history = credit_service.get_history(session, current_user.id, page, limit)
    history["results"] = [_transaction_dict(txn) for txn in history["results"]]
    return {"success": True, "data": history}


@router.post("/checkout")
def create_credit_checkout(
    payload: CreditCheckoutRequest,
    current_user: User = Depends(get_current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    return {"success": True, "data": payments.create_credit_checkout(current_user, payload.credit_amount)}

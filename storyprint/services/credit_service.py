import logging
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session, select

from storyprint.constants.order_status import CreditTransactionType
from storyprint.exceptions import (
    InsufficientCreditsError,
    InvalidOrderRequestError,
    UserNotFoundError,
)
from storyprint.models.credit_transaction import CreditTransaction
from storyprint.models.user import User
from storyprint.utils.pagination import paginate

logger = logging.getLogger(__name__)


def _check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidOrderRequestError(
            "Credit amount must be a positive whole number", {"amount": amount}
        )
    return amount


class CreditService:
    """
    Credit ledger. The only code allowed to change `User.credits_balance`.

    Every mutation is a balance UPDATE plus one CreditTransaction row in the
    same unit of work. With commit=True the unit is committed (or rolled back
    on failure) here; with commit=False it is only flushed so the caller can
    fold it into a larger transaction and commit once.
    """

    def _apply(
        self,
        session: Session,
        *,
        user_id: int,
        delta: int,
        txn_type: CreditTransactionType,
        description: str,
        print_order_id: Optional[int],
        book_id: Optional[int],
        payment_reference: Optional[str],
        commit: bool,
        require_balance: bool = False,
    ) -> CreditTransaction:
        try:
            statement = (
                update(User)
                .where(User.id == user_id)
                .values(credits_balance=User.credits_balance + delta)
            )
            if require_balance:
                statement = statement.where(User.credits_balance >= -delta)

            result = session.exec(statement)

            if result.rowcount == 0:
                user = session.get(User, user_id)
                if user is None:
                    raise UserNotFoundError(user_id)
                raise InsufficientCreditsError(required=-delta, available=user.credits_balance)

            transaction = CreditTransaction(
                user_id=user_id,
                type=txn_type.value,
                amount=delta,
                description=description,
                print_order_id=print_order_id,
                book_id=book_id,
                payment_reference=payment_reference,
            )
            session.add(transaction)
            session.flush()

            if commit:
                session.commit()
                session.refresh(transaction)
        except Exception:
            if commit:
                session.rollback()
            raise

        # keep any loaded User in step with the UPDATE above
        user = session.get(User, user_id)
        if user is not None:
            session.refresh(user)
            logger.info(
                f"Credit {txn_type.value} of {delta:+d} for user {user_id}. "
                f"New balance: {user.credits_balance}"
            )
        return transaction

    def add_credits(
        self,
        session: Session,
        user_id: int,
        amount: int,
        description: str,
        *,
        payment_reference: Optional[str] = None,
        commit: bool = True,
    ) -> CreditTransaction:
        amount = _check_amount(amount)
        logger.info(f"Adding {amount} credits to user {user_id}: {description}")
        return self._apply(
            session,
            user_id=user_id,
            delta=amount,
            txn_type=CreditTransactionType.PURCHASE,
            description=description,
            print_order_id=None,
            book_id=None,
            payment_reference=payment_reference,
            commit=commit,
        )

    def deduct_credits(
        self,
        session: Session,
        user_id: int,
        amount: int,
        description: str,
        *,
        print_order_id: Optional[int] = None,
        book_id: Optional[int] = None,
        commit: bool = True,
    ) -> CreditTransaction:
        amount = _check_amount(amount)
        return self._apply(
            session,
            user_id=user_id,
            delta=-amount,
            txn_type=CreditTransactionType.USAGE,
            description=description,
            print_order_id=print_order_id,
            book_id=book_id,
            payment_reference=None,
            commit=commit,
            require_balance=True,
        )

    def refund_credits(
        self,
        session: Session,
        user_id: int,
        amount: int,
        description: str,
        *,
        print_order_id: Optional[int] = None,
        book_id: Optional[int] = None,
        commit: bool = True,
    ) -> CreditTransaction:
        amount = _check_amount(amount)
        return self._apply(
            session,
            user_id=user_id,
            delta=amount,
            txn_type=CreditTransactionType.REFUND,
            description=description,
            print_order_id=print_order_id,
            book_id=book_id,
            payment_reference=None,
            commit=commit,
        )

    def get_balance(self, session: Session, user_id: int) -> int:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user.credits_balance

    def has_sufficient_credits(self, session: Session, user_id: int, amount: int) -> bool:
        return self.get_balance(session, user_id) >= amount

    def find_purchase(self, session: Session, payment_reference: str) -> Optional[CreditTransaction]:
        return session.exec(
            select(CreditTransaction)
            .where(CreditTransaction.payment_reference == payment_reference)
            .where(CreditTransaction.type == CreditTransactionType.PURCHASE.value)
        ).first()

    def find_order_transaction(
        self, session: Session, print_order_id: int, txn_type: CreditTransactionType
    ) -> Optional[CreditTransaction]:
        return session.exec(
            select(CreditTransaction)
            .where(CreditTransaction.print_order_id == print_order_id)
            .where(CreditTransaction.type == txn_type.value)
        ).first()

    def get_history(self, session: Session, user_id: int, page: int = 1, limit: int = 20) -> dict:
        query = (
            select(CreditTransaction)
            .where(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        )
        return paginate(session=session, query=query, page=page, limit=limit)


credit_service = CreditService()

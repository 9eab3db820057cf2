from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field

from storyprint.utils.timestamps import UTCDateTime, utcnow


class CreditTransaction(SQLModel, table=True):
    __tablename__ = "credit_transaction"
    __table_args__ = (
        # one usage and at most one refund per print order
        UniqueConstraint("print_order_id", "type", name="uq_credit_txn_order_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    type: str = Field(index=True)  # purchase | usage | refund
    amount: int                    # positive for purchase/refund, negative for usage
    description: str

    print_order_id: Optional[int] = Field(default=None, foreign_key="print_order.id", index=True)
    book_id: Optional[int] = Field(default=None, foreign_key="book.id")
    # gateway payment id; at most one purchase per payment
    payment_reference: Optional[str] = Field(default=None, unique=True, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

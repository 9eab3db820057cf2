import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field

from storyprint.constants.order_status import (
    PrintOrderStatus,
    is_cancelable,
    is_terminal,
)
from storyprint.utils.timestamps import UTCDateTime, utcnow


def generate_external_id() -> str:
    """PTO_<epoch ms>_<6 upper-case alphanumerics>; sent to the provider as idempotency key."""
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"PTO_{int(time.time() * 1000)}_{suffix}"


class PrintOrder(SQLModel, table=True):
    __tablename__ = "print_order"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: str = Field(default_factory=generate_external_id, unique=True, index=True)

    user_id: int = Field(foreign_key="user.id", index=True)
    book_id: int = Field(foreign_key="book.id", index=True)

    # Fixed once the order exists
    quantity: int = Field(ge=1, le=100)
    shipping_address: dict = Field(sa_column=Column(JSON, nullable=False))
    shipping_level: str

    total_cost_credits: int
    total_cost: Decimal = Field(max_digits=12, decimal_places=4)
    currency: str = Field(default="USD")
    provider_cost: Decimal = Field(max_digits=12, decimal_places=4)
    print_markup_percentage: Decimal = Field(max_digits=6, decimal_places=2)
    shipping_markup_percentage: Decimal = Field(max_digits=6, decimal_places=2)

    cover_pdf_url: Optional[str] = None
    interior_pdf_url: Optional[str] = None

    payment_reference: Optional[str] = Field(default=None, unique=True, index=True)

    # Lifecycle
    status: str = Field(default=PrintOrderStatus.CREATED.value, index=True)
    provider_job_id: Optional[str] = Field(default=None, unique=True, index=True)
    provider_status: Optional[str] = None
    pending_status: Optional[str] = None
    tracking_info: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    submission_attempts: int = Field(default=0)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    submitted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    shipped_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    canceled_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)

    @property
    def can_be_canceled(self) -> bool:
        return is_cancelable(self.status)

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    def touch(self):
        self.updated_at = utcnow()

from datetime import datetime
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storyprint.constants.order_status import SHIPPING_LEVELS


class ShippingAddress(BaseModel):
    name: str = Field(min_length=1)
    street1: str = Field(min_length=1)
    street2: Optional[str] = None
    city: str = Field(min_length=1)
    state_code: Optional[str] = None
    postcode: str = Field(min_length=1)
    country_code: str = Field(min_length=2, max_length=2)
    phone_number: str = Field(min_length=1)
    email: Optional[str] = None

    @field_validator("country_code")
    @classmethod
    def upper_country(cls, value: str) -> str:
        return value.upper()


class CostRequest(BaseModel):
    book_id: int
    quantity: int = 1
    shipping_address: ShippingAddress
    shipping_level: str = "MAIL"

    @field_validator("shipping_level")
    @classmethod
    def known_level(cls, value: str) -> str:
        value = value.upper()
        if value not in SHIPPING_LEVELS:
            raise ValueError(f"shipping_level must be one of {', '.join(SHIPPING_LEVELS)}")
        return value


class ShippingOptionsRequest(BaseModel):
    book_id: int
    quantity: int = 1
    shipping_address: ShippingAddress


class CreatePrintOrderRequest(CostRequest):
    pass


class OperatorRefundRequest(BaseModel):
    reason: str = "Refunded by operator"


class PrintOrderRead(BaseModel):
    """Customer view of a print order. Provider cost and markups are never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    book_id: int
    quantity: int
    shipping_level: str
    shipping_address: Dict[str, Any]
    status: str
    pending_status: Optional[str] = None
    total_cost_credits: int
    total_cost: str
    currency: str
    provider_job_id: Optional[str] = None
    tracking_info: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    can_be_canceled: bool
    created_at: datetime
    updated_at: datetime
    submitted_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    @field_validator("total_cost", mode="before")
    @classmethod
    def money(cls, value: Any) -> str:
        if value is None:
            return "0.00"
        return str(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_CEILING))


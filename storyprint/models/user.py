from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from storyprint.utils.timestamps import UTCDateTime, utcnow


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str
    last_name: str = ""
    email: str = Field(index=True)
    role: str = Field(default="user")
    can_login: bool = Field(default=True)

    # Denormalized sum of credit_transaction.amount, written only by CreditService
    credits_balance: int = Field(default=0, ge=0)

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON

from storyprint.utils.timestamps import UTCDateTime, utcnow


class PrintOrderEvent(SQLModel, table=True):
    __tablename__ = "print_order_event"
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)

    order_id: int = Field(foreign_key="print_order.id", index=True)
    event_type: str = Field(index=True)

    label: str
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    created_by: str = Field(default="system")

from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime

from storyprint.utils.timestamps import UTCDateTime, utcnow


class Book(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    title: str
    page_count: int = Field(default=0)
    generation_status: str = Field(default="pending")  # pending | generating | completed | failed

    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)

    @property
    def is_printable(self) -> bool:
        return self.generation_status == "completed" and self.page_count > 0

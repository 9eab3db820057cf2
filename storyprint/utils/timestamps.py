from datetime import datetime, timezone

from sqlalchemy import DateTime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Column type for every stored timestamp
UTCDateTime = DateTime(timezone=True)

from typing import Optional
from uuid import uuid4

from sqlmodel import Session, select

from storyprint.models.print_order_event import PrintOrderEvent
from storyprint.utils.timestamps import utcnow


def log_print_order_event(
    session: Session,
    order_id: int,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
):
    """
    Append-only event log for the print order timeline.

    Only adds to the session; the caller commits it together with the
    transition it describes.
    """

    event = PrintOrderEvent(
        id=str(uuid4()),
        order_id=order_id,
        event_type=event_type,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=utcnow(),
    )

    session.add(event)
    return event


def get_order_timeline(session: Session, order_id: int):
    return session.exec(
        select(PrintOrderEvent)
        .where(PrintOrderEvent.order_id == order_id)
        .order_by(PrintOrderEvent.created_at)
    ).all()

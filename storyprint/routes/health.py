from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, text

from storyprint.database import get_session
from storyprint.dependencies.services import get_webhook_monitor
from storyprint.jobs.webhook_monitor import WebhookMonitor
from storyprint.utils.timestamps import utcnow

router = APIRouter()


@router.get("/check")
def health_check(
    session: Session = Depends(get_session),
    monitor: WebhookMonitor = Depends(get_webhook_monitor),
):
    db_status = "ok"

    try:
        # simple DB ping
        session.exec(text("SELECT 1"))
    except SQLAlchemyError:
        db_status = "failed"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "webhook_monitor": "running" if monitor.is_running else "stopped",
        "timestamp": utcnow().isoformat()
    }

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlmodel import Session

from storyprint.database import get_session
from storyprint.dependencies.services import get_payment_service, get_print_order_service
from storyprint.exceptions import MalformedWebhookError
from storyprint.services.payment_service import PaymentService
from storyprint.services.print_order_service import PrintOrderService, StatusEvent
from storyprint.services.webhook_subscription_service import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def _json_body(body: bytes) -> dict:
    try:
        payload = json.loads(body)
    except ValueError as e:
        raise MalformedWebhookError("Webhook body is not valid JSON") from e
    if not isinstance(payload, dict):
        raise MalformedWebhookError("Webhook body must be a JSON object")
    return payload


@router.post("/provider/print-job-status")
async def provider_print_job_status(
    request: Request,
    session: Session = Depends(get_session),
    print_orders: PrintOrderService = Depends(get_print_order_service),
):
    """
    Print job status push from the provider.

    Non-2xx answers make the provider redeliver, so an event for a job we
    do not know yet is answered 404 rather than dropped.
    """
    body = await request.body()
    verify_signature(body, request.headers.get(SIGNATURE_HEADER))

    payload = _json_body(body)
    topic = payload.get("topic")
    if topic and topic != "PRINT_JOB_STATUS_CHANGED":
        logger.info(f"Ignoring provider webhook topic {topic}")
        return {"success": True, "outcome": "ignored"}

    event = StatusEvent.from_webhook(payload)
    outcome = await run_in_threadpool(print_orders.apply_status_event, session, event)
    logger.info(
        f"Provider event for job {event.provider_job_id} ({event.status_name}): {outcome.value}"
    )
    return {"success": True, "outcome": outcome.value}


@router.post("/payments")
async def payment_webhook(
    request: Request,
    session: Session = Depends(get_session),
    payments: PaymentService = Depends(get_payment_service),
):
    body = await request.body()
    payments.verify_webhook_signature(body, request.headers.get("X-Razorpay-Signature"))

    result = await run_in_threadpool(payments.handle_payment_event, session, _json_body(body))
    return {"success": True, **result}

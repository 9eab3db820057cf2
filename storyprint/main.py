import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storyprint.config import settings
from storyprint.database import create_db_and_tables
from storyprint.dependencies.services import get_webhook_monitor
from storyprint.exceptions import StoryPrintError
from storyprint.routes import (
    admin_print_orders,
    credits,
    health,
    print_orders,
    webhook_management,
    webhooks,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.ENV == "local":
        create_db_and_tables()

    monitor = None
    if settings.webhook_monitor_enabled:
        monitor = get_webhook_monitor()
        monitor.start()

    yield

    if monitor is not None:
        monitor.stop()

app = FastAPI(title="StoryPrint Print Fulfillment API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        settings.web_url,
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoryPrintError)
async def storyprint_error_handler(request: Request, exc: StoryPrintError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(print_orders.router, prefix="/print-orders", tags=["Print Orders"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(webhook_management.router, prefix="/admin/webhooks", tags=["Admin Webhooks"])
app.include_router(admin_print_orders.router, prefix="/admin/print-orders", tags=["Admin Print Orders"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {
        "print_order_endpoints": [
            "/print-orders/calculate-cost", "/print-orders/shipping-options",
            "/print-orders", "/print-orders/checkout",
            "/print-orders/{order_id}", "/print-orders/{order_id}/status"
        ],
        "credit_endpoints": [
            "/credits/balance", "/credits/history", "/credits/checkout"
        ],
        "webhook_endpoints": [
            "/webhooks/provider/print-job-status", "/webhooks/payments"
        ],
        "admin_endpoints": [
            "/admin/webhooks/status", "/admin/webhooks/analytics",
            "/admin/print-orders/{order_id}/refund"
        ],
        "health": ["/health/check"]
    }

"""
Pytest configuration for storyprint tests.

Every test gets its own in-memory SQLite database; the print provider,
print-file generator and payment gateway are replaced with in-process fakes.
"""

import os

# must be set before storyprint.config is imported
os.environ["ENV"] = "test"
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite://"
os.environ["PROVIDER_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test-payment-secret"
os.environ["BREVO_API_KEY"] = ""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import storyprint.models  # noqa: F401
from storyprint.exceptions import ArtifactGenerationError, ProviderNotFoundError
from storyprint.models.book import Book
from storyprint.models.user import User
from storyprint.services.alert_service import AlertService
from storyprint.services.artifact_service import PrintArtifacts
from storyprint.services.cost_service import CostService
from storyprint.services.print_order_service import PrintOrderService
from storyprint.services.provider_client import (
    CostCalculation,
    DeliveryRecord,
    PrintJob,
    ShippingOption,
    TrackingInfo,
    WebhookSubscription,
)

ADDRESS = {
    "name": "Ada Lovelace",
    "street1": "12 Analytical Row",
    "street2": None,
    "city": "London",
    "state_code": None,
    "postcode": "N1 7AA",
    "country_code": "GB",
    "phone_number": "+44 20 7946 0000",
    "email": "ada@example.com",
}


# =============================================================================
# FAKES
# =============================================================================

class FakeProvider:
    """In-memory print provider. Costs default to P=10.00, S=4.00."""

    def __init__(self):
        self.levels = ["MAIL", "PRIORITY_MAIL", "EXPEDITED"]
        self.print_cost = Decimal("10.00")
        self.shipping_cost = Decimal("4.00")
        self.fees_cost = Decimal("0")
        self.jobs: Dict[str, PrintJob] = {}
        self.created_jobs: List[dict] = []
        self.canceled_jobs: List[str] = []
        self.create_job_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.on_create_job = None
        self._job_seq = 1000

        self.webhooks: Dict[str, WebhookSubscription] = {}
        self.submissions: List[DeliveryRecord] = []
        self.create_webhook_errors: List[Exception] = []
        self.update_webhook_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        self._webhook_seq = 1

    # cost & shipping
    def get_shipping_options(self, shipping_address, page_count, quantity):
        self.calls.append(("get_shipping_options", shipping_address.get("country_code")))
        return [
            ShippingOption(level=level, cost_incl_tax=self.shipping_cost, traceable=level != "MAIL")
            for level in self.levels
        ]

    def calculate_print_cost(self, page_count, quantity, shipping_address, shipping_level):
        self.calls.append(("calculate_print_cost", shipping_level))
        return CostCalculation(
            line_items_cost=self.print_cost,
            fulfillment_cost=Decimal("0"),
            fees_cost=self.fees_cost,
            shipping_cost=self.shipping_cost,
            total_cost_incl_tax=self.print_cost + self.fees_cost + self.shipping_cost,
            currency="USD",
        )

    # print jobs
    def create_print_job(self, **kwargs):
        self.created_jobs.append(kwargs)
        if self.on_create_job is not None:
            self.on_create_job()
        if self.create_job_error is not None:
            raise self.create_job_error
        self._job_seq += 1
        job = PrintJob(id=str(self._job_seq), status_name="CREATED", external_id=kwargs["external_id"])
        self.jobs[job.id] = job
        return job

    def find_print_job_by_external_id(self, external_id):
        for job in self.jobs.values():
            if job.external_id == external_id:
                return job
        return None

    def get_print_job(self, job_id):
        if job_id not in self.jobs:
            raise ProviderNotFoundError("GET", f"print-jobs/{job_id}/", 404)
        return self.jobs[job_id]

    def cancel_print_job(self, job_id):
        self.canceled_jobs.append(job_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return PrintJob(id=job_id, status_name="CANCELED")

    # webhooks
    def list_webhooks(self):
        return list(self.webhooks.values())

    def create_webhook(self, url, topics):
        self.calls.append(("create_webhook", url))
        if self.create_webhook_errors:
            raise self.create_webhook_errors.pop(0)
        webhook = WebhookSubscription(id=f"wh-{self._webhook_seq}", url=url, topics=list(topics), is_active=True)
        self._webhook_seq += 1
        self.webhooks[webhook.id] = webhook
        return webhook

    def get_webhook(self, webhook_id):
        if webhook_id not in self.webhooks:
            raise ProviderNotFoundError("GET", f"webhooks/{webhook_id}/", 404)
        return self.webhooks[webhook_id]

    def update_webhook(self, webhook_id, updates):
        self.calls.append(("update_webhook", webhook_id, dict(updates)))
        if self.update_webhook_error is not None:
            raise self.update_webhook_error
        current = self.get_webhook(webhook_id)
        webhook = WebhookSubscription(
            id=current.id,
            url=current.url,
            topics=list(updates.get("topics", current.topics)),
            is_active=updates.get("is_active", current.is_active),
        )
        self.webhooks[webhook_id] = webhook
        return webhook

    def delete_webhook(self, webhook_id):
        self.calls.append(("delete_webhook", webhook_id))
        self.webhooks.pop(webhook_id, None)

    def test_webhook(self, webhook_id, topic):
        self.calls.append(("test_webhook", webhook_id, topic))
        return {"queued": True}

    def get_webhook_submissions(self, webhook_id, created_after=None, page_size=50):
        self.calls.append(("get_webhook_submissions", webhook_id))
        return list(self.submissions)


class FakeArtifacts:
    def __init__(self):
        self.error: Optional[Exception] = None
        self.generated: List[int] = []

    def generate(self, book_id):
        self.generated.append(book_id)
        if self.error is not None:
            raise self.error
        return PrintArtifacts(
            cover_url=f"https://files.example.com/{book_id}/cover.pdf",
            interior_url=f"https://files.example.com/{book_id}/interior.pdf",
        )

    def fail(self, message="renderer down"):
        self.error = ArtifactGenerationError(message, {})


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def __call__(self, *, event, order, user, book_title="", extra=None):
        self.events.append((event, order.id, extra))

    @property
    def names(self):
        return [event for event, _, _ in self.events]


def delivery(success: bool, minutes_ago: int, code: Optional[int] = None, topic="PRINT_JOB_STATUS_CHANGED"):
    return DeliveryRecord(
        is_success=success,
        response_code=code if code is not None else (200 if success else 500),
        attempts=1,
        topic=topic,
        date_created=datetime(2026, 10, 19, 12, 0) - timedelta(minutes=minutes_ago),
    )


def shipped_tracking():
    return TrackingInfo(
        tracking_id="1Z999AA10123456784",
        tracking_urls=["https://track.example.com/1Z999AA10123456784"],
        carrier_name="UPS",
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def user(session):
    user = User(first_name="Ada", last_name="Lovelace", email="ada@example.com", credits_balance=0)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def admin(session):
    admin = User(first_name="Grace", last_name="Hopper", email="grace@example.com", role="admin")
    session.add(admin)
    session.commit()
    session.refresh(admin)
    return admin


@pytest.fixture
def book(session, user):
    book = Book(user_id=user.id, title="The Dragon Who Loved Tea", page_count=32, generation_status="completed")
    session.add(book)
    session.commit()
    session.refresh(book)
    return book


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def artifacts():
    return FakeArtifacts()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def cost_service(provider):
    return CostService(
        provider,
        print_markup_percentage=Decimal("100"),
        shipping_markup_percentage=Decimal("5"),
        credit_value=Decimal("0.01"),
        max_quantity=100,
    )


@pytest.fixture
def print_orders(provider, cost_service, artifacts, notifier):
    return PrintOrderService(
        provider=provider,
        cost_service=cost_service,
        artifacts=artifacts,
        notify=notifier,
    )


@pytest.fixture
def alerts():
    clock = {"now": 0.0}
    service = AlertService(
        cooldown_seconds=3600,
        recipient=None,
        clock=lambda: clock["now"],
        send=lambda **kwargs: True,
    )
    service.clock = clock
    return service

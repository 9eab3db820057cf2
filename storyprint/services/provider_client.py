"""
Print provider client - the only code that talks to the print-on-demand API.

Wraps the provider's REST endpoints (OAuth token, cost calculation, shipping
options, print jobs, webhooks and webhook submissions) behind one bounded
retry loop:

    - 5xx, 429, connection errors, timeouts and broken response bodies are
      retried with exponential backoff (base * 2^(attempt-1)) up to
      `max_attempts` attempts
    - 401 invalidates the cached access token, then retries
    - any other 4xx raises ProviderRequestError immediately
    - any other requests failure, or a token response without a token,
      raises ProviderResponseError
    - exhausting the budget raises ProviderUnavailableError

Responses are decoded into small frozen dataclasses so callers never touch
raw provider JSON.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import requests

from storyprint.config import settings
from storyprint.exceptions import (
    ProviderNotFoundError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from storyprint.services.credential_cache import CredentialCache

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

TRANSIENT_ERRORS = (
    requests.ConnectionError,
    requests.Timeout,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)


# =============================================================================
# RESPONSE TYPES
# =============================================================================

@dataclass(frozen=True)
class ShippingOption:
    level: str
    cost_incl_tax: Decimal
    currency: str = "USD"
    total_days_min: Optional[int] = None
    total_days_max: Optional[int] = None
    traceable: bool = False
    min_delivery_date: Optional[str] = None
    max_delivery_date: Optional[str] = None


@dataclass(frozen=True)
class CostCalculation:
    line_items_cost: Decimal
    fulfillment_cost: Decimal
    fees_cost: Decimal
    shipping_cost: Decimal
    total_cost_incl_tax: Decimal
    currency: str

    @property
    def print_cost(self) -> Decimal:
        """Everything the provider charges that is not shipping."""
        return self.line_items_cost + self.fulfillment_cost + self.fees_cost


@dataclass(frozen=True)
class TrackingInfo:
    tracking_id: Optional[str] = None
    tracking_urls: List[str] = field(default_factory=list)
    carrier_name: Optional[str] = None

    @property
    def is_present(self) -> bool:
        return bool(self.tracking_id or self.tracking_urls)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tracking_id": self.tracking_id,
            "tracking_urls": list(self.tracking_urls),
            "carrier_name": self.carrier_name,
        }


@dataclass(frozen=True)
class PrintJob:
    id: str
    status_name: str
    status_message: Optional[str] = None
    tracking: Optional[TrackingInfo] = None
    external_id: Optional[str] = None


@dataclass(frozen=True)
class WebhookSubscription:
    id: str
    url: str
    topics: List[str]
    is_active: bool


@dataclass(frozen=True)
class DeliveryRecord:
    is_success: bool
    response_code: Optional[int]
    attempts: int
    topic: Optional[str]
    date_created: Optional[datetime]


def _decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    return Decimal(str(value))


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_tracking(line_item_statuses: Any) -> Optional[TrackingInfo]:
    """Tracking of the first line item. Raises ValueError when the payload has the wrong shape."""
    if not line_item_statuses:
        return None
    if not isinstance(line_item_statuses, list):
        raise ValueError("line_item_statuses is not a list")
    if not all(isinstance(item, dict) for item in line_item_statuses):
        raise ValueError("line_item_statuses holds a non-object entry")

    messages = line_item_statuses[0].get("messages") or {}
    if not isinstance(messages, dict):
        raise ValueError("line item messages is not an object")
    urls = messages.get("tracking_urls") or []
    if isinstance(urls, str):
        urls = [urls]
    if not isinstance(urls, list):
        raise ValueError("tracking_urls is not a list")

    tracking = TrackingInfo(
        tracking_id=messages.get("tracking_id"),
        tracking_urls=[str(url) for url in urls],
        carrier_name=messages.get("carrier_name"),
    )
    return tracking if tracking.is_present else None


def parse_print_job(data: Any) -> PrintJob:
    if not isinstance(data, dict):
        raise ValueError("print job is not an object")
    status = data.get("status") or {}
    if not isinstance(status, dict):
        raise ValueError("print job status is not an object")
    return PrintJob(
        id=str(data.get("id")),
        status_name=str(status.get("name") or ""),
        status_message=status.get("message"),
        tracking=parse_tracking(data.get("line_item_statuses")),
        external_id=data.get("external_id"),
    )


def parse_webhook(data: Dict[str, Any]) -> WebhookSubscription:
    return WebhookSubscription(
        id=str(data.get("id")),
        url=data.get("url", ""),
        topics=list(data.get("topics") or []),
        is_active=bool(data.get("is_active")),
    )


def parse_delivery_record(data: Dict[str, Any]) -> DeliveryRecord:
    return DeliveryRecord(
        is_success=bool(data.get("is_success")),
        response_code=data.get("response_code"),
        attempts=int(data.get("attempts") or 1),
        topic=data.get("topic"),
        date_created=_parse_datetime(data.get("date_created")),
    )


def _address_payload(address: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": address.get("name"),
        "street1": address.get("street1"),
        "street2": address.get("street2") or "",
        "city": address.get("city"),
        "state_code": address.get("state_code") or "",
        "postcode": address.get("postcode"),
        "country_code": address.get("country_code"),
        "phone_number": address.get("phone_number"),
        "email": address.get("email"),
    }


# =============================================================================
# CLIENT
# =============================================================================

class PrintProviderClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_url: Optional[str] = None,
        client_key: Optional[str] = None,
        client_secret: Optional[str] = None,
        pod_package_id: Optional[str] = None,
        credentials: Optional[CredentialCache] = None,
        http: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or settings.provider_base_url).rstrip("/") + "/"
        self.auth_url = auth_url or settings.provider_auth_url
        self.client_key = client_key if client_key is not None else settings.provider_client_key
        self.client_secret = (
            client_secret if client_secret is not None else settings.provider_client_secret
        )
        self.pod_package_id = pod_package_id or settings.provider_pod_package_id
        self.credentials = credentials or CredentialCache()
        self.http = http or requests.Session()
        self.timeout = timeout or settings.provider_timeout_seconds
        self.max_attempts = max(1, max_attempts or settings.provider_max_attempts)
        self.backoff_base = (
            backoff_base if backoff_base is not None else settings.provider_retry_backoff_seconds
        )
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _fetch_access_token(self) -> str:
        token = self.credentials.get()
        if token:
            return token

        response = self.http.post(
            self.auth_url,
            data={"grant_type": "client_credentials"},
            auth=(self.client_key, self.client_secret),
            timeout=self.timeout,
        )
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _RetryableResponse(response.status_code, "token endpoint")
        if response.status_code >= 400:
            raise ProviderRequestError("POST", "token", response.status_code, _safe_json(response))

        body = _safe_json(response)
        try:
            token = body["access_token"]
            expires_in = float(body.get("expires_in", 3600))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ProviderResponseError("POST", "token", "no usable access_token in token response") from e
        if not isinstance(token, str) or not token:
            raise ProviderResponseError("POST", "token", "empty access_token in token response")

        self.credentials.store(token, expires_in)
        logger.info("Fetched new print provider access token")
        return token

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path.lstrip('/')}"
        last_error = "no attempt made"

        for attempt in range(1, self.max_attempts + 1):
            try:
                token = self._fetch_access_token()
                response = self.http.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers={
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
            except TRANSIENT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
            except _RetryableResponse as e:
                last_error = str(e)
            except requests.RequestException as e:
                logger.error(f"Provider {method} {path} could not be sent: {type(e).__name__}: {e}")
                raise ProviderResponseError(method, path, f"{type(e).__name__}: {e}") from e
            else:
                status = response.status_code
                if status < 400:
                    return _safe_json(response)

                if status == 401:
                    self.credentials.invalidate()
                    last_error = "401 Unauthorized (access token expired)"
                elif status in RETRYABLE_STATUS_CODES:
                    last_error = f"HTTP {status}"
                elif status == 404:
                    raise ProviderNotFoundError(method, path, status, _safe_json(response))
                else:
                    body = _safe_json(response)
                    logger.error(f"Provider rejected {method} {path} ({status}): {body}")
                    raise ProviderRequestError(method, path, status, body)

            if attempt < self.max_attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    f"Provider {method} {path} attempt {attempt}/{self.max_attempts} "
                    f"failed: {last_error} (retrying in {delay:.1f}s)"
                )
                self._sleep(delay)

        logger.error(f"Provider {method} {path} failed after {self.max_attempts} attempts: {last_error}")
        raise ProviderUnavailableError(method, path, self.max_attempts, last_error)

    # -------------------------------------------------------------------------
    # Cost & shipping
    # -------------------------------------------------------------------------

    def get_shipping_options(
        self, shipping_address: Dict[str, Any], page_count: int, quantity: int
    ) -> List[ShippingOption]:
        body = self.request(
            "POST",
            "shipping-options/",
            json={
                "line_items": [
                    {
                        "page_count": page_count,
                        "pod_package_id": self.pod_package_id,
                        "quantity": quantity,
                    }
                ],
                "shipping_address": _address_payload(shipping_address),
            },
        )
        results = body.get("results", body) if isinstance(body, dict) else body
        options = []
        for item in results or []:
            options.append(
                ShippingOption(
                    level=item.get("level"),
                    cost_incl_tax=_decimal(item.get("cost_incl_tax", item.get("total_cost_incl_tax"))),
                    currency=item.get("currency", "USD"),
                    total_days_min=item.get("total_days_min"),
                    total_days_max=item.get("total_days_max"),
                    traceable=bool(item.get("traceable")),
                    min_delivery_date=item.get("min_delivery_date"),
                    max_delivery_date=item.get("max_delivery_date"),
                )
            )
        return options

    def calculate_print_cost(
        self,
        page_count: int,
        quantity: int,
        shipping_address: Dict[str, Any],
        shipping_level: str,
    ) -> CostCalculation:
        body = self.request(
            "POST",
            "print-job-cost-calculations/",
            json={
                "line_items": [
                    {
                        "page_count": page_count,
                        "pod_package_id": self.pod_package_id,
                        "quantity": quantity,
                    }
                ],
                "shipping_address": _address_payload(shipping_address),
                "shipping_option": shipping_level,
            },
        )
        line_items = sum(
            (_decimal(item.get("total_cost_incl_tax")) for item in body.get("line_item_costs") or []),
            Decimal("0"),
        )
        fees = sum(
            (_decimal(fee.get("total_cost_incl_tax")) for fee in body.get("fees") or []),
            Decimal("0"),
        )
        return CostCalculation(
            line_items_cost=line_items,
            fulfillment_cost=_decimal((body.get("fulfillment_cost") or {}).get("total_cost_incl_tax")),
            fees_cost=fees,
            shipping_cost=_decimal((body.get("shipping_cost") or {}).get("total_cost_incl_tax")),
            total_cost_incl_tax=_decimal(body.get("total_cost_incl_tax")),
            currency=body.get("currency", "USD"),
        )

    # -------------------------------------------------------------------------
    # Print jobs
    # -------------------------------------------------------------------------

    def create_print_job(
        self,
        *,
        external_id: str,
        title: str,
        quantity: int,
        cover_url: str,
        interior_url: str,
        shipping_address: Dict[str, Any],
        shipping_level: str,
        contact_email: str,
    ) -> PrintJob:
        logger.info(f"Creating print job for order {external_id}")
        body = self.request(
            "POST",
            "print-jobs/",
            json={
                "external_id": external_id,
                "line_items": [
                    {
                        "external_id": f"{external_id}_item_1",
                        "title": title,
                        "printable_normalization": {
                            "pod_package_id": self.pod_package_id,
                            "cover": {"source_url": cover_url},
                            "interior": {"source_url": interior_url},
                        },
                        "quantity": quantity,
                    }
                ],
                "shipping_address": _address_payload(shipping_address),
                "shipping_level": shipping_level,
                "contact_email": contact_email,
            },
        )
        job = _decode_job("POST", "print-jobs/", body)
        logger.info(f"Print job {job.id} created for {external_id} (status {job.status_name})")
        return job

    def find_print_job_by_external_id(self, external_id: str) -> Optional[PrintJob]:
        body = self.request("GET", "print-jobs/", params={"external_id": external_id})
        results = body.get("results", []) if isinstance(body, dict) else body or []
        for item in results:
            if isinstance(item, dict) and item.get("external_id") == external_id:
                return _decode_job("GET", "print-jobs/", item)
        return None

    def get_print_job(self, job_id: str) -> PrintJob:
        path = f"print-jobs/{job_id}/"
        return _decode_job("GET", path, self.request("GET", path))

    def cancel_print_job(self, job_id: str) -> PrintJob:
        path = f"print-jobs/{job_id}/status/"
        return _decode_job("PUT", path, self.request("PUT", path, json={"name": "CANCELED"}))

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def list_webhooks(self) -> List[WebhookSubscription]:
        body = self.request("GET", "webhooks/")
        results = body.get("results", []) if isinstance(body, dict) else body or []
        return [parse_webhook(item) for item in results]

    def create_webhook(self, url: str, topics: List[str]) -> WebhookSubscription:
        return parse_webhook(self.request("POST", "webhooks/", json={"url": url, "topics": topics}))

    def get_webhook(self, webhook_id: str) -> WebhookSubscription:
        return parse_webhook(self.request("GET", f"webhooks/{webhook_id}/"))

    def update_webhook(self, webhook_id: str, updates: Dict[str, Any]) -> WebhookSubscription:
        return parse_webhook(self.request("PATCH", f"webhooks/{webhook_id}/", json=updates))

    def delete_webhook(self, webhook_id: str) -> None:
        self.request("DELETE", f"webhooks/{webhook_id}/")

    def test_webhook(self, webhook_id: str, topic: str) -> Any:
        return self.request("POST", f"webhooks/{webhook_id}/test-submission/{topic}/")

    def get_webhook_submissions(
        self,
        webhook_id: str,
        created_after: Optional[datetime] = None,
        page_size: int = 50,
    ) -> List[DeliveryRecord]:
        params: Dict[str, Any] = {"webhook_id": webhook_id, "page_size": page_size}
        if created_after is not None:
            params["created_after"] = created_after.isoformat()
        body = self.request("GET", "webhook-submissions/", params=params)
        results = body.get("results", []) if isinstance(body, dict) else body or []
        return [parse_delivery_record(item) for item in results]


class _RetryableResponse(Exception):
    def __init__(self, status_code: int, where: str):
        super().__init__(f"HTTP {status_code} from {where}")
        self.status_code = status_code


def _safe_json(response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def _decode_job(method: str, path: str, body: Any) -> PrintJob:
    try:
        return parse_print_job(body)
    except ValueError as e:
        raise ProviderResponseError(method, path, str(e)) from e

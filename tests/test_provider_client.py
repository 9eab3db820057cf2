import json as jsonlib

import pytest
import requests

from storyprint.exceptions import (
    ProviderNotFoundError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderUnavailableError,
)
from storyprint.services.credential_cache import CredentialCache
from storyprint.services.provider_client import PrintProviderClient


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else jsonlib.dumps(body).encode()
        self.text = self.content.decode()

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeHttp:
    """Replays queued API responses; the token endpoint answers with `token_body` or a fresh token."""

    def __init__(self, responses, token_body=None):
        self.responses = list(responses)
        self.requests = []
        self.token_requests = 0
        self.token_body = token_body

    def post(self, url, data=None, auth=None, timeout=None):
        self.token_requests += 1
        if self.token_body is not None:
            return FakeResponse(200, self.token_body)
        return FakeResponse(200, {"access_token": f"token-{self.token_requests}", "expires_in": 3600})

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "params": params, "headers": headers})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def sleeps():
    return []


def make_client(http, sleeps, **kwargs):
    return PrintProviderClient(
        base_url="https://provider.test/",
        auth_url="https://provider.test/auth/token",
        client_key="key",
        client_secret="secret",
        pod_package_id="POD-1",
        credentials=CredentialCache(),
        http=http,
        timeout=5,
        max_attempts=kwargs.pop("max_attempts", 3),
        backoff_base=1.0,
        sleep=sleeps.append,
    )


def test_transient_failures_are_retried_with_exponential_backoff(sleeps):
    http = FakeHttp([
        FakeResponse(503),
        requests.ConnectionError("reset"),
        FakeResponse(200, {"id": 42, "status": {"name": "CREATED"}}),
    ])
    client = make_client(http, sleeps)

    job = client.get_print_job("42")

    assert job.id == "42"
    assert job.status_name == "CREATED"
    assert sleeps == [1.0, 2.0]
    assert len(http.requests) == 3


def test_broken_response_bodies_are_retried(sleeps):
    http = FakeHttp([
        requests.exceptions.ChunkedEncodingError("connection broken mid-body"),
        requests.exceptions.ContentDecodingError("bad gzip"),
        FakeResponse(200, {"id": 42, "status": {"name": "CREATED"}}),
    ])
    client = make_client(http, sleeps)

    assert client.get_print_job("42").id == "42"
    assert sleeps == [1.0, 2.0]


def test_broken_response_bodies_exhaust_into_unavailable(sleeps):
    http = FakeHttp([requests.exceptions.ChunkedEncodingError("broken") for _ in range(3)])
    client = make_client(http, sleeps)

    with pytest.raises(ProviderUnavailableError) as exc:
        client.create_print_job(
            external_id="PTO_1_ABCDEF",
            title="Book",
            quantity=1,
            cover_url="https://files.test/cover.pdf",
            interior_url="https://files.test/interior.pdf",
            shipping_address={"country_code": "US"},
            shipping_level="MAIL",
            contact_email="reader@example.com",
        )

    assert "ChunkedEncodingError" in exc.value.message


def test_other_request_failures_become_provider_errors(sleeps):
    http = FakeHttp([requests.exceptions.InvalidURL("no host")])
    client = make_client(http, sleeps)

    with pytest.raises(ProviderResponseError):
        client.get_print_job("42")

    assert sleeps == []


@pytest.mark.parametrize("token_body", [{}, {"access_token": ""}, {"access_token": "t", "expires_in": "soon"}, ["t"]])
def test_unusable_token_response_is_a_provider_error(sleeps, token_body):
    client = make_client(FakeHttp([], token_body=token_body), sleeps)

    with pytest.raises(ProviderResponseError):
        client.list_webhooks()


def test_malformed_print_job_body_is_a_provider_error(sleeps):
    http = FakeHttp([FakeResponse(200, {"id": 7, "status": {"name": "SHIPPED"}, "line_item_statuses": ["x"]})])
    client = make_client(http, sleeps)

    with pytest.raises(ProviderResponseError):
        client.get_print_job("7")


def test_retry_budget_exhausted_raises_unavailable(sleeps):
    http = FakeHttp([FakeResponse(500), FakeResponse(502), FakeResponse(429)])
    client = make_client(http, sleeps)

    with pytest.raises(ProviderUnavailableError) as exc:
        client.get_print_job("42")

    assert exc.value.attempts == 3
    assert len(sleeps) == 2


def test_client_errors_are_not_retried(sleeps):
    http = FakeHttp([FakeResponse(400, {"detail": "bad address"})])
    client = make_client(http, sleeps)

    with pytest.raises(ProviderRequestError) as exc:
        client.get_print_job("42")

    assert exc.value.message == "bad address"
    assert exc.value.response_code == 400
    assert sleeps == []


def test_not_found_has_its_own_error(sleeps):
    client = make_client(FakeHttp([FakeResponse(404, {})]), sleeps)

    with pytest.raises(ProviderNotFoundError):
        client.get_webhook("wh-1")


def test_unauthorized_refreshes_token_then_retries(sleeps):
    http = FakeHttp([FakeResponse(401), FakeResponse(200, {"results": []})])
    client = make_client(http, sleeps)

    assert client.list_webhooks() == []
    assert http.token_requests == 2
    assert http.requests[0]["headers"]["Authorization"] == "Bearer token-1"
    assert http.requests[1]["headers"]["Authorization"] == "Bearer token-2"


def test_token_is_cached_between_calls(sleeps):
    http = FakeHttp([FakeResponse(200, {"results": []}), FakeResponse(200, {"results": []})])
    client = make_client(http, sleeps)

    client.list_webhooks()
    client.list_webhooks()

    assert http.token_requests == 1


def test_cost_calculation_folds_fees_into_print_cost(sleeps):
    http = FakeHttp([
        FakeResponse(200, {
            "line_item_costs": [{"total_cost_incl_tax": "8.50"}],
            "fulfillment_cost": {"total_cost_incl_tax": "1.00"},
            "fees": [{"total_cost_incl_tax": "0.50"}],
            "shipping_cost": {"total_cost_incl_tax": "4.00"},
            "total_cost_incl_tax": "14.00",
            "currency": "USD",
        })
    ])
    client = make_client(http, sleeps)

    calc = client.calculate_print_cost(32, 1, {"country_code": "US"}, "MAIL")

    assert str(calc.print_cost) == "10.00"
    assert str(calc.shipping_cost) == "4.00"
    sent = http.requests[0]["json"]
    assert sent["shipping_option"] == "MAIL"
    assert sent["line_items"][0]["pod_package_id"] == "POD-1"


def test_print_job_tracking_is_parsed(sleeps):
    http = FakeHttp([
        FakeResponse(200, {
            "id": 7,
            "external_id": "PTO_1_ABCDEF",
            "status": {"name": "SHIPPED", "message": "on its way"},
            "line_item_statuses": [
                {"messages": {"tracking_id": "TRK1", "tracking_urls": ["https://t/1"], "carrier_name": "UPS"}}
            ],
        })
    ])
    client = make_client(http, sleeps)

    job = client.get_print_job("7")

    assert job.tracking.tracking_id == "TRK1"
    assert job.tracking.is_present
    assert job.external_id == "PTO_1_ABCDEF"


def test_delivery_records_are_parsed(sleeps):
    http = FakeHttp([
        FakeResponse(200, {"results": [
            {"is_success": False, "response_code": 500, "attempts": 3, "topic": "PRINT_JOB_STATUS_CHANGED",
             "date_created": "2026-10-19T10:00:00Z"},
        ]})
    ])
    client = make_client(http, sleeps)

    [record] = client.get_webhook_submissions("wh-1", page_size=10)

    assert record.is_success is False
    assert record.response_code == 500
    assert record.date_created.year == 2026
    assert http.requests[0]["params"] == {"webhook_id": "wh-1", "page_size": 10}


def test_credential_cache_expires_with_leeway():
    now = {"t": 0.0}
    cache = CredentialCache(leeway_seconds=60, clock=lambda: now["t"])
    cache.store("abc", expires_in=120)

    assert cache.get() == "abc"
    now["t"] = 61
    assert cache.get() is None
    assert cache.has_credential is False

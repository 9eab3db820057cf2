"""
Domain exceptions for storyprint.

Exception Hierarchy:
    StoryPrintError (base)
    ├── InvalidOrderRequestError       - bad shape / out-of-range values (400)
    │   ├── ShippingLevelUnavailableError - tier not offered for destination
    │   └── BookNotPrintableError       - book not finished generating
    ├── NotFoundError (404)
    │   ├── UserNotFoundError
    │   ├── BookNotFoundError
    │   └── PrintOrderNotFoundError
    ├── InsufficientCreditsError        - rejected before any side effect (402)
    ├── OrderStateConflictError (409)
    │   └── OrderNotCancelableError
    ├── WebhookProcessingError          - rejected at the channel boundary
    │   ├── WebhookSignatureError (401)
    │   ├── MalformedWebhookError (400)
    │   └── UnknownPrintJobError (404)
    ├── WebhookSubscriptionError (409)
    │   ├── WebhookNotRegisteredError
    │   └── InvalidWebhookRequestError (400)
    ├── ProviderError                   - print provider API failures
    │   ├── ProviderRequestError        - 4xx, never retried
    │   │   └── ProviderNotFoundError
    │   └── ProviderUnavailableError    - retry budget exhausted
    ├── ArtifactGenerationError
    └── PaymentGatewayError

Every class carries the HTTP status the API layer answers with, so routes
never have to map business errors by hand.
"""

from typing import Any, Dict, List, Optional


class StoryPrintError(Exception):
    """Base exception for all storyprint errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "details": self.details}


# =============================================================================
# VALIDATION
# =============================================================================

class InvalidOrderRequestError(StoryPrintError):
    status_code = 400


class ShippingLevelUnavailableError(InvalidOrderRequestError):
    """The requested shipping tier is not offered for this destination."""

    def __init__(self, shipping_level: str, country_code: str, available_levels: List[str]):
        message = (
            f'Shipping level "{shipping_level}" is not available for {country_code}. '
            f"Available options: {', '.join(available_levels) or 'None'}"
        )
        super().__init__(
            message,
            {
                "requested_level": shipping_level,
                "country_code": country_code,
                "available_levels": list(available_levels),
            },
        )
        self.shipping_level = shipping_level
        self.available_levels = list(available_levels)


class BookNotPrintableError(InvalidOrderRequestError):
    def __init__(self, book_id: int, generation_status: str):
        super().__init__(
            "Book must be completed before printing",
            {"book_id": book_id, "generation_status": generation_status},
        )


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(StoryPrintError):
    status_code = 404


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int):
        super().__init__("User not found", {"user_id": user_id})


class BookNotFoundError(NotFoundError):
    def __init__(self, book_id: int):
        super().__init__("Book not found", {"book_id": book_id})


class PrintOrderNotFoundError(NotFoundError):
    def __init__(self, order_id: int):
        super().__init__("Print order not found", {"order_id": order_id})


# =============================================================================
# INSUFFICIENT RESOURCE
# =============================================================================

class InsufficientCreditsError(StoryPrintError):
    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, Available: {available}",
            {
                "required": required,
                "available": available,
                "shortfall": required - available,
            },
        )
        self.required = required
        self.available = available
        self.shortfall = required - available


# =============================================================================
# STATE CONFLICT
# =============================================================================

class OrderStateConflictError(StoryPrintError):
    status_code = 409


class OrderNotCancelableError(OrderStateConflictError):
    def __init__(self, order_id: int, status: str):
        super().__init__(
            "Print order cannot be canceled at this stage",
            {"order_id": order_id, "status": status},
        )
        self.status = status


# =============================================================================
# WEBHOOK CHANNEL
# =============================================================================

class WebhookProcessingError(StoryPrintError):
    status_code = 400


class WebhookSignatureError(WebhookProcessingError):
    status_code = 401

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class MalformedWebhookError(WebhookProcessingError):
    status_code = 400


class UnknownPrintJobError(WebhookProcessingError):
    status_code = 404

    def __init__(self, provider_job_id: str):
        super().__init__(
            f"No print order found for provider job {provider_job_id}",
            {"provider_job_id": provider_job_id},
        )
        self.provider_job_id = provider_job_id


# =============================================================================
# WEBHOOK SUBSCRIPTION
# =============================================================================

class WebhookSubscriptionError(StoryPrintError):
    status_code = 409


class WebhookNotRegisteredError(WebhookSubscriptionError):
    def __init__(self):
        super().__init__("No webhook registered")


class InvalidWebhookRequestError(WebhookSubscriptionError):
    """Unknown topic or analytics range."""

    status_code = 400


# =============================================================================
# PRINT PROVIDER
# =============================================================================

class ProviderError(StoryPrintError):
    status_code = 502


class ProviderRequestError(ProviderError):
    """The provider rejected the request (4xx). Retrying will not help."""

    def __init__(self, method: str, path: str, status_code: int, body: Any = None):
        message = _provider_message(body) or f"Provider rejected {method} {path} ({status_code})"
        super().__init__(
            message,
            {"method": method, "path": path, "response_code": status_code, "body": body},
        )
        self.response_code = status_code
        self.body = body


class ProviderNotFoundError(ProviderRequestError):
    pass


class ProviderUnavailableError(ProviderError):
    """Transient failures exhausted the retry budget."""

    status_code = 503

    def __init__(self, method: str, path: str, attempts: int, last_error: str):
        super().__init__(
            f"Print provider unavailable after {attempts} attempts: {last_error}",
            {"method": method, "path": path, "attempts": attempts},
        )
        self.attempts = attempts


class ProviderResponseError(ProviderError):
    """The provider answered with something that cannot be used, or the request could not be sent."""

    def __init__(self, method: str, path: str, reason: str):
        super().__init__(
            f"Unusable print provider response for {method} {path}: {reason}",
            {"method": method, "path": path, "reason": reason},
        )


def _provider_message(body: Any) -> Optional[str]:
    if isinstance(body, dict):
        for key in ("message", "detail", "error_description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


# =============================================================================
# OTHER COLLABORATORS
# =============================================================================

class ArtifactGenerationError(StoryPrintError):
    status_code = 502


class PaymentGatewayError(StoryPrintError):
    status_code = 502

from enum import Enum


class PrintOrderStatus(str, Enum):
    CREATED = "created"
    PREPARING = "preparing"
    SUBMITTED = "submitted"
    UNPAID = "unpaid"
    PAYMENT_IN_PROGRESS = "payment_in_progress"
    PRODUCTION_DELAYED = "production_delayed"
    PRODUCTION_READY = "production_ready"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    REJECTED = "rejected"
    CANCELED = "canceled"
    FAILED_SUBMIT = "failed_submit"


TERMINAL_STATUSES = {
    PrintOrderStatus.SHIPPED,
    PrintOrderStatus.REJECTED,
    PrintOrderStatus.CANCELED,
    PrintOrderStatus.FAILED_SUBMIT,
}

NON_CANCELABLE_STATUSES = {
    PrintOrderStatus.IN_PRODUCTION,
    PrintOrderStatus.SHIPPED,
    PrintOrderStatus.REJECTED,
    PrintOrderStatus.CANCELED,
    PrintOrderStatus.FAILED_SUBMIT,
}

# Forward-only ordering for states reached through provider events.
# Terminal states are handled separately and never regress.
PROGRESS_RANK = {
    PrintOrderStatus.CREATED: 0,
    PrintOrderStatus.PREPARING: 1,
    PrintOrderStatus.SUBMITTED: 2,
    PrintOrderStatus.UNPAID: 3,
    PrintOrderStatus.PAYMENT_IN_PROGRESS: 4,
    PrintOrderStatus.PRODUCTION_DELAYED: 5,
    PrintOrderStatus.PRODUCTION_READY: 6,
    PrintOrderStatus.IN_PRODUCTION: 7,
    PrintOrderStatus.SHIPPED: 8,
}

PROVIDER_STATUS_MAP = {
    "CREATED": PrintOrderStatus.SUBMITTED,
    "UNPAID": PrintOrderStatus.UNPAID,
    "PAYMENT_IN_PROGRESS": PrintOrderStatus.PAYMENT_IN_PROGRESS,
    "PRODUCTION_DELAYED": PrintOrderStatus.PRODUCTION_DELAYED,
    "PRODUCTION_READY": PrintOrderStatus.PRODUCTION_READY,
    "IN_PRODUCTION": PrintOrderStatus.IN_PRODUCTION,
    "SHIPPED": PrintOrderStatus.SHIPPED,
    "REJECTED": PrintOrderStatus.REJECTED,
    "CANCELED": PrintOrderStatus.CANCELED,
    "CANCELLED": PrintOrderStatus.CANCELED,
}


def map_provider_status(name):
    if not name:
        return None
    return PROVIDER_STATUS_MAP.get(str(name).strip().upper())


def is_cancelable(status) -> bool:
    return PrintOrderStatus(status) not in NON_CANCELABLE_STATUSES


def is_terminal(status) -> bool:
    return PrintOrderStatus(status) in TERMINAL_STATUSES


SHIPPING_LEVELS = ["MAIL", "PRIORITY_MAIL", "GROUND", "EXPEDITED", "EXPRESS"]


class CreditTransactionType(str, Enum):
    PURCHASE = "purchase"
    USAGE = "usage"
    REFUND = "refund"


class CheckoutType(str, Enum):
    PRINT = "print"
    CREDIT_PURCHASE = "credit_purchase"
    DIGITAL_DOWNLOAD = "digital_download"

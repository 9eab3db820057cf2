from enum import Enum


class PrintEvent(str, Enum):
    ORDER_PLACED = "order_placed"
    SUBMITTED = "submitted"
    STATUS_UPDATED = "status_updated"
    IN_PRODUCTION = "in_production"
    SHIPPED = "shipped"
    REJECTED = "rejected"
    CANCELED = "canceled"
    SUBMISSION_FAILED = "submission_failed"
    REFUND_PROCESSED = "refund_processed"

from storyprint.notifications.events import PrintEvent
from storyprint.notifications.channels import Channel


NOTIFICATION_RULES = {

    PrintEvent.ORDER_PLACED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    PrintEvent.SUBMITTED: {
        Channel.EMAIL_USER: True,
    },

    PrintEvent.STATUS_UPDATED: {
        Channel.EMAIL_USER: True,
    },

    PrintEvent.IN_PRODUCTION: {
        Channel.EMAIL_USER: True,
    },

    PrintEvent.SHIPPED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    PrintEvent.REJECTED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    PrintEvent.CANCELED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    PrintEvent.SUBMISSION_FAILED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    PrintEvent.REFUND_PROCESSED: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

}


# (subject, headline, message) per event
EVENT_COPY = {
    PrintEvent.ORDER_PLACED: (
        "Print order received",
        "We received your print order",
        "Your book is being prepared for printing.",
    ),
    PrintEvent.SUBMITTED: (
        "Your book was sent to the printer",
        "Sent to the printer",
        "Your print files are ready and the order is with our print partner.",
    ),
    PrintEvent.STATUS_UPDATED: (
        "Print order update",
        "Your print order was updated",
        "There is news about your print order.",
    ),
    PrintEvent.IN_PRODUCTION: (
        "Your book is being printed",
        "In production",
        "Your book is being printed. It can no longer be canceled.",
    ),
    PrintEvent.SHIPPED: (
        "Your book has shipped",
        "On its way",
        "Your printed book has shipped.",
    ),
    PrintEvent.REJECTED: (
        "Your print order could not be printed",
        "Print order rejected",
        "Our print partner could not print your book. Your credits were refunded.",
    ),
    PrintEvent.CANCELED: (
        "Your print order was canceled",
        "Print order canceled",
        "Your print order was canceled and your credits were refunded.",
    ),
    PrintEvent.SUBMISSION_FAILED: (
        "We could not send your book to the printer",
        "Print order failed",
        "We could not prepare your book for printing. Your credits were refunded.",
    ),
    PrintEvent.REFUND_PROCESSED: (
        "Credits refunded",
        "Refund processed",
        "The credits for your print order were refunded.",
    ),
}

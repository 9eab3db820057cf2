from .events import PrintEvent
from .dispatcher import dispatch_print_event

__all__ = [
    "PrintEvent",
    "dispatch_print_event",
]

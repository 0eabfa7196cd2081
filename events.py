import logging
from datetime import datetime
from typing import Callable, Dict, List, NamedTuple

logger = logging.getLogger(__name__)

BILL_CREATED = "BILL_CREATED"
BILL_PAID = "BILL_PAID"
BILL_DELETED = "BILL_DELETED"
BILL_DUE = "BILL_DUE"
ACCOUNT_DELETED = "ACCOUNT_DELETED"
CATEGORY_DELETED = "CATEGORY_DELETED"


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event], None]


class EventBus:
    """In-process fan-out of domain events.

    Delivery is best effort: events are published after the write they
    describe has committed, each handler gets at most one call, and a
    failing handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, name: str, payload: dict) -> int:
        handlers = list(self._subscribers.get(name, []))
        if not handlers:
            return 0
        event = Event(name=name, ts=datetime.utcnow().isoformat(), payload=payload)
        delivered = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"event_handler_failed: event={name}")
                continue
            delivered += 1
        return delivered


event_bus = EventBus()

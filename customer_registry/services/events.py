"""
Customer Registry
In-process event bus.

Every successful command handled by ``command_gateway`` publishes exactly one
named event *after* its transaction has committed.  Consumers subscribe by
event name (the selector value) and must tolerate duplicates: delivery is
at-least-once from the consumer's point of view.

A failing subscriber is logged and skipped; it never affects other
subscribers or the already committed state.

Usage:
    from customer_registry.services.events import ACTIVATE_CUSTOMER, event_bus

    event_bus.subscribe(ACTIVATE_CUSTOMER, lambda event: ...)
"""

import logging
import threading
from collections import defaultdict, deque
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# ── Selector values ──────────────────────────────────────────────────────────

POST_CUSTOMER = "post-customer"
PUT_CUSTOMER = "put-customer"
PUT_ADDRESS = "put-address"
PUT_CONTACT_DETAILS = "put-contact-details"

ACTIVATE_CUSTOMER = "activate-customer"
LOCK_CUSTOMER = "lock-customer"
UNLOCK_CUSTOMER = "unlock-customer"
CLOSE_CUSTOMER = "close-customer"
REOPEN_CUSTOMER = "reopen-customer"

POST_TASK = "post-task"
PUT_TASK = "put-task"
DELETE_TASK = "delete-task"

POST_IDENTIFICATION_CARD = "post-identification-card"
PUT_IDENTIFICATION_CARD = "put-identification-card"
DELETE_IDENTIFICATION_CARD = "delete-identification-card"

POST_DOCUMENT = "post-document"
PUT_DOCUMENT = "put-document"
DELETE_DOCUMENT = "delete-document"
POST_DOCUMENT_PAGE = "post-document-page"
DELETE_DOCUMENT_PAGE = "delete-document-page"
POST_DOCUMENT_COMPLETE = "post-document-complete"


class EventBus:
    """Synchronous publish/subscribe registry keyed by event name."""

    _MAX_HISTORY = 1_000

    def __init__(self, destination: str = "customer-v1"):
        self.destination = destination
        self._subscribers = defaultdict(list)
        self._history = deque(maxlen=self._MAX_HISTORY)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, callback) -> None:
        with self._lock:
            self._subscribers[event_name].append(callback)

    def unsubscribe(self, event_name: str, callback) -> None:
        with self._lock:
            if callback in self._subscribers.get(event_name, []):
                self._subscribers[event_name].remove(callback)

    def publish(self, event_name: str, payload) -> dict:
        """Deliver *payload* to every subscriber of *event_name*.

        Returns the event envelope that was delivered.
        """
        event = {
            "destination": self.destination,
            "selector": event_name,
            "payload": payload,
            "published_at": datetime.now(timezone.utc).isoformat(),
        }
        with self._lock:
            self._history.append(event)
            callbacks = list(self._subscribers.get(event_name, []))

        logger.info("Event published: %s", event_name, extra={"event_type": event_name})

        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed: event=%s subscriber=%r", event_name, callback,
                    extra={"event_type": event_name},
                )
        return event

    def recent(self, event_name: str | None = None) -> list[dict]:
        """Return published events, oldest first, optionally filtered by name."""
        with self._lock:
            events = list(self._history)
        if event_name is None:
            return events
        return [e for e in events if e["selector"] == event_name]

    def reset(self) -> None:
        """Drop all subscribers and history (for testing)."""
        with self._lock:
            self._subscribers.clear()
            self._history.clear()


event_bus = EventBus()


def init_events(app) -> None:
    """Bind the bus destination from app config."""
    event_bus.destination = app.config.get("EVENT_DESTINATION", "customer-v1")

"""Outbound event publishing.

The scoring and policy engines never depend on a particular pub/sub
transport. They receive an ``EventPublisher`` and call
``publish(event_name, payload)``; callers decide where events go.
"""

import json
import logging
import threading
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict], None]

WILDCARD = "*"


class EventPublisher(Protocol):
    """Anything that accepts engine events."""

    def publish(self, event_name: str, payload: dict) -> None: ...


class EventBus:
    """In-process publisher that fans events out to subscribers.

    Handlers are called synchronously in subscription order. A handler that
    raises is logged and skipped so one bad subscriber cannot break the
    engine that published the event.
    """

    def __init__(self):
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe to one event name, or to every event with ``"*"``."""
        with self._lock:
            self._handlers[event_name].append(handler)

    def unsubscribe(self, event_name: str, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers.get(event_name, []):
                self._handlers[event_name].remove(handler)

    def publish(self, event_name: str, payload: dict) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event_name, [])) + list(self._handlers.get(WILDCARD, []))

        for handler in handlers:
            try:
                handler(event_name, payload)
            except Exception as e:
                logger.warning(f"Event handler for {event_name} failed: {e}")


class LoggingPublisher:
    """Writes every event to a logger at INFO level."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def publish(self, event_name: str, payload: dict) -> None:
        self.log.info(f"{event_name}: {to_json(payload)}")


class HttpEventPublisher:
    """Forwards events to an HTTP endpoint as JSON.

    Delivery failures are logged, never raised: the engines treat
    publishing as fire-and-forget.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.client = client or httpx.Client(timeout=timeout, headers=headers or {})

    def publish(self, event_name: str, payload: dict) -> None:
        body = {"event": event_name, "payload": payload, "sent_at": datetime.now().isoformat()}
        try:
            response = self.client.post(
                self.url,
                content=to_json(body),
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver event {event_name} to {self.url}: {e}")

    def close(self) -> None:
        self.client.close()


class CompositePublisher:
    """Publishes each event to several publishers in turn."""

    def __init__(self, *publishers: EventPublisher):
        self.publishers = list(publishers)

    def publish(self, event_name: str, payload: dict) -> None:
        for publisher in self.publishers:
            publisher.publish(event_name, payload)


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def to_json(payload: Any) -> str:
    """Serialize an event payload, including dataclasses that define ``to_dict``."""
    return json.dumps(payload, default=_json_default)

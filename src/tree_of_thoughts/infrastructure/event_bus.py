"""Event bus for investigation lifecycle notifications.

The orchestrator publishes a ``DomainEvent`` after every accepted mutation.
Subscribers (audit logs, dashboards, tests) never affect the protocol
outcome: a subscriber that raises is logged and skipped.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable

from tree_of_thoughts.domain.events import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


# ===================================================================== #
#  Event Bus                                                             #
# ===================================================================== #

class EventBus:
    """Thread-safe synchronous pub-sub.

    Handlers run in registration order, catch-all handlers before typed
    ones.  Typed handlers match the exact event class.

    Usage::

        bus = EventBus()
        bus.subscribe(NodesCommitted, on_commit)
        bus.publish(NodesCommitted(source_id=session_id, node_ids=("R1.A",)))
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._typed: dict[type[DomainEvent], list[EventHandler]] = defaultdict(list)
        self._catch_all: list[EventHandler] = []

    def subscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            self._typed[event_type].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Receive every published event."""
        with self._lock:
            self._catch_all.append(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._catch_all) + list(self._typed.get(type(event), []))

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %r failed on %s for %s",
                    handler, type(event).__name__, event.source_id,
                )


# ===================================================================== #
#  Event Log                                                             #
# ===================================================================== #

class EventLog:
    """Append-only in-memory record of published events.

    Wire it to a bus to keep an audit trail::

        log = EventLog()
        bus.subscribe_all(log.append)
    """

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self._lock = threading.Lock()

    def append(self, event: DomainEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        event_type: type[DomainEvent] | None = None,
        session_id: str | None = None,
    ) -> list[DomainEvent]:
        """Events filtered by type and originating session, oldest first."""
        with self._lock:
            result = list(self._events)
        if event_type is not None:
            result = [e for e in result if isinstance(e, event_type)]
        if session_id is not None:
            result = [e for e in result if e.source_id == session_id]
        return result

    @property
    def latest(self) -> DomainEvent | None:
        with self._lock:
            return self._events[-1] if self._events else None

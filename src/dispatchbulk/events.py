"""In-process notification channel for bulk operation lifecycle events.

Handlers are called synchronously in subscription order. A failing handler is
logged and skipped; emitting never raises and never waits on a reply.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], None]

WILDCARD = "*"

OPERATION_STARTED = "operation-started"
OPERATION_PROGRESS = "operation-progress"
OPERATION_COMPLETED = "operation-completed"
OPERATION_FAILED = "operation-failed"
ASSIGNMENTS_UPDATED = "assignments-updated"
ROUTES_UPDATED = "routes-updated"
STAFF_UPDATED = "staff-updated"
ASSETS_UPDATED = "assets-updated"
TEMPLATE_CREATED = "template-created"


class EventBus:
    """Fire-and-forget publish/subscribe channel."""

    def __init__(self):
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> None:
        """Register ``handler(event, payload)`` for ``event`` (or ``"*"`` for all)."""
        self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        """Remove a handler; returns False if it was not registered."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def emit(self, event: str, payload: Any = None) -> None:
        """Deliver ``payload`` to every handler of ``event`` and every wildcard handler."""
        for handler in list(self._handlers.get(event, [])) + list(
            self._handlers.get(WILDCARD, [])
        ):
            try:
                handler(event, payload)
            except Exception as e:
                logger.warning(f"Event handler {handler!r} failed for '{event}': {e}")


class RecordingEventBus(EventBus):
    """Event bus that also keeps every emitted event, for inspection."""

    def __init__(self):
        super().__init__()
        self.events: List[tuple] = []

    def emit(self, event: str, payload: Any = None) -> None:
        self.events.append((event, payload))
        super().emit(event, payload)

    def names(self) -> List[str]:
        return [event for event, _ in self.events]

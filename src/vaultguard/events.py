"""Minimal pub/sub used by the vault, its metadata cache, and the index.

Handlers are called synchronously in subscription order. A handler that
raises is logged and skipped; the event source never sees the exception.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("vaultguard.events")


@dataclass(frozen=True, eq=False)
class EventRef:
    """Handle returned by Events.on(); pass it to offref() to unsubscribe."""

    source: Events
    name: str
    callback: Callable[..., Any]


class Events:
    """Named-event emitter."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventRef]] = defaultdict(list)

    def on(self, name: str, callback: Callable[..., Any]) -> EventRef:
        ref = EventRef(self, name, callback)
        self._handlers[name].append(ref)
        return ref

    def offref(self, ref: EventRef) -> None:
        """Remove a subscription. Unknown or already-removed refs are ignored."""
        handlers = self._handlers.get(ref.name)
        if handlers and ref in handlers:
            handlers.remove(ref)

    def off_all(self) -> None:
        self._handlers.clear()

    def listener_count(self, name: str) -> int:
        return len(self._handlers.get(name, ()))

    def trigger(self, name: str, *args: Any) -> None:
        for ref in list(self._handlers.get(name, ())):
            try:
                ref.callback(*args)
            except Exception:
                logger.exception("handler for %r failed", name)

"""In-process pub/sub event bus for store and compaction notifications."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ChronicleEvent", dict[str, Any]], None | Awaitable[None]]


class ChronicleEvent(StrEnum):
    """All event types published by chronicle components.

    Typed payload definitions for each event live in
    :mod:`chronicle.events.payloads`.

    Store events fire on the owning ``InstanceStore``'s bus, either
    immediately or when the outermost ``InstanceStore.batch()`` block exits.
    Compaction events fire on the ``CompactionEngine``'s injected bus, or on
    the bus of the instance store being compacted when none was injected.
    """

    # Store
    SESSION_UPDATED = "session.updated"
    SESSION_CLEARED = "session.cleared"
    MESSAGE_UPDATED = "message.updated"
    MESSAGE_REMOVED = "message.removed"
    MESSAGE_ID_REPLACED = "message.id_replaced"
    PART_UPDATED = "part.updated"
    PART_REMOVED = "part.removed"
    PERMISSION_UPDATED = "permission.updated"
    PERMISSION_REMOVED = "permission.removed"
    USAGE_UPDATED = "usage.updated"

    # Compaction lifecycle
    COMPACTION_SUGGESTED = "compaction.suggested"
    COMPACTION_STARTED = "compaction.started"
    COMPACTION_COMPLETED = "compaction.completed"
    COMPACTION_FAILED = "compaction.failed"
    COMPACTION_UNDONE = "compaction.undone"

    # Registry
    INSTANCE_DESTROYED = "instance.destroyed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    Design decisions:
    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``asyncio.create_task()`` (fire-and-forget).
    - Handler exceptions are logged but never propagate to the publisher, so a
      faulty subscriber can never interrupt a store mutation.
    - Each ``InstanceStore`` owns its own ``EventBus`` unless one is injected.

    Example::

        bus = EventBus()

        def on_compaction(event, payload):
            print(f"Compressed {payload['affected_count']} messages")

        bus.subscribe(ChronicleEvent.COMPACTION_COMPLETED, on_compaction)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ChronicleEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._logger = logger or structlog.get_logger("chronicle.events")

    def subscribe(self, event: ChronicleEvent, handler: Handler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event: The event type to listen for.
            handler: Callable accepting ``(event, payload)``. May be sync or async.
        """
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for ALL event types."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ChronicleEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        try:
            handlers.remove(handler)
        except ValueError:
            pass

    def unsubscribe_all(self, handler: Handler) -> None:
        """Remove a handler registered with ``subscribe_all``. No-op if not found."""
        try:
            self._global_handlers.remove(handler)
        except ValueError:
            pass

    def publish(self, event: ChronicleEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Sync handlers are called immediately in registration order.
        Async handlers are scheduled as background tasks (non-blocking).
        Exceptions from any handler are logged and swallowed.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    try:
                        loop = asyncio.get_running_loop()
                        _task = loop.create_task(result)  # noqa: RUF006
                    except RuntimeError:
                        # No running event loop; drop the coroutine cleanly
                        result.close()
            except Exception as exc:
                self._logger.error(
                    "event_handler_error",
                    event_type=str(event),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(exc),
                )

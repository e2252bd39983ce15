"""
Registry of per-instance stores.

One ``MessageStoreBus`` owns the mapping from instance id to ``InstanceStore``
and broadcasts lifecycle hooks. There is no process-level default: create a
bus at application start-up and inject it into whatever needs instance
lookup (the compaction engine, transport adapters, tests).

Usage::

    bus = MessageStoreBus(config.store)
    store = bus.register_instance("workspace-1")
    unsubscribe = bus.on_instance_destroyed(lambda instance_id: print(instance_id))

    # … use store …

    bus.unregister_instance("workspace-1")   # clears state, fires hooks
    unsubscribe()
"""

from __future__ import annotations

from collections.abc import Callable

import structlog

from chronicle.events.bus import ChronicleEvent, EventBus
from chronicle.models.config import StoreConfig
from chronicle.store.instance import InstanceStore

InstanceDestroyedHandler = Callable[[str], None]
SessionClearedHandler = Callable[[str, str], None]

_logger = structlog.get_logger("chronicle.store.bus")


class MessageStoreBus:
    """
    Process-scoped registry giving each instance its own isolated store.

    No two instances ever share mutable state: each registered store gets
    its own ``EventBus`` unless ``event_bus`` is injected here, in which case
    every store publishes onto that shared bus (useful for cross-instance
    monitoring; payloads carry ids, not state).
    """

    def __init__(
        self,
        config: StoreConfig | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self._config = config or StoreConfig()
        self._event_bus = event_bus
        self._clock = clock
        self._stores: dict[str, InstanceStore] = {}
        self._teardown_handlers: list[InstanceDestroyedHandler] = []
        self._session_cleared_handlers: list[SessionClearedHandler] = []

    # ── Public API ─────────────────────────────────────────────────────────────

    def register_instance(
        self, instance_id: str, store: InstanceStore | None = None
    ) -> InstanceStore:
        """
        Return the store for *instance_id*, creating it on first registration.

        A caller-supplied ``store`` is adopted only when the id is new.
        """
        existing = self._stores.get(instance_id)
        if existing is not None:
            return existing
        resolved = store or InstanceStore(
            instance_id,
            config=self._config,
            event_bus=self._event_bus,
            clock=self._clock,
            on_session_cleared=self._notify_session_cleared,
        )
        self._stores[instance_id] = resolved
        _logger.debug("instance_registered", instance_id=instance_id)
        return resolved

    def get_or_create(self, instance_id: str) -> InstanceStore:
        return self.register_instance(instance_id)

    def get_instance(self, instance_id: str) -> InstanceStore | None:
        return self._stores.get(instance_id)

    def instance_ids(self) -> list[str]:
        return list(self._stores)

    def unregister_instance(self, instance_id: str) -> None:
        """Clear an instance's state, fire teardown hooks and forget it."""
        store = self._stores.get(instance_id)
        if store is not None:
            store.clear_instance()
            store.event_bus.publish(
                ChronicleEvent.INSTANCE_DESTROYED, {"instance_id": instance_id}
            )
        self._notify_instance_destroyed(instance_id)
        self._stores.pop(instance_id, None)
        _logger.debug("instance_unregistered", instance_id=instance_id)

    def clear_all(self) -> None:
        """Tear down every registered instance."""
        for instance_id in list(self._stores):
            self.unregister_instance(instance_id)

    # ── Hooks ──────────────────────────────────────────────────────────────────

    def on_instance_destroyed(self, handler: InstanceDestroyedHandler) -> Callable[[], None]:
        """Register a teardown hook. Returns a callable that unregisters it."""
        self._teardown_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._teardown_handlers:
                self._teardown_handlers.remove(handler)

        return unsubscribe

    def on_session_cleared(self, handler: SessionClearedHandler) -> Callable[[], None]:
        """Register a ``(instance_id, session_id)`` hook. Returns its unsubscriber."""
        self._session_cleared_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._session_cleared_handlers:
                self._session_cleared_handlers.remove(handler)

        return unsubscribe

    def _notify_session_cleared(self, instance_id: str, session_id: str) -> None:
        for handler in list(self._session_cleared_handlers):
            try:
                handler(instance_id, session_id)
            except Exception as exc:
                _logger.error(
                    "session_cleared_handler_error",
                    instance_id=instance_id,
                    session_id=session_id,
                    error=str(exc),
                )

    def _notify_instance_destroyed(self, instance_id: str) -> None:
        for handler in list(self._teardown_handlers):
            try:
                handler(instance_id)
            except Exception as exc:
                _logger.error("teardown_handler_error", instance_id=instance_id, error=str(exc))

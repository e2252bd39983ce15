"""Permission queue: FIFO approval requests with an active head and part lookup."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from chronicle.models.records import PermissionEntry, PermissionLookup

GLOBAL_KEY = "__global__"
"""Index key used when an entry has no message id or no part id."""


def _key(value: str | None) -> str:
    return value if value else GLOBAL_KEY


class PermissionQueue:
    """
    Outstanding permission requests for one instance.

    Invariants:
    - ``queue`` is ordered by ``enqueued_at`` (stable for equal timestamps).
    - At most one entry is active, and the active entry is always in ``queue``.
    - ``(message_id, part_id)`` lookups are O(1) through a two-level index.

    Mutations replace the queue tuple and index dicts rather than editing them
    in place, so snapshots handed out by ``queue`` never change underneath a
    reader.
    """

    def __init__(self) -> None:
        self._queue: tuple[PermissionEntry, ...] = ()
        self._active: PermissionEntry | None = None
        self._by_message: dict[str, dict[str, PermissionEntry]] = {}
        self._logger = structlog.get_logger("chronicle.permissions")

    @property
    def queue(self) -> tuple[PermissionEntry, ...]:
        return self._queue

    @property
    def active(self) -> PermissionEntry | None:
        return self._active

    def __len__(self) -> int:
        return len(self._queue)

    def upsert(self, entry: PermissionEntry) -> None:
        """
        Insert or replace an entry keyed by permission id.

        A replacement keeps its queue slot unless its enqueue time changed.
        The entry becomes active when nothing is active or it replaces the
        active entry.
        """
        existing = self.get(entry.id)
        if existing is not None:
            self._unindex(existing.id)
            queue = [entry if item.id == entry.id else item for item in self._queue]
        else:
            queue = [*self._queue, entry]
        queue.sort(key=lambda item: item.enqueued_at)
        self._queue = tuple(queue)
        self._index(entry)

        if self._active is None or self._active.id == entry.id:
            self._active = entry
        self._logger.debug(
            "permission_upserted",
            permission_id=entry.id,
            replaced=existing is not None,
            queue_length=len(self._queue),
        )

    def remove(self, permission_id: str) -> bool:
        """
        Remove an entry. Returns False when the id is unknown.

        Removing the active entry promotes the new queue head (or nothing).
        """
        if self.get(permission_id) is None:
            self._logger.debug("permission_remove_unknown", permission_id=permission_id)
            return False
        self._queue = tuple(item for item in self._queue if item.id != permission_id)
        self._unindex(permission_id)
        if self._active is not None and self._active.id == permission_id:
            self._active = self._queue[0] if self._queue else None
        return True

    def get(self, permission_id: str) -> PermissionEntry | None:
        for item in self._queue:
            if item.id == permission_id:
                return item
        return None

    def lookup(self, message_id: str | None, part_id: str | None) -> PermissionLookup | None:
        """Return the entry attached to an exact message/part pair, with its active flag."""
        entry = self._by_message.get(_key(message_id), {}).get(_key(part_id))
        if entry is None:
            return None
        active = self._active is not None and self._active.id == entry.id
        return PermissionLookup(entry=entry, active=active)

    def rename_message(self, old_id: str, new_id: str) -> None:
        """Re-key every entry attached to ``old_id`` onto ``new_id``."""
        if old_id == new_id:
            return
        affected = [item for item in self._queue if item.message_id == old_id]
        if not affected and old_id not in self._by_message:
            return
        for item in affected:
            self.upsert(item.model_copy(update={"message_id": new_id}))
        # Index entries whose queue item is already gone
        stale = self._by_message.pop(old_id, None)
        if stale:
            merged = dict(self._by_message.get(new_id, {}))
            for part_key, item in stale.items():
                merged.setdefault(part_key, item.model_copy(update={"message_id": new_id}))
            self._by_message = {**self._by_message, new_id: merged}

    def drop_messages(self, message_ids: Iterable[str]) -> None:
        """Remove every entry attached to any of ``message_ids``."""
        doomed = set(message_ids)
        for item in [item for item in self._queue if item.message_id in doomed]:
            self.remove(item.id)
        if doomed & self._by_message.keys():
            self._by_message = {
                key: value for key, value in self._by_message.items() if key not in doomed
            }

    def clear(self) -> None:
        self._queue = ()
        self._active = None
        self._by_message = {}

    # ── Index maintenance ──────────────────────────────────────────────────────

    def _index(self, entry: PermissionEntry) -> None:
        message_key = _key(entry.message_id)
        parts = dict(self._by_message.get(message_key, {}))
        parts[_key(entry.part_id)] = entry
        self._by_message = {**self._by_message, message_key: parts}

    def _unindex(self, permission_id: str) -> None:
        by_message: dict[str, dict[str, PermissionEntry]] = {}
        for message_key, parts in self._by_message.items():
            kept = {k: v for k, v in parts.items() if v.id != permission_id}
            if kept:
                by_message[message_key] = kept
        self._by_message = by_message

"""Compaction audit log and bounded per-session snapshot retention."""

from __future__ import annotations

import json
from collections import OrderedDict
from datetime import datetime

import structlog

from chronicle.models.compaction import CompactionEvent
from chronicle.models.snapshot import CompactionSnapshot

_SessionKey = tuple[str, str]

_logger = structlog.get_logger("chronicle.compaction.history")


class CompactionHistory:
    """
    Per-(instance, session) audit events and undo snapshots.

    Events are kept for the lifetime of the session. Snapshots are kept in
    insertion order and the oldest is evicted once a session holds more than
    ``retention`` of them; an event whose snapshot was evicted can no longer
    be undone but stays in the audit log.
    """

    def __init__(self, retention: int = 5) -> None:
        self._retention = retention
        self._events: dict[_SessionKey, list[CompactionEvent]] = {}
        self._snapshots: dict[_SessionKey, OrderedDict[str, CompactionSnapshot]] = {}

    # ── Recording ──────────────────────────────────────────────────────────────

    def record(
        self,
        instance_id: str,
        event: CompactionEvent,
        snapshot: CompactionSnapshot | None = None,
    ) -> list[str]:
        """
        Append ``event`` and retain ``snapshot``.

        Returns:
            Ids of snapshots evicted to stay within the retention window.
        """
        key = (instance_id, event.session_id)
        self._events.setdefault(key, []).append(event)
        if snapshot is None:
            return []
        snapshots = self._snapshots.setdefault(key, OrderedDict())
        snapshots[snapshot.snapshot_id] = snapshot
        evicted: list[str] = []
        while len(snapshots) > self._retention:
            snapshot_id, _ = snapshots.popitem(last=False)
            evicted.append(snapshot_id)
        if evicted:
            _logger.debug(
                "snapshots_evicted",
                instance_id=instance_id,
                session_id=event.session_id,
                evicted=evicted,
            )
        return evicted

    # ── Lookup ─────────────────────────────────────────────────────────────────

    def events(self, instance_id: str, session_id: str) -> list[CompactionEvent]:
        return list(self._events.get((instance_id, session_id), ()))

    def find_event(self, instance_id: str, event_id: str) -> CompactionEvent | None:
        for (owner, _), events in self._events.items():
            if owner != instance_id:
                continue
            for event in events:
                if event.event_id == event_id:
                    return event
        return None

    def get_snapshot(
        self, instance_id: str, session_id: str, snapshot_id: str
    ) -> CompactionSnapshot | None:
        return self._snapshots.get((instance_id, session_id), {}).get(snapshot_id)

    def nearest_snapshot_before(
        self, instance_id: str, session_id: str, timestamp: datetime
    ) -> CompactionSnapshot | None:
        """Most recent retained snapshot taken at or before ``timestamp``."""
        best: CompactionSnapshot | None = None
        for snapshot in self._snapshots.get((instance_id, session_id), {}).values():
            if snapshot.created_at <= timestamp and (
                best is None or snapshot.created_at >= best.created_at
            ):
                best = snapshot
        return best

    def snapshot_count(self, instance_id: str, session_id: str) -> int:
        return len(self._snapshots.get((instance_id, session_id), {}))

    # ── Removal ────────────────────────────────────────────────────────────────

    def remove_event(self, instance_id: str, session_id: str, event_id: str) -> bool:
        events = self._events.get((instance_id, session_id))
        if not events:
            return False
        remaining = [e for e in events if e.event_id != event_id]
        if len(remaining) == len(events):
            return False
        self._events[(instance_id, session_id)] = remaining
        return True

    def delete_snapshot(self, instance_id: str, session_id: str, snapshot_id: str) -> bool:
        snapshots = self._snapshots.get((instance_id, session_id))
        if snapshots is None or snapshot_id not in snapshots:
            return False
        del snapshots[snapshot_id]
        return True

    def clear_session(self, instance_id: str, session_id: str) -> None:
        self._events.pop((instance_id, session_id), None)
        self._snapshots.pop((instance_id, session_id), None)

    def clear_instance(self, instance_id: str) -> None:
        for key in [k for k in self._events if k[0] == instance_id]:
            del self._events[key]
        for key in [k for k in self._snapshots if k[0] == instance_id]:
            del self._snapshots[key]

    # ── Export ─────────────────────────────────────────────────────────────────

    def export_ndjson(self) -> str:
        """
        Every recorded event as newline-delimited JSON.

        Each line is the event's JSON form plus ``instance_id`` and
        ``session_id``. Sessions appear in first-compaction order; events
        within a session in recording order. Empty history exports as ``""``.
        """
        lines: list[str] = []
        for (instance_id, session_id), events in self._events.items():
            for event in events:
                record = event.model_dump(mode="json")
                record["instance_id"] = instance_id
                record["session_id"] = session_id
                lines.append(json.dumps(record, sort_keys=True))
        return "\n".join(lines)

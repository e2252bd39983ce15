"""Normalized, incrementally-updated conversation state for one instance."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import structlog

from chronicle.events.bus import ChronicleEvent, EventBus
from chronicle.ids import now_ms
from chronicle.models.config import StoreConfig
from chronicle.models.info import MessageInfo
from chronicle.models.parts import MessagePart, ToolPart, derive_part_id
from chronicle.models.records import (
    MessageRecord,
    MessageUpsertInput,
    NormalizedPartRecord,
    PartUpdateInput,
    PendingPartEntry,
    PermissionEntry,
    PermissionLookup,
    SessionRecord,
    SessionRevert,
    SessionUpsertInput,
)
from chronicle.models.snapshot import LatestTodoSnapshot, ScrollSnapshot
from chronicle.models.usage import SessionUsageState
from chronicle.store.permissions import PermissionQueue
from chronicle.store.usage import (
    apply_usage_state,
    extract_usage_entry,
    rebuild_usage_state,
    remove_usage_entries,
    remove_usage_entry,
    rename_usage_entry,
)

SessionClearedHook = Callable[[str, str], None]


class InstanceStore:
    """
    Owns every session, message and part for one conversational instance.

    All operations are synchronous and tolerant: referencing an unknown
    session, message or permission is a logged no-op, never an exception,
    because the store is fed by an unreliable asynchronous stream.

    Records are immutable pydantic models. Every mutation builds a new record
    with ``model_copy(update=...)`` and swaps it into the owning map, then
    bumps the relevant revision counters and publishes a notification.

    Revision rules:
    - Message revision +1 on each part add/update/removal and on content
      hydration; unchanged by metadata (info) writes.
    - Session revision +1 on every message-id-list change and every part
      mutation in the session; never on info writes.

    Notifications are published on ``event_bus``. Inside a ``batch()`` block
    they are queued and flushed, in order, when the outermost block exits.

    Example::

        store = InstanceStore("workspace-1")
        with store.batch():
            store.upsert_message(MessageUpsertInput(id="m1", session_id="s1", role="user"))
            store.apply_part_update(PartUpdateInput(message_id="m1", part=TextPart(text="hi")))
        store.get_session_revision("s1")  # 2
    """

    def __init__(
        self,
        instance_id: str,
        config: StoreConfig | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] | None = None,
        on_session_cleared: SessionClearedHook | None = None,
    ) -> None:
        self.instance_id = instance_id
        self.config = config or StoreConfig()
        self.event_bus = event_bus or EventBus()
        self._clock = clock or now_ms
        self._on_session_cleared = on_session_cleared
        self._logger = structlog.get_logger("chronicle.store").bind(instance_id=instance_id)
        self._batch_depth = 0
        self._queued: list[tuple[ChronicleEvent, dict[str, Any]]] = []
        self._reset_state()

    def _reset_state(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._session_order: list[str] = []
        self._messages: dict[str, MessageRecord] = {}
        self._message_info: dict[str, MessageInfo] = {}
        self._message_info_version: dict[str, int] = {}
        self._pending_parts: dict[str, tuple[PendingPartEntry, ...]] = {}
        self._session_revisions: dict[str, int] = {}
        self._permissions = PermissionQueue()
        self._usage: dict[str, SessionUsageState] = {}
        self._scroll_state: dict[str, ScrollSnapshot] = {}
        self._latest_todos: dict[str, LatestTodoSnapshot] = {}

    # ── Batching ──────────────────────────────────────────────────────────────

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Defer notifications until the outermost batch exits. Re-entrant."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                queued, self._queued = self._queued, []
                for event, payload in queued:
                    self.event_bus.publish(event, payload)

    def _notify(self, event: ChronicleEvent, payload: dict[str, Any]) -> None:
        if self._batch_depth > 0:
            self._queued.append((event, payload))
        else:
            self.event_bus.publish(event, payload)

    # ── Sessions ──────────────────────────────────────────────────────────────

    def _ensure_session(self, session_id: str) -> SessionRecord:
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        now = self._clock()
        session = SessionRecord(id=session_id, created_at=now, updated_at=now)
        self._sessions[session_id] = session
        if session_id not in self._session_order:
            self._session_order.append(session_id)
        return session

    def _bump_session_revision(self, session_id: str) -> None:
        if not session_id:
            return
        revision = self._session_revisions.get(session_id, 0) + 1
        self._session_revisions[session_id] = revision
        self._notify(
            ChronicleEvent.SESSION_UPDATED, {"session_id": session_id, "revision": revision}
        )

    def _set_session_message_ids(self, session_id: str, message_ids: Iterable[str]) -> None:
        session = self._ensure_session(session_id)
        self._sessions[session_id] = session.model_copy(
            update={"message_ids": tuple(message_ids), "updated_at": self._clock()}
        )

    def upsert_session(self, data: SessionUpsertInput) -> SessionRecord:
        """
        Create a session on first sight, or update its title/parent/revert.

        An explicit ``message_ids`` list replaces the current one and bumps
        the session revision only when it differs.
        """
        with self.batch():
            session = self._ensure_session(data.id)
            previous_ids = session.message_ids
            next_ids = (
                tuple(dict.fromkeys(data.message_ids))
                if data.message_ids is not None
                else previous_ids
            )
            self._sessions[data.id] = session.model_copy(
                update={
                    "title": data.title if data.title is not None else session.title,
                    "parent_id": data.parent_id or session.parent_id,
                    "revert": data.revert or session.revert,
                    "message_ids": next_ids,
                    "updated_at": self._clock(),
                }
            )
            if next_ids != previous_ids:
                self._bump_session_revision(data.id)
        return self._sessions[data.id]

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self._sessions.get(session_id)

    def list_sessions(self) -> list[SessionRecord]:
        """Sessions in first-seen order."""
        return [self._sessions[sid] for sid in self._session_order if sid in self._sessions]

    def get_session_revision(self, session_id: str) -> int:
        return self._session_revisions.get(session_id, 0)

    def get_session_message_ids(self, session_id: str) -> list[str]:
        session = self._sessions.get(session_id)
        return list(session.message_ids) if session else []

    def get_session_messages(self, session_id: str) -> list[MessageRecord]:
        """Message records of a session in display order, skipping unknown ids."""
        return [
            self._messages[mid]
            for mid in self.get_session_message_ids(session_id)
            if mid in self._messages
        ]

    # ── Messages ──────────────────────────────────────────────────────────────

    def _normalize_parts(
        self, message_id: str, parts: list[MessagePart] | None
    ) -> tuple[tuple[str, ...], dict[str, NormalizedPartRecord]] | None:
        if not parts:
            return None
        records: dict[str, NormalizedPartRecord] = {}
        for index, part in enumerate(parts):
            part_id = derive_part_id(message_id, part, index)
            data = part if part.id == part_id else part.model_copy(update={"id": part_id})
            records[part_id] = NormalizedPartRecord(id=part_id, data=data, revision=0)
        return tuple(records), records

    def _build_record(self, data: MessageUpsertInput, now: int) -> MessageRecord:
        previous = self._messages.get(data.id)
        normalized = self._normalize_parts(data.id, data.parts)
        bump = data.bump_revision or normalized is not None
        if previous is None:
            revision = 0
        else:
            revision = previous.revision + (1 if bump else 0)

        if normalized is not None:
            part_ids, parts = normalized
        elif previous is not None:
            part_ids, parts = previous.part_ids, previous.parts
        else:
            part_ids, parts = (), {}

        if data.created_at is not None:
            created_at = data.created_at
        else:
            created_at = previous.created_at if previous else now
        if data.is_ephemeral is not None:
            is_ephemeral = data.is_ephemeral
        else:
            is_ephemeral = previous.is_ephemeral if previous else False

        return MessageRecord(
            id=data.id,
            session_id=data.session_id,
            role=data.role,
            status=data.status,
            created_at=created_at,
            updated_at=data.updated_at if data.updated_at is not None else now,
            revision=revision,
            is_ephemeral=is_ephemeral,
            archived=previous.archived if previous else False,
            part_ids=part_ids,
            parts=parts,
        )

    def upsert_message(self, data: MessageUpsertInput) -> MessageRecord:
        """
        Idempotent create-or-update of one message.

        Attaches the id to its session (no duplicates), replays any buffered
        pending parts for it, and bumps the session revision. An archived
        message is updated in place and is not re-attached.
        """
        with self.batch():
            record = self._build_record(data, self._clock())
            self._messages[data.id] = record
            self._maybe_update_latest_todo(record)

            session = self._ensure_session(data.session_id)
            # Archived records stay out of the live list until restored
            if data.id not in session.message_ids and not record.archived:
                self._set_session_message_ids(data.session_id, (*session.message_ids, data.id))

            self._notify(
                ChronicleEvent.MESSAGE_UPDATED,
                {"session_id": data.session_id, "message_id": data.id, "revision": record.revision},
            )
            self.flush_pending_parts(data.id)
            self._bump_session_revision(data.session_id)
        return self._messages[data.id]

    def hydrate_messages(
        self,
        session_id: str,
        inputs: list[MessageUpsertInput],
        infos: Iterable[MessageInfo] | None = None,
    ) -> None:
        """
        Bulk-replace a session's known messages after a full reload.

        Each record keeps its revision unless its parts were supplied or a
        bump was requested. Supplied infos are merged into the metadata cache
        (each bumping its metadata version) and the session usage is rebuilt
        from them.
        """
        if not inputs:
            return
        with self.batch():
            self._ensure_session(session_id)
            now = self._clock()
            records = [self._build_record(data, now) for data in inputs]
            for record in records:
                self._messages[record.id] = record

            if infos is not None:
                info_list = list(infos)
                self._usage[session_id] = rebuild_usage_state(info_list)
                for info in info_list:
                    self._message_info[info.id] = info
                    self._message_info_version[info.id] = (
                        self._message_info_version.get(info.id, 0) + 1
                    )

            self._set_session_message_ids(session_id, dict.fromkeys(r.id for r in records))
            for record in records:
                self._maybe_update_latest_todo(record)
                self.flush_pending_parts(record.id)
            self._bump_session_revision(session_id)
        self._logger.debug("messages_hydrated", session_id=session_id, count=len(records))

    def get_message(self, message_id: str) -> MessageRecord | None:
        return self._messages.get(message_id)

    def remove_message(self, session_id: str, message_id: str) -> bool:
        """Delete a message and everything indexed by it. False if unknown."""
        session = self._sessions.get(session_id)
        in_session = session is not None and message_id in session.message_ids
        if message_id not in self._messages and not in_session:
            self._logger.debug("remove_message_unknown", message_id=message_id)
            return False
        with self.batch():
            if in_session:
                self._set_session_message_ids(
                    session_id, (mid for mid in session.message_ids if mid != message_id)
                )
            self._drop_messages(session_id, [message_id])
            self._notify(
                ChronicleEvent.MESSAGE_REMOVED, {"session_id": session_id, "message_id": message_id}
            )
            self._bump_session_revision(session_id)
        return True

    def _drop_messages(self, session_id: str, message_ids: list[str]) -> None:
        if not message_ids:
            return
        doomed = set(message_ids)
        for message_id in message_ids:
            self._messages.pop(message_id, None)
            self._message_info.pop(message_id, None)
            self._message_info_version.pop(message_id, None)
            self._pending_parts.pop(message_id, None)
        self._permissions.drop_messages(doomed)
        usage = self._usage.get(session_id)
        if usage is not None:
            self._usage[session_id] = remove_usage_entries(usage, message_ids)
        todo = self._latest_todos.get(session_id)
        if todo is not None and todo.message_id in doomed:
            del self._latest_todos[session_id]

    # ── Parts ─────────────────────────────────────────────────────────────────

    def apply_part_update(self, update: PartUpdateInput) -> NormalizedPartRecord | None:
        """
        Insert or replace one part by id.

        When the owning message does not exist yet the part is buffered and
        ``None`` is returned; it is replayed when the message is upserted.
        """
        message = self._messages.get(update.message_id)
        if message is None:
            self.buffer_pending_part(
                PendingPartEntry(
                    message_id=update.message_id, part=update.part, received_at=self._clock()
                )
            )
            return None

        with self.batch():
            now = self._clock()
            part_id = derive_part_id(update.message_id, update.part, len(message.part_ids))
            data = (
                update.part
                if update.part.id == part_id
                else update.part.model_copy(update={"id": part_id})
            )
            existing = message.parts.get(part_id)
            revision = existing.revision + 1 if existing else (data.version or 0)
            part_record = NormalizedPartRecord(id=part_id, data=data, revision=revision)

            part_ids = message.part_ids
            if part_id not in part_ids:
                part_ids = (*part_ids, part_id)
            record = message.model_copy(
                update={
                    "part_ids": part_ids,
                    "parts": {**message.parts, part_id: part_record},
                    "updated_at": now,
                    "revision": message.revision + (1 if update.bump_revision else 0),
                }
            )
            self._messages[message.id] = record

            if self._is_completed_todo(data):
                self._record_latest_todo(
                    record.session_id,
                    LatestTodoSnapshot(message_id=record.id, part_id=part_id, timestamp=now),
                )
            self._notify(
                ChronicleEvent.PART_UPDATED,
                {"message_id": record.id, "part_id": part_id, "revision": revision},
            )
            self._bump_session_revision(record.session_id)
        return part_record

    def remove_part(self, message_id: str, part_id: str) -> bool:
        """Delete one part from a message. False if the message or part is unknown."""
        message = self._messages.get(message_id)
        if message is None or part_id not in message.parts:
            self._logger.debug("remove_part_unknown", message_id=message_id, part_id=part_id)
            return False
        with self.batch():
            record = message.model_copy(
                update={
                    "part_ids": tuple(pid for pid in message.part_ids if pid != part_id),
                    "parts": {pid: p for pid, p in message.parts.items() if pid != part_id},
                    "updated_at": self._clock(),
                    "revision": message.revision + 1,
                }
            )
            self._messages[message_id] = record
            todo = self._latest_todos.get(record.session_id)
            if todo is not None and todo.message_id == message_id and todo.part_id == part_id:
                del self._latest_todos[record.session_id]
            self._notify(ChronicleEvent.PART_REMOVED, {"message_id": message_id, "part_id": part_id})
            self._bump_session_revision(record.session_id)
        return True

    # ── Pending buffer ────────────────────────────────────────────────────────

    def _fresh_entries(
        self, entries: Iterable[PendingPartEntry], now: int
    ) -> tuple[PendingPartEntry, ...]:
        max_age = self.config.pending_part_max_age_ms
        return tuple(entry for entry in entries if now - entry.received_at <= max_age)

    def buffer_pending_part(self, entry: PendingPartEntry) -> None:
        """Hold a part whose message does not exist yet. Stale entries are dropped."""
        existing = self._pending_parts.get(entry.message_id, ())
        fresh = self._fresh_entries(existing, self._clock())
        if len(fresh) != len(existing):
            self._logger.debug(
                "pending_parts_expired",
                message_id=entry.message_id,
                dropped=len(existing) - len(fresh),
            )
        self._pending_parts[entry.message_id] = (*fresh, entry)
        self._logger.debug(
            "pending_part_buffered", message_id=entry.message_id, buffered=len(fresh) + 1
        )

    def flush_pending_parts(self, message_id: str) -> int:
        """
        Replay buffered parts for an existing message in arrival order.

        Entries older than the configured max age are discarded. Returns the
        number of parts applied.
        """
        if message_id not in self._messages:
            return 0
        pending = self._pending_parts.pop(message_id, ())
        if not pending:
            return 0
        fresh = self._fresh_entries(pending, self._clock())
        if len(fresh) != len(pending):
            self._logger.debug(
                "pending_parts_expired", message_id=message_id, dropped=len(pending) - len(fresh)
            )
        with self.batch():
            for entry in fresh:
                self.apply_part_update(PartUpdateInput(message_id=message_id, part=entry.part))
        return len(fresh)

    def get_pending_parts(self, message_id: str) -> tuple[PendingPartEntry, ...]:
        return self._pending_parts.get(message_id, ())

    # ── Id replacement ────────────────────────────────────────────────────────

    def replace_message_id(self, old_id: str, new_id: str) -> bool:
        """
        Rename a message in place once its authoritative id is known.

        Migrates the message map, the id's position in every session list,
        the metadata cache and version, pending parts, permission entries,
        usage entries and the latest-todo pointer. No-op when the ids are
        equal or ``old_id`` is unknown.
        """
        if old_id == new_id:
            return False
        existing = self._messages.get(old_id)
        if existing is None:
            self._logger.debug("replace_message_id_unknown", old_id=old_id, new_id=new_id)
            return False

        with self.batch():
            parts = {
                pid: (
                    rec.model_copy(update={"data": rec.data.model_copy(update={"message_id": new_id})})
                    if rec.data.message_id == old_id
                    else rec
                )
                for pid, rec in existing.parts.items()
            }
            record = existing.model_copy(
                update={
                    "id": new_id,
                    "is_ephemeral": False,
                    "updated_at": self._clock(),
                    "parts": parts,
                }
            )
            del self._messages[old_id]
            self._messages[new_id] = record

            for session in list(self._sessions.values()):
                if old_id not in session.message_ids:
                    continue
                ids = list(session.message_ids)
                index = ids.index(old_id)
                if new_id in ids:
                    del ids[index]
                else:
                    ids[index] = new_id
                self._set_session_message_ids(session.id, ids)
                self._bump_session_revision(session.id)

            if old_id in self._message_info:
                info = self._message_info.pop(old_id)
                self._message_info[new_id] = info.model_copy(update={"id": new_id})
                self._message_info_version[new_id] = self._message_info_version.pop(old_id, 0)

            self._permissions.rename_message(old_id, new_id)

            for session_id, usage in list(self._usage.items()):
                self._usage[session_id] = rename_usage_entry(usage, old_id, new_id)

            for session_id, todo in list(self._latest_todos.items()):
                if todo.message_id == old_id:
                    self._latest_todos[session_id] = todo.model_copy(update={"message_id": new_id})

            moved = self._pending_parts.pop(old_id, ())
            if moved:
                merged = (*moved, *self._pending_parts.get(new_id, ()))
                self._pending_parts[new_id] = tuple(sorted(merged, key=lambda e: e.received_at))

            self._notify(
                ChronicleEvent.MESSAGE_ID_REPLACED,
                {"session_id": record.session_id, "old_id": old_id, "new_id": new_id},
            )
            self._maybe_update_latest_todo(record)
            self.flush_pending_parts(new_id)
        self._logger.debug("message_id_replaced", old_id=old_id, new_id=new_id)
        return True

    # ── Metadata cache ────────────────────────────────────────────────────────

    def set_message_info(self, message_id: str, info: MessageInfo) -> None:
        """
        Cache a message's metadata and re-derive its usage entry.

        Bumps only the metadata version; message and session revisions are
        unaffected.
        """
        if not message_id:
            return
        self._message_info[message_id] = info
        self._message_info_version[message_id] = self._message_info_version.get(message_id, 0) + 1

        usage = self._usage.get(info.session_id, SessionUsageState())
        usage = remove_usage_entry(usage, info.id)
        usage = apply_usage_state(usage, extract_usage_entry(info))
        self._usage[info.session_id] = usage
        self._notify(
            ChronicleEvent.USAGE_UPDATED,
            {
                "session_id": info.session_id,
                "actual_usage_tokens": usage.actual_usage_tokens,
                "total_cost": usage.total_cost,
            },
        )

    def get_message_info(self, message_id: str) -> MessageInfo | None:
        return self._message_info.get(message_id)

    def get_message_info_version(self, message_id: str) -> int:
        return self._message_info_version.get(message_id, 0)

    # ── Permissions ───────────────────────────────────────────────────────────

    def _permission_payload(self, permission_id: str) -> dict[str, Any]:
        active = self._permissions.active
        return {
            "permission_id": permission_id,
            "active_id": active.id if active else None,
            "queue_length": len(self._permissions),
        }

    def upsert_permission(self, entry: PermissionEntry) -> None:
        self._permissions.upsert(entry)
        self._notify(ChronicleEvent.PERMISSION_UPDATED, self._permission_payload(entry.id))

    def remove_permission(self, permission_id: str) -> bool:
        removed = self._permissions.remove(permission_id)
        if removed:
            self._notify(ChronicleEvent.PERMISSION_REMOVED, self._permission_payload(permission_id))
        return removed

    def get_permission_state(
        self, message_id: str | None = None, part_id: str | None = None
    ) -> PermissionLookup | None:
        return self._permissions.lookup(message_id, part_id)

    @property
    def active_permission(self) -> PermissionEntry | None:
        return self._permissions.active

    @property
    def permission_queue(self) -> tuple[PermissionEntry, ...]:
        return self._permissions.queue

    # ── Revert ────────────────────────────────────────────────────────────────

    def set_session_revert(self, session_id: str, revert: SessionRevert | None) -> None:
        """
        Record (or clear) a session's revert marker.

        When the marker names a message, that message and everything after it
        in the session list are removed together with their indexed state.
        """
        if not session_id:
            return
        with self.batch():
            self._ensure_session(session_id)
            if revert is not None and revert.message_id:
                self._prune_after_revert(session_id, revert.message_id)
            session = self._sessions[session_id]
            self._sessions[session_id] = session.model_copy(update={"revert": revert})

    def _prune_after_revert(self, session_id: str, revert_message_id: str) -> None:
        ids = self._sessions[session_id].message_ids
        if revert_message_id not in ids:
            return
        stop = ids.index(revert_message_id)
        removed = list(ids[stop:])
        self._set_session_message_ids(session_id, ids[:stop])
        self._drop_messages(session_id, removed)
        self._bump_session_revision(session_id)
        self._logger.info(
            "session_reverted", session_id=session_id, removed=len(removed), kept=stop
        )

    def get_session_revert(self, session_id: str) -> SessionRevert | None:
        session = self._sessions.get(session_id)
        return session.revert if session else None

    # ── Usage ─────────────────────────────────────────────────────────────────

    def rebuild_usage(self, session_id: str, infos: Iterable[MessageInfo]) -> SessionUsageState:
        usage = rebuild_usage_state(infos)
        self._usage[session_id] = usage
        self._notify(
            ChronicleEvent.USAGE_UPDATED,
            {
                "session_id": session_id,
                "actual_usage_tokens": usage.actual_usage_tokens,
                "total_cost": usage.total_cost,
            },
        )
        return usage

    def get_session_usage(self, session_id: str) -> SessionUsageState | None:
        return self._usage.get(session_id)

    # ── Scroll and todo snapshots ─────────────────────────────────────────────

    def set_scroll_snapshot(
        self, session_id: str, scope: str, *, scroll_top: float, at_bottom: bool
    ) -> ScrollSnapshot:
        snapshot = ScrollSnapshot(
            scroll_top=scroll_top, at_bottom=at_bottom, updated_at=self._clock()
        )
        self._scroll_state[f"{session_id}:{scope}"] = snapshot
        return snapshot

    def get_scroll_snapshot(self, session_id: str, scope: str) -> ScrollSnapshot | None:
        return self._scroll_state.get(f"{session_id}:{scope}")

    def get_latest_todo_snapshot(self, session_id: str) -> LatestTodoSnapshot | None:
        return self._latest_todos.get(session_id)

    def _is_completed_todo(self, part: MessagePart) -> bool:
        return (
            isinstance(part, ToolPart)
            and part.tool == self.config.todo_tool_name
            and part.state.status == "completed"
        )

    def _record_latest_todo(self, session_id: str, snapshot: LatestTodoSnapshot) -> None:
        existing = self._latest_todos.get(session_id)
        if existing is not None and existing.timestamp > snapshot.timestamp:
            return
        self._latest_todos[session_id] = snapshot

    def _maybe_update_latest_todo(self, record: MessageRecord) -> None:
        for part_id in reversed(record.part_ids):
            part = record.parts.get(part_id)
            if part is not None and self._is_completed_todo(part.data):
                self._record_latest_todo(
                    record.session_id,
                    LatestTodoSnapshot(
                        message_id=record.id, part_id=part_id, timestamp=record.updated_at
                    ),
                )
                return

    # ── Compaction support ────────────────────────────────────────────────────

    def archive_messages(self, session_id: str, message_ids: Iterable[str]) -> int:
        """
        Mark messages archived and take them out of the session's live list.

        Records stay in the message map so history remains inspectable.
        Archiving is metadata-only for the message; the session revision bumps
        once because its list changed. Returns the number archived.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return 0
        targets = {mid for mid in message_ids if mid in session.message_ids}
        if not targets:
            return 0
        with self.batch():
            for message_id in targets:
                record = self._messages.get(message_id)
                if record is not None:
                    self._messages[message_id] = record.model_copy(update={"archived": True})
            self._set_session_message_ids(
                session_id, (mid for mid in session.message_ids if mid not in targets)
            )
            self._bump_session_revision(session_id)
        return len(targets)

    def restore_messages(
        self,
        session_id: str,
        message_ids: Iterable[str],
        records: Mapping[str, MessageRecord],
        infos: Mapping[str, MessageInfo] | None = None,
    ) -> int:
        """
        Force a session back to a previously captured message set.

        Snapshot records win unconditionally over current state. Messages in
        the live list that are not part of the restored set are dropped.
        Revisions keep increasing so cached renders are invalidated. Returns
        the number of records restored.
        """
        restored_ids = tuple(dict.fromkeys(message_ids))
        keep = set(restored_ids)
        with self.batch():
            session = self._ensure_session(session_id)
            self._drop_messages(
                session_id, [mid for mid in session.message_ids if mid not in keep]
            )
            count = 0
            for message_id in restored_ids:
                snapshot_record = records.get(message_id)
                if snapshot_record is None:
                    continue
                current = self._messages.get(message_id)
                revision = snapshot_record.revision
                if current is not None:
                    revision = max(revision, current.revision + 1)
                restored = snapshot_record.model_copy(update={"revision": revision})
                self._messages[message_id] = restored
                self._maybe_update_latest_todo(restored)
                count += 1
            for message_id, info in (infos or {}).items():
                if message_id in keep:
                    self._message_info[message_id] = info
                    self._message_info_version[message_id] = (
                        self._message_info_version.get(message_id, 0) + 1
                    )
            self._set_session_message_ids(session_id, restored_ids)
            self._bump_session_revision(session_id)
        self._logger.info("messages_restored", session_id=session_id, count=count)
        return count

    def export_session_state(
        self, session_id: str
    ) -> tuple[tuple[str, ...], dict[str, MessageRecord], dict[str, MessageInfo]]:
        """
        Deep copies of a session's ordered ids, records and cached infos.

        Used to take compaction snapshots; the copies never alias live state.
        """
        ids = tuple(self.get_session_message_ids(session_id))
        records = {
            mid: self._messages[mid].model_copy(deep=True) for mid in ids if mid in self._messages
        }
        infos = {
            mid: self._message_info[mid].model_copy(deep=True)
            for mid in ids
            if mid in self._message_info
        }
        return ids, records, infos

    # ── Teardown ──────────────────────────────────────────────────────────────

    def clear_session(self, session_id: str) -> None:
        """Remove every trace of a session. Idempotent."""
        if not session_id:
            return
        message_ids = [
            record.id for record in self._messages.values() if record.session_id == session_id
        ]
        session = self._sessions.get(session_id)
        if session is not None:
            message_ids.extend(mid for mid in session.message_ids if mid not in message_ids)
        self._logger.info(
            "session_cleared", session_id=session_id, message_count=len(message_ids)
        )

        self._drop_messages(session_id, message_ids)
        self._usage.pop(session_id, None)
        self._session_revisions.pop(session_id, None)
        prefix = f"{session_id}:"
        self._scroll_state = {
            key: value for key, value in self._scroll_state.items() if not key.startswith(prefix)
        }
        self._sessions.pop(session_id, None)
        self._session_order = [sid for sid in self._session_order if sid != session_id]
        self._latest_todos.pop(session_id, None)

        self._notify(
            ChronicleEvent.SESSION_CLEARED,
            {"instance_id": self.instance_id, "session_id": session_id},
        )
        if self._on_session_cleared is not None:
            self._on_session_cleared(self.instance_id, session_id)

    def clear_instance(self) -> None:
        """Reset the store to its initial empty state. Idempotent."""
        self._reset_state()
        self._logger.info("instance_cleared")

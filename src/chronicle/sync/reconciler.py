"""
Streaming reconciliation: turn inbound transport events into store mutations.

Every function here operates on an ``InstanceStore`` passed in explicitly and
keeps no state of its own. Malformed payloads are logged and skipped; like
the store itself, reconciliation never raises on bad or out-of-order input.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from chronicle.ids import make_id, now_ms
from chronicle.models.info import MessageInfo
from chronicle.models.parts import MessagePart, parse_part
from chronicle.models.records import (
    MessageRecord,
    MessageRole,
    MessageStatus,
    MessageUpsertInput,
    NormalizedPartRecord,
    PartUpdateInput,
    Permission,
    SessionRevert,
    SessionUpsertInput,
)
from chronicle.store.instance import InstanceStore
from chronicle.sync.normalize import normalize_message_part, permission_entry

CompactingCallback = Callable[[str, bool], None]
"""Receives ``(session_id, is_compacting)`` when the server reports compaction."""

_logger = structlog.get_logger("chronicle.sync")


def _coerce_info(info: Mapping[str, Any] | MessageInfo | None) -> MessageInfo | None:
    if info is None or isinstance(info, MessageInfo):
        return info
    try:
        return MessageInfo.model_validate(info)
    except ValidationError as exc:
        _logger.warning("message_info_invalid", error=str(exc))
        return None


# ── Optimistic sends and id reconciliation ────────────────────────────────────


def create_optimistic_message(
    store: InstanceStore,
    session_id: str,
    role: MessageRole = "user",
    parts: list[MessagePart] | None = None,
    message_id: str | None = None,
) -> MessageRecord:
    """Create a locally-identified ``sending`` message before the server confirms it."""
    return store.upsert_message(
        MessageUpsertInput(
            id=message_id or make_id("local"),
            session_id=session_id,
            role=role,
            status="sending",
            parts=parts,
            is_ephemeral=True,
        )
    )


def find_pending_message_id(
    store: InstanceStore, session_id: str, role: MessageRole
) -> str | None:
    """Most recent message in the session with ``role`` that is still ``sending``."""
    for message_id in reversed(store.get_session_message_ids(session_id)):
        record = store.get_message(message_id)
        if record is None or record.session_id != session_id:
            continue
        if record.role == role and record.status == "sending":
            return record.id
    return None


def reconcile_message_id(
    store: InstanceStore, session_id: str, role: MessageRole, message_id: str
) -> bool:
    """
    Adopt ``message_id`` for a pending optimistic message, if there is one.

    Returns True when an optimistic record was renamed. When the id is already
    known, or no pending message exists, nothing changes and the caller treats
    the id as a fresh message.
    """
    if store.get_message(message_id) is not None:
        return False
    pending_id = find_pending_message_id(store, session_id, role)
    if pending_id is None or pending_id == message_id:
        return False
    _logger.debug("optimistic_message_confirmed", pending_id=pending_id, message_id=message_id)
    return store.replace_message_id(pending_id, message_id)


def upsert_message_info(
    store: InstanceStore,
    info: MessageInfo,
    status: MessageStatus = "complete",
    bump_revision: bool = False,
    is_ephemeral: bool | None = None,
) -> MessageRecord:
    """Upsert the message an info describes, then cache the info itself."""
    created_at = info.time.created if info.time.created is not None else now_ms()
    record = store.upsert_message(
        MessageUpsertInput(
            id=info.id,
            session_id=info.session_id,
            role=info.role,
            status=status,
            created_at=created_at,
            updated_at=info.time.completed or created_at,
            bump_revision=bump_revision,
            is_ephemeral=is_ephemeral,
        )
    )
    store.set_message_info(info.id, info)
    return record


# ── Event handlers ────────────────────────────────────────────────────────────


def handle_message_updated(
    store: InstanceStore, raw_info: Mapping[str, Any] | MessageInfo
) -> MessageRecord | None:
    """``message.created`` / ``message.updated``: upsert the message and its info."""
    info = _coerce_info(raw_info)
    if info is None:
        return None
    status: MessageStatus = "error" if info.error else "complete"
    with store.batch():
        reconcile_message_id(store, info.session_id, info.role, info.id)
        return upsert_message_info(
            store, info, status=status, bump_revision=True, is_ephemeral=False
        )


def handle_part_updated(
    store: InstanceStore,
    raw_part: Mapping[str, Any],
    raw_info: Mapping[str, Any] | MessageInfo | None = None,
) -> NormalizedPartRecord | None:
    """
    ``message.part.updated``: apply one streamed part.

    When the parent message is unknown locally, a pending optimistic message
    is renamed to it if possible; otherwise an ephemeral ``streaming``
    message is created so the part has somewhere to land.
    """
    info = _coerce_info(raw_info)
    normalized = normalize_message_part(raw_part)
    session_id = (
        normalized.get("sessionID") or normalized.get("sessionId") or (info.session_id if info else None)
    )
    message_id = (
        normalized.get("messageID") or normalized.get("messageId") or (info.id if info else None)
    )
    if not session_id or not message_id:
        _logger.debug("part_without_parent", part_id=normalized.get("id"))
        return None
    try:
        part = parse_part({**normalized, "sessionID": session_id, "messageID": message_id})
    except ValidationError as exc:
        _logger.warning("part_invalid", message_id=message_id, error=str(exc))
        return None

    role: MessageRole = info.role if info else "assistant"
    with store.batch():
        if store.get_message(message_id) is None:
            reconcile_message_id(store, session_id, role, message_id)
        if store.get_message(message_id) is None:
            created_at = info.time.created if info and info.time.created else now_ms()
            store.upsert_message(
                MessageUpsertInput(
                    id=message_id,
                    session_id=session_id,
                    role=role,
                    status="streaming",
                    created_at=created_at,
                    updated_at=created_at,
                    is_ephemeral=True,
                )
            )
        if info is not None:
            upsert_message_info(store, info, status="streaming")
        return store.apply_part_update(PartUpdateInput(message_id=message_id, part=part))


def handle_part_removed(store: InstanceStore, properties: Mapping[str, Any]) -> bool:
    message_id = properties.get("messageID") or properties.get("messageId")
    part_id = properties.get("partID") or properties.get("partId")
    if not message_id or not part_id:
        return False
    return store.remove_part(message_id, part_id)


def handle_message_removed(store: InstanceStore, properties: Mapping[str, Any]) -> bool:
    session_id = properties.get("sessionID") or properties.get("sessionId")
    message_id = properties.get("messageID") or properties.get("messageId")
    if not session_id or not message_id:
        return False
    return store.remove_message(session_id, message_id)


def handle_permission_updated(store: InstanceStore, raw: Mapping[str, Any]) -> bool:
    try:
        permission = Permission.model_validate(raw)
    except ValidationError as exc:
        _logger.warning("permission_invalid", error=str(exc))
        return False
    store.upsert_permission(permission_entry(permission, now_ms()))
    return True


def handle_permission_replied(store: InstanceStore, properties: Mapping[str, Any]) -> bool:
    permission_id = properties.get("permissionID") or properties.get("permissionId")
    if not permission_id:
        return False
    return store.remove_permission(permission_id)


def handle_session_updated(
    store: InstanceStore,
    info: Mapping[str, Any],
    on_compacting: CompactingCallback | None = None,
) -> None:
    """``session.updated``: title/parent, revert marker and remote compaction flag."""
    session_id = info.get("id")
    if not session_id:
        return
    time_info = info.get("time") or {}
    compacting = time_info.get("compacting")
    if on_compacting is not None:
        if isinstance(compacting, (int, float)) and not isinstance(compacting, bool):
            on_compacting(session_id, compacting > 0)
        else:
            on_compacting(session_id, bool(compacting))

    raw_revert = info.get("revert")
    revert = SessionRevert.model_validate(raw_revert) if raw_revert else None
    with store.batch():
        store.upsert_session(
            SessionUpsertInput(
                id=session_id,
                title=info.get("title") or None,
                parent_id=info.get("parentID") or info.get("parentId"),
            )
        )
        store.set_session_revert(session_id, revert)


def seed_session_messages(
    store: InstanceStore,
    session_id: str,
    messages: list[Mapping[str, Any]],
) -> None:
    """
    Hydrate a session from a full reload.

    ``messages`` is the server's list of ``{"info": {...}, "parts": [...]}``
    entries in display order.
    """
    inputs: list[MessageUpsertInput] = []
    infos: list[MessageInfo] = []
    for entry in messages:
        info = _coerce_info(entry.get("info"))
        if info is None:
            continue
        parts: list[MessagePart] = []
        for raw_part in entry.get("parts") or []:
            try:
                parts.append(parse_part(normalize_message_part(raw_part)))
            except ValidationError as exc:
                _logger.warning("part_invalid", message_id=info.id, error=str(exc))
        infos.append(info)
        created_at = info.time.created
        inputs.append(
            MessageUpsertInput(
                id=info.id,
                session_id=session_id,
                role=info.role,
                status="error" if info.error else "complete",
                parts=parts or None,
                created_at=created_at,
                updated_at=info.time.completed or created_at,
                is_ephemeral=False,
            )
        )
    store.hydrate_messages(session_id, inputs, infos)


# ── Dispatcher ────────────────────────────────────────────────────────────────


def apply_event(
    store: InstanceStore,
    event: Mapping[str, Any],
    on_compacting: CompactingCallback | None = None,
) -> bool:
    """
    Apply one ``{"type": ..., "properties": {...}}`` transport event.

    The whole event runs inside one store batch so subscribers observe a
    consistent state. Returns False for unrecognised or incomplete events.
    """
    event_type = event.get("type")
    props = event.get("properties") or {}
    with store.batch():
        if event_type in ("message.created", "message.updated"):
            info = props.get("info")
            return info is not None and handle_message_updated(store, info) is not None
        if event_type == "message.part.updated":
            part = props.get("part")
            if not part:
                return False
            handle_part_updated(store, part, props.get("message"))
            return True
        if event_type == "message.part.removed":
            return handle_part_removed(store, props)
        if event_type == "message.removed":
            return handle_message_removed(store, props)
        if event_type == "permission.updated":
            return handle_permission_updated(store, props)
        if event_type == "permission.replied":
            return handle_permission_replied(store, props)
        if event_type == "session.updated":
            info = props.get("info")
            if not info:
                return False
            handle_session_updated(store, info, on_compacting)
            return True
        if event_type == "session.deleted":
            info = props.get("info") or {}
            session_id = info.get("id") or props.get("sessionID")
            if not session_id:
                return False
            store.clear_session(session_id)
            return True
    _logger.debug("event_ignored", event_type=event_type)
    return False

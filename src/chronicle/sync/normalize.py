"""Normalization of raw inbound payloads before they reach the store."""

from __future__ import annotations

import html
from collections.abc import Mapping
from typing import Any

from chronicle.models.records import Permission, PermissionEntry

_CALL_ID_KEYS = ("callID", "callId", "toolCallID", "toolCallId")
_PERMISSION_METADATA_KEYS = ("partId", "partID", "callID", "callId")


def _decode_segment(segment: Any) -> Any:
    if isinstance(segment, str):
        return html.unescape(segment)
    if isinstance(segment, Mapping):
        updated = dict(segment)
        for key in ("text", "value"):
            if isinstance(updated.get(key), str):
                updated[key] = html.unescape(updated[key])
        if isinstance(updated.get("content"), list):
            updated["content"] = [_decode_segment(item) for item in updated["content"]]
        return updated
    return segment


def derive_tool_call_id(part: Mapping[str, Any]) -> str | None:
    """Return the upstream call id of a raw tool part, if it carries one."""
    if part.get("type") != "tool":
        return None
    for key in _CALL_ID_KEYS:
        value = part.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_message_part(part: Mapping[str, Any]) -> dict[str, Any]:
    """
    Prepare a raw part payload for validation.

    Tool parts without an id take their call id as id. Text parts have HTML
    entities decoded in every segment shape (plain string, ``text``/``value``
    keys, ``content`` arrays, ``thinking.content``). The input is not mutated.
    """
    normalized = dict(part)
    if not normalized.get("id"):
        call_id = derive_tool_call_id(normalized)
        if call_id:
            normalized["id"] = call_id

    if normalized.get("type") != "text":
        return normalized

    normalized.pop("renderCache", None)
    text = normalized.get("text")
    if isinstance(text, str):
        normalized["text"] = html.unescape(text)
    elif isinstance(text, Mapping):
        normalized["text"] = _decode_segment(text)

    if isinstance(normalized.get("content"), list):
        normalized["content"] = [_decode_segment(item) for item in normalized["content"]]

    thinking = normalized.get("thinking")
    if isinstance(thinking, Mapping) and isinstance(thinking.get("content"), list):
        normalized["thinking"] = {
            **thinking,
            "content": [_decode_segment(item) for item in thinking["content"]],
        }
    return normalized


def permission_part_id(permission: Permission) -> str | None:
    """The part a permission refers to: its call id, else a metadata hint."""
    if permission.call_id:
        return permission.call_id
    for key in _PERMISSION_METADATA_KEYS:
        value = permission.metadata.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def permission_entry(permission: Permission, now: int) -> PermissionEntry:
    """Wrap a permission for the queue, enqueued at its creation time when known."""
    created = permission.time.get("created")
    return PermissionEntry(
        permission=permission,
        message_id=permission.message_id,
        part_id=permission_part_id(permission),
        enqueued_at=int(created) if isinstance(created, (int, float)) else now,
    )

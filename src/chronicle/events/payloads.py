"""Typed payload definitions for each ChronicleEvent.

Each event carries a payload dict. This module defines a ``TypedDict`` per
event so handlers can use static type checkers rather than guessing keys.

Usage example::

    from chronicle.events.bus import ChronicleEvent
    from chronicle.events.payloads import SessionUpdatedPayload

    def on_session(event: ChronicleEvent, payload: SessionUpdatedPayload) -> None:
        rerender(payload["session_id"], payload["revision"])

    store.event_bus.subscribe(ChronicleEvent.SESSION_UPDATED, on_session)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# ── Store ─────────────────────────────────────────────────────────────────────


class SessionUpdatedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.SESSION_UPDATED`."""

    session_id: str
    revision: int
    """The session revision after the bump."""


class SessionClearedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.SESSION_CLEARED`."""

    instance_id: str
    session_id: str


class MessageUpdatedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.MESSAGE_UPDATED` and ``MESSAGE_REMOVED``."""

    session_id: str
    message_id: str
    revision: NotRequired[int]


class MessageIdReplacedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.MESSAGE_ID_REPLACED`."""

    session_id: str
    old_id: str
    new_id: str


class PartUpdatedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.PART_UPDATED` and ``PART_REMOVED``."""

    message_id: str
    part_id: str
    revision: NotRequired[int]


class PermissionPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.PERMISSION_UPDATED` and ``PERMISSION_REMOVED``."""

    permission_id: str
    active_id: str | None
    """Id of the active permission after the change, if any."""
    queue_length: int


class UsageUpdatedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.USAGE_UPDATED`."""

    session_id: str
    actual_usage_tokens: int
    total_cost: float


# ── Compaction ────────────────────────────────────────────────────────────────


class CompactionSuggestedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.COMPACTION_SUGGESTED`."""

    instance_id: str
    session_id: str
    usage_percent: float
    urgency: str


class CompactionStartedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.COMPACTION_STARTED`."""

    instance_id: str
    session_id: str
    mode: str
    trigger_reason: str


class CompactionCompletedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.COMPACTION_COMPLETED`.

    All fields from :class:`~chronicle.models.compaction.CompactionEvent`
    serialized via ``model_dump(mode="json")``, plus ``instance_id``.
    """

    instance_id: str
    event_id: str
    session_id: str
    mode: str
    token_before: int
    token_after: int
    snapshot_id: str | None
    affected_count: int


class CompactionFailedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.COMPACTION_FAILED`."""

    instance_id: str
    session_id: str
    error: str


class CompactionUndonePayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.COMPACTION_UNDONE`."""

    instance_id: str
    session_id: str
    event_id: str
    restored_message_count: int


# ── Registry ──────────────────────────────────────────────────────────────────


class InstanceDestroyedPayload(TypedDict):
    """Payload for :attr:`ChronicleEvent.INSTANCE_DESTROYED`."""

    instance_id: str

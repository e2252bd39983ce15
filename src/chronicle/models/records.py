"""Normalized records owned by an instance store."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from chronicle.models.parts import MessagePart

MessageRole = Literal["user", "assistant"]
MessageStatus = Literal["sending", "sent", "streaming", "complete", "error"]


class _Record(BaseModel):
    """Immutable record; updates go through ``model_copy(update=...)``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)


# ── Sessions ──────────────────────────────────────────────────────────────────


class SessionRevert(_Record):
    """Point a session was rolled back to."""

    message_id: str | None = Field(
        default=None, validation_alias=AliasChoices("messageID", "messageId", "message_id")
    )
    part_id: str | None = Field(
        default=None, validation_alias=AliasChoices("partID", "partId", "part_id")
    )
    snapshot: str | None = None
    diff: str | None = None


class SessionRecord(_Record):
    """
    One conversation thread.

    ``parent_id`` is set for child task sessions. ``message_ids`` is the
    authoritative display order and only changes through store operations.
    """

    id: str
    title: str | None = None
    parent_id: str | None = None
    message_ids: tuple[str, ...] = ()
    revert: SessionRevert | None = None
    created_at: int = 0
    updated_at: int = 0


# ── Messages and parts ────────────────────────────────────────────────────────


class NormalizedPartRecord(_Record):
    """A part plus its per-part revision counter."""

    id: str
    data: MessagePart
    revision: int = 0


class MessageRecord(_Record):
    """
    Normalized representation of one conversational turn.

    ``revision`` increases by exactly one per content-affecting mutation.
    ``part_ids`` preserves arrival order and never contains duplicates.
    """

    id: str
    session_id: str
    role: MessageRole
    status: MessageStatus = "complete"
    created_at: int = 0
    updated_at: int = 0
    revision: int = 0
    is_ephemeral: bool = False
    archived: bool = False
    """Set by compaction on compressed messages that left the live view."""
    part_ids: tuple[str, ...] = ()
    parts: dict[str, NormalizedPartRecord] = Field(default_factory=dict)

    def ordered_parts(self) -> list[NormalizedPartRecord]:
        """Return part records in display order."""
        return [self.parts[pid] for pid in self.part_ids if pid in self.parts]


class PendingPartEntry(_Record):
    """A part that arrived before its parent message."""

    message_id: str
    part: MessagePart
    received_at: int


# ── Store inputs ──────────────────────────────────────────────────────────────


class SessionUpsertInput(BaseModel):
    """Fields accepted by ``InstanceStore.upsert_session``. ``None`` means unchanged."""

    id: str
    title: str | None = None
    parent_id: str | None = None
    message_ids: list[str] | None = None
    revert: SessionRevert | None = None


class MessageUpsertInput(BaseModel):
    """
    Fields accepted by ``InstanceStore.upsert_message``.

    ``None`` fields fall back to the previous record. Supplying ``parts``
    replaces the message's parts wholesale.
    """

    id: str
    session_id: str
    role: MessageRole
    status: MessageStatus = "complete"
    parts: list[MessagePart] | None = None
    created_at: int | None = None
    updated_at: int | None = None
    is_ephemeral: bool | None = None
    bump_revision: bool = False


class PartUpdateInput(BaseModel):
    """Argument to ``InstanceStore.apply_part_update``."""

    message_id: str
    part: MessagePart
    bump_revision: bool = True


# ── Permissions ───────────────────────────────────────────────────────────────


class Permission(BaseModel):
    """An approval request raised by a tool call. Unknown upstream keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: str = ""
    title: str = ""
    session_id: str | None = Field(
        default=None, validation_alias=AliasChoices("sessionID", "sessionId", "session_id")
    )
    message_id: str | None = Field(
        default=None, validation_alias=AliasChoices("messageID", "messageId", "message_id")
    )
    call_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("callID", "callId", "toolCallID", "toolCallId", "call_id"),
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    time: dict[str, Any] = Field(default_factory=dict)


class PermissionEntry(_Record):
    """A queued permission request and the message/part it is attached to."""

    permission: Permission
    message_id: str | None = None
    part_id: str | None = None
    enqueued_at: int = 0

    @property
    def id(self) -> str:
        return self.permission.id


class PermissionLookup(_Record):
    """Result of a ``(message_id, part_id)`` permission lookup."""

    entry: PermissionEntry
    active: bool

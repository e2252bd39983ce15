"""Point-in-time snapshot models: compaction undo state, scroll and todo pointers."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from chronicle.models.info import MessageInfo
from chronicle.models.records import MessageRecord


class CompactionSnapshot(BaseModel):
    """Deep copy of a session's message set taken before a destructive compaction.

    Attributes:
        snapshot_id: Identifier referenced by the matching ``CompactionEvent``.
        session_id: Session the snapshot was taken from.
        created_at: When the snapshot was taken (UTC).
        message_ids: The session's ordered message ids at snapshot time.
        messages: Message records keyed by id. Records are copies; mutating the
            store afterwards never changes them.
        infos: Cached message metadata keyed by id, restored alongside records.
    """

    model_config = ConfigDict(frozen=True)

    snapshot_id: str
    session_id: str
    created_at: datetime
    message_ids: tuple[str, ...]
    messages: dict[str, MessageRecord] = Field(default_factory=dict)
    infos: dict[str, MessageInfo] = Field(default_factory=dict)

    @property
    def message_count(self) -> int:
        return len(self.message_ids)


class ScrollSnapshot(BaseModel):
    """Saved scroll position for one session view scope."""

    model_config = ConfigDict(frozen=True)

    scroll_top: float = 0.0
    at_bottom: bool = True
    updated_at: int = 0


class LatestTodoSnapshot(BaseModel):
    """Pointer to the most recent completed todo-list tool part in a session."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    part_id: str
    timestamp: int

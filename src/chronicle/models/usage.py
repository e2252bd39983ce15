"""Token and cost accounting models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UsageEntry(BaseModel):
    """Per-message token/cost snapshot derived from an assistant message's info."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    combined_tokens: int = 0
    cost: float = 0.0
    timestamp: int = 0
    has_context_usage: bool = False


class SessionUsageState(BaseModel):
    """
    Running totals for one session.

    ``latest_message_id`` points at the entry with the greatest timestamp;
    ``actual_usage_tokens`` is that entry's combined token figure, i.e. the
    best available measure of the current context size.
    """

    model_config = ConfigDict(frozen=True)

    entries: dict[str, UsageEntry] = Field(default_factory=dict)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_reasoning_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cache_write_tokens: int = 0
    total_cost: float = 0.0
    actual_usage_tokens: int = 0
    latest_message_id: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens + self.total_reasoning_tokens

    @property
    def latest(self) -> UsageEntry | None:
        if self.latest_message_id is None:
            return None
        return self.entries.get(self.latest_message_id)

"""Upstream per-message metadata ("info") kept in the store's side cache."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class CacheTokens(BaseModel):
    read: int = 0
    write: int = 0


class InfoTokens(BaseModel):
    """Token counts reported for one assistant turn."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    cache: CacheTokens = Field(default_factory=CacheTokens)

    @property
    def is_empty(self) -> bool:
        return not (
            self.input or self.output or self.reasoning or self.cache.read or self.cache.write
        )


class InfoTime(BaseModel):
    created: int | None = None
    completed: int | None = None


class MessageInfo(BaseModel):
    """
    Metadata for one message as reported by the server.

    Only the fields the store reasons about are typed; everything else is kept
    as extra attributes so the cache round-trips the upstream payload.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    session_id: str = Field(validation_alias=AliasChoices("sessionID", "sessionId", "session_id"))
    role: Literal["user", "assistant"]
    time: InfoTime = Field(default_factory=InfoTime)
    tokens: InfoTokens | None = None
    cost: float = 0.0
    summary: bool = False
    """True for messages authored by a compaction/summarisation pass."""
    mode: str | None = None
    error: dict[str, Any] | None = None
    model_id: str | None = Field(
        default=None, validation_alias=AliasChoices("modelID", "modelId", "model_id")
    )
    provider_id: str | None = Field(
        default=None, validation_alias=AliasChoices("providerID", "providerId", "provider_id")
    )

    @property
    def is_summary(self) -> bool:
        return self.summary or self.mode == "compaction"

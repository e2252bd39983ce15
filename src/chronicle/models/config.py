"""Configuration models for the chronicle store and compaction engine."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class CompactionConfig(BaseModel):
    """Configuration for the compaction engine."""

    auto_compact_enabled: bool = True
    """Whether crossing ``auto_compact_threshold`` may start compaction on its own."""

    auto_compact_threshold: int = Field(
        default=75,
        ge=1,
        le=100,
        description="Percentage of the context window at which compaction is suggested.",
    )

    warning_threshold: float = Field(
        default=0.8,
        ge=0.1,
        le=1.0,
        description=(
            "Fraction of the context window at which the send path warns that the "
            "next response may not fit (usage + output limit >= context limit)."
        ),
    )

    user_preference: Literal["auto", "ask", "never"] = Field(
        default="ask",
        description=(
            "'auto' compacts without asking, 'ask' only raises the suggested state, "
            "'never' disables suggestions entirely."
        ),
    )

    min_messages: int = Field(
        default=5,
        ge=0,
        description="Sessions with this many messages or fewer are never compacted.",
    )

    recent_messages_to_keep: int = Field(
        default=10,
        ge=1,
        description="Most recent messages always retained verbatim.",
    )

    overlap_size: int = Field(
        default=5,
        ge=0,
        description="Extra messages retained before the recent window for continuity.",
    )

    system_messages_to_keep: int = Field(
        default=2,
        ge=0,
        description="Number of trailing system messages always retained.",
    )

    error_messages_to_keep: int = Field(
        default=3,
        ge=0,
        description="Number of trailing error messages always retained.",
    )

    preserve_file_operations: bool = True
    """Retain every message classified as a file operation."""

    preserve_decisions: bool = True
    """Retain every message classified as a decision."""

    damping_factor: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description=(
            "Fraction of the compressed share of messages assumed to be reclaimed "
            "when estimating token_after."
        ),
    )

    current_state_max_chars: int = Field(
        default=200,
        ge=20,
        description="Length cap for the 'current state' tail in structured summaries.",
    )

    summary_max_chars: int = Field(
        default=4_000,
        ge=200,
        description="Length cap for the rendered human-readable summary message.",
    )

    undo_retention_window: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Snapshots retained per session; the oldest is evicted first.",
    )

    prune_reclaim_threshold: int = Field(
        default=20_000,
        ge=1,
        description="Prune stops selecting parts once this many tokens would be reclaimed.",
    )

    prune_part_min_tokens: int = Field(
        default=200,
        ge=1,
        description="Text and reasoning parts at or above this size are prunable.",
    )

    prune_placeholder: str = "[content pruned to save context]"
    """Replacement content written into pruned parts."""

    protected_tools: list[str] = Field(
        default_factory=lambda: ["skill", "execute"],
        description="Tool names whose output is never pruned.",
    )

    @model_validator(mode="after")
    def validate_placeholder(self) -> CompactionConfig:
        if not self.prune_placeholder:
            raise ValueError("prune_placeholder must not be empty")
        return self


class StoreConfig(BaseModel):
    """Configuration for the normalized in-memory store."""

    pending_part_max_age_ms: int = Field(
        default=30_000,
        ge=0,
        description=(
            "Buffered parts older than this are dropped the next time their "
            "message's buffer is inspected."
        ),
    )

    todo_tool_name: str = "todowrite"
    """Tool whose completed parts are tracked as the session's latest todo list."""


class ChronicleConfig(BaseModel):
    """
    Top-level configuration for a store bus and its compaction engine.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = ChronicleConfig(
            compaction=CompactionConfig(recent_messages_to_keep=20, user_preference="auto"),
            store=StoreConfig(pending_part_max_age_ms=10_000),
        )
    """

    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @classmethod
    def default(cls) -> ChronicleConfig:
        """Return a config instance with all defaults."""
        return cls()


class ModelInfo(BaseModel):
    """Resolved model metadata used for budget calculations."""

    model_id: str
    provider_id: str = ""
    context_limit: int = Field(
        default=200_000,
        description="Total input + output token limit for this model.",
    )
    max_output_tokens: int = Field(
        default=8_192,
        description="Maximum output tokens for a single response.",
    )
    encoding: Literal["cl100k_base", "o200k_base", "claude_heuristic", "unknown"] = "cl100k_base"

    @classmethod
    def from_model_string(cls, model: str) -> ModelInfo:
        """
        Create a ModelInfo by heuristically parsing a model string.

        Supports ``provider/model`` strings like ``anthropic/claude-sonnet-4``,
        ``gpt-4o``, ``openai/gpt-4-turbo``, etc.
        """
        lower = model.lower()
        provider = ""
        model_name = lower

        if "/" in lower:
            provider, model_name = lower.split("/", 1)

        if "claude" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "anthropic",
                context_limit=200_000,
                max_output_tokens=32_000 if "opus" in model_name else 8_192,
                encoding="claude_heuristic",
            )
        if model_name.startswith(("o1", "o3", "o4", "gpt-4o", "gpt-5")):
            return cls(
                model_id=model,
                provider_id=provider or "openai",
                context_limit=200_000 if model_name.startswith("o") else 128_000,
                max_output_tokens=100_000 if model_name.startswith("o") else 16_384,
                encoding="o200k_base",
            )
        if "gpt-4" in model_name or "gpt-3" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "openai",
                context_limit=128_000,
                max_output_tokens=4_096,
                encoding="cl100k_base",
            )
        if "gemini" in model_name:
            return cls(
                model_id=model,
                provider_id=provider or "google",
                context_limit=1_000_000,
                max_output_tokens=8_192,
                encoding="cl100k_base",
            )
        return cls(
            model_id=model,
            provider_id=provider,
            context_limit=128_000,
            max_output_tokens=4_096,
            encoding="unknown",
        )

"""Compaction audit, summary and result models plus their structural validators."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

CompactionMode = Literal["prune", "compact"]
TriggerReason = Literal["overflow", "scheduled", "manual"]


class CompactionState(StrEnum):
    """Per-session compaction state machine."""

    IDLE = "idle"
    SUGGESTED = "suggested"
    COMPACTING = "compacting"


class CompactionValidationError(ValueError):
    """Raised when a compaction event, summary or result fails its structural check."""

    def __init__(self, kind: str, errors: list[str]) -> None:
        self.kind = kind
        self.errors = errors
        super().__init__(f"Invalid {kind}: {'; '.join(errors)}")


# ── Structured summary ────────────────────────────────────────────────────────


class FileOperation(BaseModel):
    """A file touched during the compressed span."""

    path: str = Field(min_length=1)
    action: str = Field(min_length=1)
    notes: str = ""
    decision_id: str | None = None


class KeyDecision(BaseModel):
    id: str = Field(min_length=1)
    topic: str = ""
    decision: str = Field(min_length=1)
    rationale: str = Field(min_length=1)
    actor: Literal["agent", "user"]


class ErrorResolution(BaseModel):
    error: str = Field(min_length=1)
    resolution: str | None = None


class Artifact(BaseModel):
    type: str = Field(min_length=1)
    uri: str = Field(min_length=1)
    notes: str = ""


class Provenance(BaseModel):
    model: str = Field(min_length=1)
    token_count: int = Field(default=0, ge=0)


class StructuredSummary(BaseModel):
    """
    Machine-readable digest of a compressed span of conversation.

    Secret redaction counts are deliberately absent: redactions are logged,
    never stored alongside the summary.
    """

    timestamp: datetime
    summary_type: Literal["tierA_short", "tierB_detailed"] = "tierB_detailed"
    what_was_done: list[str] = Field(min_length=1)
    user_goals: list[str] = Field(default_factory=list)
    files: list[FileOperation] = Field(default_factory=list)
    current_state: str = Field(min_length=1)
    key_decisions: list[KeyDecision] = Field(default_factory=list)
    errors: list[ErrorResolution] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    blockers: list[str] = Field(default_factory=list)
    artifacts: list[Artifact] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    provenance: Provenance
    aggressive: bool = False


def create_default_structured_summary(aggressive: bool = False) -> StructuredSummary:
    """Minimal valid summary used when nothing could be extracted."""
    return StructuredSummary(
        timestamp=datetime.now(UTC),
        summary_type="tierA_short",
        what_was_done=["Session compaction completed"],
        current_state="Session context has been compacted",
        provenance=Provenance(model="system", token_count=0),
        aggressive=aggressive,
    )


# ── Audit event and results ───────────────────────────────────────────────────


class CompactionEvent(BaseModel):
    """Audit record appended to a session's compaction history."""

    event_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    timestamp: datetime
    actor: Literal["user", "auto"]
    trigger_reason: TriggerReason
    mode: CompactionMode = "compact"
    token_before: int = Field(ge=0)
    token_after: int = Field(ge=0)
    model_used: str = Field(min_length=1)
    cost_estimate: float = Field(default=0.0, ge=0)
    snapshot_id: str | None = None
    summary_message_id: str | None = None
    affected_count: int = Field(default=0, ge=0)
    """Messages compressed (compact) or parts pruned (prune)."""


class CompactionResult(BaseModel):
    """
    The result of a compaction or prune run.

    Failures are reported with ``success=False`` and the reason in
    ``human_summary``; they are never raised.
    """

    success: bool
    mode: CompactionMode
    session_id: str = ""
    human_summary: str = Field(min_length=1)
    detailed_summary: StructuredSummary | None = None
    token_before: int = Field(default=0, ge=0)
    token_after: int = Field(default=0, ge=0)
    token_reduction_pct: int = Field(default=0, ge=0, le=100)
    compaction_event: CompactionEvent | None = None
    preview: str | None = None


class UndoResult(BaseModel):
    """The result of ``undo_compaction`` or ``rehydrate_session``."""

    success: bool
    event_id: str
    session_id: str = ""
    restored_message_count: int = 0
    reason: str = ""


class TokenBudgetDecision(BaseModel):
    """Answer to the send path's pre-flight token budget check."""

    allow: bool
    suggest_compaction: bool = False
    urgency: Literal["none", "low", "medium", "high"] = "none"
    usage_tokens: int = 0
    context_limit: int = 0
    usage_percent: float = 0.0
    reason: str = ""


# ── Validators ────────────────────────────────────────────────────────────────


def _format_errors(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


def _validate(model: type[BaseModel], kind: str, data: Any) -> Any:
    payload = data.model_dump() if isinstance(data, BaseModel) else data
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise CompactionValidationError(kind, _format_errors(exc)) from exc


def validate_structured_summary(data: Any) -> StructuredSummary:
    """
    Re-validate a summary produced by a (possibly external) summarizer.

    Raises:
        CompactionValidationError: If the summary is structurally invalid.
    """
    return _validate(StructuredSummary, "structured summary", data)


def validate_compaction_event(data: Any) -> CompactionEvent:
    """
    Validate an audit event before it is recorded.

    Raises:
        CompactionValidationError: If the event is structurally invalid.
    """
    return _validate(CompactionEvent, "compaction event", data)


def validate_compaction_result(data: Any) -> CompactionResult:
    """
    Validate a result before it is returned to the caller.

    Raises:
        CompactionValidationError: If the result is structurally invalid.
    """
    return _validate(CompactionResult, "compaction result", data)


def estimate_token_reduction(token_before: int, token_after: int) -> int:
    """Integer percentage reduction, clamped to 0-100. Zero when nothing was measured."""
    if token_before <= 0:
        return 0
    pct = round((token_before - token_after) / token_before * 100)
    return max(0, min(100, pct))

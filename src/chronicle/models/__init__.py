"""Chronicle data models."""

from chronicle.models.compaction import (
    CompactionEvent,
    CompactionResult,
    CompactionState,
    CompactionValidationError,
    ErrorResolution,
    FileOperation,
    KeyDecision,
    Provenance,
    StructuredSummary,
    TokenBudgetDecision,
    UndoResult,
    estimate_token_reduction,
    validate_compaction_event,
    validate_compaction_result,
    validate_structured_summary,
)
from chronicle.models.config import ChronicleConfig, CompactionConfig, ModelInfo, StoreConfig
from chronicle.models.info import InfoTime, InfoTokens, MessageInfo
from chronicle.models.parts import (
    FilePart,
    MessagePart,
    PatchPart,
    ReasoningPart,
    StepFinishPart,
    StepStartPart,
    TextPart,
    ToolPart,
    ToolState,
    extract_text,
    parse_part,
    part_text,
)
from chronicle.models.records import (
    MessageRecord,
    MessageUpsertInput,
    NormalizedPartRecord,
    PartUpdateInput,
    PendingPartEntry,
    Permission,
    PermissionEntry,
    PermissionLookup,
    SessionRecord,
    SessionRevert,
    SessionUpsertInput,
)
from chronicle.models.snapshot import CompactionSnapshot, LatestTodoSnapshot, ScrollSnapshot
from chronicle.models.usage import SessionUsageState, UsageEntry

__all__ = [
    # Config
    "ChronicleConfig",
    "CompactionConfig",
    "ModelInfo",
    "StoreConfig",
    # Parts
    "FilePart",
    "MessagePart",
    "PatchPart",
    "ReasoningPart",
    "StepFinishPart",
    "StepStartPart",
    "TextPart",
    "ToolPart",
    "ToolState",
    "extract_text",
    "parse_part",
    "part_text",
    # Records
    "MessageRecord",
    "MessageUpsertInput",
    "NormalizedPartRecord",
    "PartUpdateInput",
    "PendingPartEntry",
    "Permission",
    "PermissionEntry",
    "PermissionLookup",
    "SessionRecord",
    "SessionRevert",
    "SessionUpsertInput",
    # Info / usage
    "InfoTime",
    "InfoTokens",
    "MessageInfo",
    "SessionUsageState",
    "UsageEntry",
    # Snapshots
    "CompactionSnapshot",
    "LatestTodoSnapshot",
    "ScrollSnapshot",
    # Compaction
    "CompactionEvent",
    "CompactionResult",
    "CompactionState",
    "CompactionValidationError",
    "ErrorResolution",
    "FileOperation",
    "KeyDecision",
    "Provenance",
    "StructuredSummary",
    "TokenBudgetDecision",
    "UndoResult",
    "estimate_token_reduction",
    "validate_compaction_event",
    "validate_compaction_result",
    "validate_structured_summary",
]

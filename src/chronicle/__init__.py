"""
Chronicle: normalized conversation state and context compaction for
multi-session AI chat clients.

Primary entry point::

    from chronicle import ChronicleConfig, CompactionEngine, MessageStoreBus, apply_event

    config = ChronicleConfig.default()
    store_bus = MessageStoreBus(config.store)
    engine = CompactionEngine(store_bus, config.compaction)

    store = store_bus.register_instance("workspace-1")
    apply_event(store, {"type": "message.updated", "properties": {"info": {...}}})
    result = await engine.compact("workspace-1", "ses_1")
"""

from chronicle.compaction.engine import CompactionEngine
from chronicle.compaction.summary import HeuristicSummarizer, Summarizer
from chronicle.events.bus import ChronicleEvent, EventBus
from chronicle.ids import make_id
from chronicle.models import (
    ChronicleConfig,
    CompactionConfig,
    CompactionEvent,
    CompactionResult,
    CompactionState,
    CompactionValidationError,
    MessageInfo,
    MessagePart,
    MessageRecord,
    ModelInfo,
    SessionUsageState,
    StoreConfig,
    StructuredSummary,
    TextPart,
    TokenBudgetDecision,
    ToolPart,
    UndoResult,
)
from chronicle.store.bus import MessageStoreBus
from chronicle.store.instance import InstanceStore
from chronicle.sync.reconciler import apply_event, create_optimistic_message
from chronicle.tokens.estimator import TokenEstimator

__version__ = "0.1.0"

__all__ = [
    # Store
    "InstanceStore",
    "MessageStoreBus",
    "make_id",
    # Sync
    "apply_event",
    "create_optimistic_message",
    # Compaction
    "CompactionEngine",
    "HeuristicSummarizer",
    "Summarizer",
    # Config
    "ChronicleConfig",
    "CompactionConfig",
    "StoreConfig",
    "ModelInfo",
    # Models
    "CompactionEvent",
    "CompactionResult",
    "CompactionState",
    "CompactionValidationError",
    "MessageInfo",
    "MessagePart",
    "MessageRecord",
    "SessionUsageState",
    "StructuredSummary",
    "TextPart",
    "TokenBudgetDecision",
    "ToolPart",
    "UndoResult",
    # Events
    "ChronicleEvent",
    "EventBus",
    # Tokens
    "TokenEstimator",
]

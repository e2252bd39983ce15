"""Chronicle compaction components."""

from chronicle.compaction.classify import MessageCategories, categorize_messages
from chronicle.compaction.engine import CompactionEngine
from chronicle.compaction.history import CompactionHistory
from chronicle.compaction.pruner import PrunePlan, plan_prune
from chronicle.compaction.secrets import RedactionResult, has_secrets, redact_secrets, redact_value
from chronicle.compaction.summary import HeuristicSummarizer, Summarizer, render_human_summary

__all__ = [
    "CompactionEngine",
    "CompactionHistory",
    "HeuristicSummarizer",
    "MessageCategories",
    "PrunePlan",
    "RedactionResult",
    "Summarizer",
    "categorize_messages",
    "has_secrets",
    "plan_prune",
    "redact_secrets",
    "redact_value",
    "render_human_summary",
]

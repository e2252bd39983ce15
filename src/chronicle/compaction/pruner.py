"""Prune mode: reclaim context by blanking large payloads in place.

Unlike full compaction, pruning keeps every message and part identity. Only
the content of selected parts is replaced with a placeholder, and the part is
stamped with ``pruned_at``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from chronicle.models.config import CompactionConfig, ModelInfo
from chronicle.models.parts import MessagePart, ReasoningPart, TextPart, ToolPart
from chronicle.models.records import MessageRecord
from chronicle.tokens.estimator import TokenEstimator


@dataclass
class PruneCandidate:
    message_id: str
    part_id: str
    tokens: int


@dataclass
class PrunePlan:
    """Parts selected for pruning and the tokens they are expected to reclaim."""

    candidates: list[PruneCandidate] = field(default_factory=list)
    reclaimed_tokens: int = 0
    parts_scanned: int = 0

    @property
    def count(self) -> int:
        return len(self.candidates)


def is_protected_tool(tool: str, protected: Sequence[str]) -> bool:
    """Protected tool names match case-insensitively as substrings (``execute`` covers ``execute_command``)."""
    lowered = tool.lower()
    return any(name.lower() in lowered for name in protected)


def prunable_tokens(
    part: MessagePart,
    config: CompactionConfig,
    estimator: TokenEstimator,
    model: ModelInfo | None = None,
) -> int:
    """
    Tokens reclaimable by pruning ``part``, or 0 when it is not prunable.

    Completed tool outputs of unprotected tools are always prunable. Text and
    reasoning parts are prunable once they reach ``prune_part_min_tokens``.
    Synthetic text and already-pruned parts never are.
    """
    if part.pruned_at is not None:
        return 0
    if isinstance(part, ToolPart):
        if part.state.status != "completed" or part.state.output is None:
            return 0
        if is_protected_tool(part.tool, config.protected_tools):
            return 0
        return estimator.estimate_part(part, model)
    if isinstance(part, TextPart) and part.synthetic:
        return 0
    if isinstance(part, (TextPart, ReasoningPart)):
        tokens = estimator.estimate_part(part, model)
        return tokens if tokens >= config.prune_part_min_tokens else 0
    return 0


def plan_prune(
    records: Sequence[MessageRecord],
    config: CompactionConfig,
    estimator: TokenEstimator,
    model: ModelInfo | None = None,
) -> PrunePlan:
    """
    Select parts to prune from ``records`` (session order).

    Algorithm:
    1. Exclude the recent window (``recent_messages_to_keep + overlap_size``).
    2. Walk the remaining messages front-to-back, oldest first.
    3. Add each prunable part to the plan and accumulate its token estimate.
    4. Stop as soon as the accumulated estimate reaches
       ``prune_reclaim_threshold``.

    Args:
        records: The session's live messages in display order.
        config: Window sizes, thresholds and protected tools.
        estimator: Token estimator used for per-part sizes.
        model: Model whose encoding sizes the parts; heuristic when None.

    Returns:
        PrunePlan listing the selected parts in walk order.
    """
    plan = PrunePlan()
    window_start = max(0, len(records) - (config.recent_messages_to_keep + config.overlap_size))
    for record in records[:window_start]:
        for part_record in record.ordered_parts():
            plan.parts_scanned += 1
            tokens = prunable_tokens(part_record.data, config, estimator, model)
            if tokens <= 0:
                continue
            plan.candidates.append(
                PruneCandidate(message_id=record.id, part_id=part_record.id, tokens=tokens)
            )
            plan.reclaimed_tokens += tokens
            if plan.reclaimed_tokens >= config.prune_reclaim_threshold:
                return plan
    return plan


def pruned_copy(part: MessagePart, placeholder: str, pruned_at: int) -> MessagePart:
    """Return ``part`` with its content replaced by ``placeholder``. Identity fields are kept."""
    if isinstance(part, ToolPart):
        return part.model_copy(
            update={
                "state": part.state.model_copy(update={"output": placeholder}),
                "pruned_at": pruned_at,
            }
        )
    if isinstance(part, (TextPart, ReasoningPart)):
        return part.model_copy(update={"text": placeholder, "pruned_at": pruned_at})
    return part

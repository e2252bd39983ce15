"""Heuristic structured summaries and their human-readable rendering.

The summarizer here never calls a model. It extracts goals, completed work,
file operations, decisions, error/resolution pairs, next steps and blockers
from message text with plain pattern matching. A model-backed summarizer can
be swapped in by passing any object satisfying :class:`Summarizer` to the
compaction engine.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from jinja2 import Template

from chronicle.compaction.classify import (
    FILE_OPERATION_TOOLS,
    is_decision,
    is_error_message,
    message_text,
)
from chronicle.models.compaction import (
    Artifact,
    ErrorResolution,
    FileOperation,
    KeyDecision,
    Provenance,
    StructuredSummary,
    create_default_structured_summary,
)
from chronicle.models.config import CompactionConfig
from chronicle.models.parts import FilePart, PatchPart, TextPart, ToolPart, extract_text
from chronicle.models.records import MessageRecord
from chronicle.tokens.estimator import TokenEstimator

_logger = structlog.get_logger("chronicle.compaction.summary")

_PATH_KEYS = ("filePath", "file_path", "path", "file", "target")
_LIST_CAP = 10
_AGGRESSIVE_LIST_CAP = 3
_ITEM_MAX_CHARS = 200

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_DONE_PATTERN = re.compile(
    r"\b(?:done|completed|finished|implemented|added|fixed|created|updated|refactored|removed)\b",
    re.IGNORECASE,
)
_NEXT_STEP_PATTERN = re.compile(
    r"\b(?:next step|next,|next we|todo:|still need to|will now|remaining:)", re.IGNORECASE
)
_BLOCKER_PATTERN = re.compile(
    r"\b(?:blocked|blocker|cannot proceed|can't proceed|waiting on|waiting for)\b", re.IGNORECASE
)
_RATIONALE_PATTERN = re.compile(r"\b(?:because|since|so that|to avoid)\b(.+)", re.IGNORECASE)
_FILE_PROSE_PATTERN = re.compile(
    r"\b(created|wrote|modified|updated|edited|deleted|renamed)\s+(?:the\s+)?file\s+"
    r"[`'\"]?([\w./\\-]+\.\w+)",
    re.IGNORECASE,
)

HUMAN_SUMMARY_TEMPLATE = Template(
    """\
## Conversation summary ({{ compressed }} earlier messages compacted)
{% if summary.user_goals %}
### Goals
{% for goal in summary.user_goals %}- {{ goal }}
{% endfor %}{% endif %}
### Completed
{% for item in summary.what_was_done %}- {{ item }}
{% endfor %}{% if summary.files %}
### Files
{% for op in summary.files %}- {{ op.action }} `{{ op.path }}`{% if op.notes %}: {{ op.notes }}{% endif %}
{% endfor %}{% endif %}{% if summary.key_decisions %}
### Decisions
{% for decision in summary.key_decisions %}- {{ decision.decision }}{% if decision.rationale %} ({{ decision.rationale }}){% endif %}
{% endfor %}{% endif %}{% if summary.errors %}
### Errors
{% for err in summary.errors %}- {{ err.error }}{% if err.resolution %} -> {{ err.resolution }}{% endif %}
{% endfor %}{% endif %}{% if summary.next_steps %}
### Next steps
{% for step in summary.next_steps %}- {{ step }}
{% endfor %}{% endif %}{% if summary.blockers %}
### Blockers
{% for blocker in summary.blockers %}- {{ blocker }}
{% endfor %}{% endif %}
### Current state
{{ summary.current_state }}
"""
)


class Summarizer(Protocol):
    """Anything that can turn a compress set into a structured summary."""

    async def summarize(
        self, messages: Sequence[MessageRecord], *, aggressive: bool = False
    ) -> StructuredSummary: ...


def render_human_summary(
    summary: StructuredSummary, compressed: int, max_chars: int = 4_000
) -> str:
    """Render the markdown body of the summary message, truncated to ``max_chars``."""
    text = HUMAN_SUMMARY_TEMPLATE.render(summary=summary, compressed=compressed).strip()
    if len(text) > max_chars:
        text = text[: max_chars - 3].rstrip() + "..."
    return text


def _clip(text: str, limit: int = _ITEM_MAX_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def _sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s and s.strip()]


def _dedupe(items: list[str], cap: int) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        key = item.lower()
        if item and key not in seen:
            seen.add(key)
            result.append(item)
        if len(result) >= cap:
            break
    return result


def _tool_path(tool_input: dict[str, Any]) -> str | None:
    for key in _PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _prose_text(record: MessageRecord) -> str:
    """Text and reasoning content only; tool payloads are summarized separately."""
    return "\n".join(
        extract_text(p.data.text) for p in record.ordered_parts() if isinstance(p.data, TextPart)
    )


class HeuristicSummarizer:
    """
    Pattern-based summarizer used when no model-backed summarizer is supplied.

    Example::

        summarizer = HeuristicSummarizer(config.compaction)
        summary = await summarizer.summarize(records)
    """

    def __init__(
        self,
        config: CompactionConfig | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self._config = config or CompactionConfig()
        self._estimator = estimator or TokenEstimator()

    async def summarize(
        self, messages: Sequence[MessageRecord], *, aggressive: bool = False
    ) -> StructuredSummary:
        if not messages:
            return create_default_structured_summary(aggressive=aggressive)

        cap = _AGGRESSIVE_LIST_CAP if aggressive else _LIST_CAP
        goals: list[str] = []
        done: list[str] = []
        next_steps: list[str] = []
        blockers: list[str] = []
        decisions: list[KeyDecision] = []
        errors: list[ErrorResolution] = []
        artifacts: list[Artifact] = []

        for index, record in enumerate(messages):
            prose = _prose_text(record)
            sentences = _sentences(prose)
            if record.role == "user":
                first = next(iter(sentences), "")
                if first:
                    goals.append(_clip(first))
            else:
                done.extend(_clip(s) for s in sentences if _DONE_PATTERN.search(s))
            next_steps.extend(_clip(s) for s in sentences if _NEXT_STEP_PATTERN.search(s))
            blockers.extend(_clip(s) for s in sentences if _BLOCKER_PATTERN.search(s))

            if is_decision(record, prose):
                decisions.extend(self._decisions(record, sentences, len(decisions)))
            if is_error_message(record, text=message_text(record)):
                errors.append(self._error_resolution(record, messages[index + 1 :]))
            for part_record in record.ordered_parts():
                part = part_record.data
                if isinstance(part, FilePart) and (part.url or part.filename):
                    artifacts.append(
                        Artifact(type=part.mime or "file", uri=part.url or part.filename or "")
                    )

        done = _dedupe(done, cap) or [f"Discussed {len(messages)} earlier messages"]
        summary = StructuredSummary(
            timestamp=datetime.now(UTC),
            summary_type="tierA_short" if aggressive else "tierB_detailed",
            what_was_done=done,
            user_goals=_dedupe(goals, cap),
            files=self._file_operations(messages)[: cap * 2],
            current_state=self._current_state(messages),
            key_decisions=decisions[:cap],
            errors=errors[-cap:],
            next_steps=_dedupe(next_steps, cap),
            blockers=_dedupe(blockers, cap),
            artifacts=artifacts[:cap],
            tags=["compaction", "heuristic"] + (["aggressive"] if aggressive else []),
            provenance=Provenance(model="heuristic", token_count=0),
            aggressive=aggressive,
        )
        token_count = self._estimator.estimate(summary.model_dump_json())
        _logger.debug(
            "structured_summary_built",
            messages=len(messages),
            decisions=len(summary.key_decisions),
            files=len(summary.files),
            token_count=token_count,
        )
        return summary.model_copy(
            update={"provenance": Provenance(model="heuristic", token_count=token_count)}
        )

    # ── Extraction helpers ────────────────────────────────────────────────────

    def _current_state(self, messages: Sequence[MessageRecord]) -> str:
        limit = self._config.current_state_max_chars
        for record in reversed(messages):
            text = " ".join(message_text(record).split())
            if text:
                return text[-limit:]
        return "Session context has been compacted"

    def _decisions(
        self, record: MessageRecord, sentences: list[str], offset: int
    ) -> list[KeyDecision]:
        found: list[KeyDecision] = []
        for sentence in sentences:
            if not is_decision(record, sentence):
                continue
            topic, _, rest = sentence.partition(":") if ":" in sentence else ("", "", sentence)
            rationale_match = _RATIONALE_PATTERN.search(sentence)
            found.append(
                KeyDecision(
                    id=f"decision-{offset + len(found) + 1}",
                    topic=_clip(topic, 60),
                    decision=_clip(rest.strip() or sentence),
                    rationale=_clip(rationale_match.group(1).strip())
                    if rationale_match and rationale_match.group(1).strip()
                    else "Not stated",
                    actor="user" if record.role == "user" else "agent",
                )
            )
        return found

    def _error_resolution(
        self, record: MessageRecord, following: Sequence[MessageRecord]
    ) -> ErrorResolution:
        error_line = ""
        for part_record in record.ordered_parts():
            part = part_record.data
            if isinstance(part, ToolPart) and part.state.error:
                error_line = part.state.error
                break
        if not error_line:
            text = message_text(record)
            error_line = next(
                (line for line in text.splitlines() if re.search(r"error|exception|failed", line, re.I)),
                text,
            )
        resolution = None
        for later in following:
            later_text = message_text(later)
            if later_text and not is_error_message(later, text=later_text):
                resolution = _clip(later_text)
                break
        return ErrorResolution(error=_clip(error_line) or "Unknown error", resolution=resolution)

    def _file_operations(self, messages: Sequence[MessageRecord]) -> list[FileOperation]:
        ops: list[FileOperation] = []
        seen: set[tuple[str, str]] = set()

        def add(path: str, action: str, notes: str = "") -> None:
            key = (path, action)
            if key not in seen:
                seen.add(key)
                ops.append(FileOperation(path=path, action=action, notes=_clip(notes)))

        for record in messages:
            for part_record in record.ordered_parts():
                part = part_record.data
                if isinstance(part, ToolPart) and part.tool.lower() in FILE_OPERATION_TOOLS:
                    path = _tool_path(part.state.input)
                    if path:
                        add(path, part.tool.lower(), part.state.title or "")
                elif isinstance(part, PatchPart):
                    for path in part.files:
                        add(path, "patch")
            for match in _FILE_PROSE_PATTERN.finditer(_prose_text(record)):
                add(match.group(2), match.group(1).lower())
        return ops

"""Sliding-window categorization of a session's messages into keep and compress sets.

The most recent ``recent_messages_to_keep + overlap_size`` messages are always
kept verbatim. Independently of that window, the following are kept as well:

* the last ``system_messages_to_keep`` system messages (synthetic content or
  earlier compaction summaries),
* every file-operation message (file-writing tools, patch parts, or prose
  such as "created file"),
* every decision message ("decided", "going with", "approach:"),
* the last ``error_messages_to_keep`` error messages.

Everything else lands in the compress set.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from chronicle.models.config import CompactionConfig
from chronicle.models.info import MessageInfo
from chronicle.models.parts import PatchPart, TextPart, ToolPart, part_text
from chronicle.models.records import MessageRecord

FILE_OPERATION_TOOLS: frozenset[str] = frozenset(
    {
        "write",
        "edit",
        "multiedit",
        "patch",
        "apply_patch",
        "apply_diff",
        "write_to_file",
        "create_file",
        "delete_file",
        "rename_file",
    }
)

_FILE_OPERATION_PATTERN = re.compile(
    r"\b(?:created|wrote|modified|updated|edited|deleted|renamed|moved) (?:the |a |new )?file\b"
    r"|\bwrite_to_file\b|\bapply_diff\b|\bfile (?:created|written|modified|deleted)\b",
    re.IGNORECASE,
)
_DECISION_PATTERN = re.compile(
    r"\bdecided\b|\bdecision:|\bgoing with\b|\bapproach:|\bwe(?:'ll| will) use\b|\bchose\b",
    re.IGNORECASE,
)
_ERROR_PATTERN = re.compile(r"\b(?:error|exception|traceback|failed)\b", re.IGNORECASE)


@dataclass
class MessageCategories:
    """Result of categorizing one session's live messages."""

    keep: list[str] = field(default_factory=list)
    compress: list[str] = field(default_factory=list)
    reasons: dict[str, str] = field(default_factory=dict)
    """Why each kept message was kept: window, system, file_operation, decision or error."""
    window_start: int = 0


def message_text(record: MessageRecord) -> str:
    """Plain text of every part of ``record``, in display order."""
    return "\n".join(
        text for text in (part_text(p.data) for p in record.ordered_parts()) if text
    )


def is_system_message(record: MessageRecord, info: MessageInfo | None = None) -> bool:
    if info is not None and (info.is_summary or info.mode == "system"):
        return True
    parts = record.ordered_parts()
    return bool(parts) and all(
        isinstance(p.data, TextPart) and p.data.synthetic for p in parts
    )


def is_file_operation(record: MessageRecord, text: str | None = None) -> bool:
    for part_record in record.ordered_parts():
        part = part_record.data
        if isinstance(part, PatchPart) and part.files:
            return True
        if isinstance(part, ToolPart) and part.tool.lower() in FILE_OPERATION_TOOLS:
            return True
    return bool(_FILE_OPERATION_PATTERN.search(text if text is not None else message_text(record)))


def is_decision(record: MessageRecord, text: str | None = None) -> bool:
    return bool(_DECISION_PATTERN.search(text if text is not None else message_text(record)))


def is_error_message(
    record: MessageRecord, info: MessageInfo | None = None, text: str | None = None
) -> bool:
    if record.status == "error" or (info is not None and info.error):
        return True
    for part_record in record.ordered_parts():
        part = part_record.data
        if isinstance(part, ToolPart) and part.state.status == "error":
            return True
    return bool(_ERROR_PATTERN.search(text if text is not None else message_text(record)))


def categorize_messages(
    records: Sequence[MessageRecord],
    config: CompactionConfig,
    infos: Mapping[str, MessageInfo] | None = None,
) -> MessageCategories:
    """
    Split ``records`` (in session order) into keep and compress id lists.

    Both output lists preserve session order.

    Args:
        records: The session's live messages in display order.
        config: Window sizes and preservation switches.
        infos: Optional cached message metadata keyed by message id.

    Returns:
        MessageCategories with a reason recorded for every kept id.
    """
    infos = infos or {}
    total = len(records)
    window_start = max(0, total - (config.recent_messages_to_keep + config.overlap_size))
    reasons: dict[str, str] = {}

    for record in records[window_start:]:
        reasons[record.id] = "window"

    system_ids: list[str] = []
    error_ids: list[str] = []
    for record in records[:window_start]:
        info = infos.get(record.id)
        text = message_text(record)
        if is_system_message(record, info):
            system_ids.append(record.id)
        if config.preserve_file_operations and is_file_operation(record, text):
            reasons.setdefault(record.id, "file_operation")
        if config.preserve_decisions and is_decision(record, text):
            reasons.setdefault(record.id, "decision")
        if is_error_message(record, info, text):
            error_ids.append(record.id)

    # "Last N" is counted over the whole session, so recent matches inside the
    # window consume part of the allowance.
    for record in records[window_start:]:
        info = infos.get(record.id)
        if is_system_message(record, info):
            system_ids.append(record.id)
        if is_error_message(record, info):
            error_ids.append(record.id)

    for message_id in _last(system_ids, config.system_messages_to_keep):
        reasons.setdefault(message_id, "system")
    for message_id in _last(error_ids, config.error_messages_to_keep):
        reasons.setdefault(message_id, "error")

    keep = [r.id for r in records if r.id in reasons]
    compress = [r.id for r in records if r.id not in reasons]
    return MessageCategories(
        keep=keep, compress=compress, reasons=reasons, window_start=window_start
    )


def _last(ids: list[str], count: int) -> list[str]:
    return ids[-count:] if count > 0 else []

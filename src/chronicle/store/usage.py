"""
Usage accumulator: pure functions over ``SessionUsageState``.

Every function returns a new state and leaves its input untouched, so callers
can swap the store's per-session state in a single assignment.
"""

from __future__ import annotations

from collections.abc import Iterable

from chronicle.models.info import MessageInfo
from chronicle.models.usage import SessionUsageState, UsageEntry


def extract_usage_entry(info: MessageInfo | None) -> UsageEntry | None:
    """
    Derive a usage entry from a message's metadata.

    Returns None for non-assistant messages and for messages that report no
    tokens at all. Summary-authored messages count only their output tokens,
    since that output stands in for the entire prior context.
    """
    if info is None or info.role != "assistant" or not info.id:
        return None
    tokens = info.tokens
    if tokens is None or tokens.is_empty:
        return None

    context_tokens = tokens.input + tokens.cache.read + tokens.cache.write
    if info.is_summary:
        combined = tokens.output
    else:
        combined = context_tokens + tokens.output + tokens.reasoning

    return UsageEntry(
        message_id=info.id,
        input_tokens=tokens.input,
        output_tokens=tokens.output,
        reasoning_tokens=tokens.reasoning,
        cache_read_tokens=tokens.cache.read,
        cache_write_tokens=tokens.cache.write,
        combined_tokens=combined,
        cost=info.cost,
        timestamp=info.time.created or 0,
        has_context_usage=context_tokens > 0,
    )


def apply_usage_state(state: SessionUsageState, entry: UsageEntry | None) -> SessionUsageState:
    """
    Add ``entry`` to the running totals.

    An existing entry for the same message is removed first so re-applying a
    message's usage never double counts. The latest pointer moves only when
    the new entry is strictly newer; ties keep the existing latest.
    """
    if entry is None:
        return state
    if entry.message_id in state.entries:
        state = remove_usage_entry(state, entry.message_id)

    entries = dict(state.entries)
    entries[entry.message_id] = entry
    update: dict[str, object] = {
        "entries": entries,
        "total_input_tokens": state.total_input_tokens + entry.input_tokens,
        "total_output_tokens": state.total_output_tokens + entry.output_tokens,
        "total_reasoning_tokens": state.total_reasoning_tokens + entry.reasoning_tokens,
        "total_cache_read_tokens": state.total_cache_read_tokens + entry.cache_read_tokens,
        "total_cache_write_tokens": state.total_cache_write_tokens + entry.cache_write_tokens,
        "total_cost": state.total_cost + entry.cost,
    }
    latest = state.latest
    if latest is None or entry.timestamp > latest.timestamp:
        update["latest_message_id"] = entry.message_id
        update["actual_usage_tokens"] = entry.combined_tokens
    return state.model_copy(update=update)


def remove_usage_entry(state: SessionUsageState, message_id: str | None) -> SessionUsageState:
    """
    Subtract a message's entry from the totals. No-op for unknown ids.

    Removing the latest entry re-derives the pointer by linear scan.
    """
    if not message_id or message_id not in state.entries:
        return state
    existing = state.entries[message_id]
    entries = {mid: e for mid, e in state.entries.items() if mid != message_id}
    update: dict[str, object] = {
        "entries": entries,
        "total_input_tokens": state.total_input_tokens - existing.input_tokens,
        "total_output_tokens": state.total_output_tokens - existing.output_tokens,
        "total_reasoning_tokens": state.total_reasoning_tokens - existing.reasoning_tokens,
        "total_cache_read_tokens": state.total_cache_read_tokens - existing.cache_read_tokens,
        "total_cache_write_tokens": state.total_cache_write_tokens - existing.cache_write_tokens,
        "total_cost": state.total_cost - existing.cost,
    }
    if state.latest_message_id == message_id:
        latest = _find_latest(entries.values())
        update["latest_message_id"] = latest.message_id if latest else None
        update["actual_usage_tokens"] = latest.combined_tokens if latest else 0
    return state.model_copy(update=update)


def remove_usage_entries(state: SessionUsageState, message_ids: Iterable[str]) -> SessionUsageState:
    for message_id in message_ids:
        state = remove_usage_entry(state, message_id)
    return state


def rename_usage_entry(state: SessionUsageState, old_id: str, new_id: str) -> SessionUsageState:
    """Re-key an entry after a message id replacement, keeping totals intact."""
    if old_id not in state.entries or old_id == new_id:
        return state
    entries = {
        (new_id if mid == old_id else mid): (
            e.model_copy(update={"message_id": new_id}) if mid == old_id else e
        )
        for mid, e in state.entries.items()
    }
    update: dict[str, object] = {"entries": entries}
    if state.latest_message_id == old_id:
        update["latest_message_id"] = new_id
    return state.model_copy(update=update)


def rebuild_usage_state(infos: Iterable[MessageInfo]) -> SessionUsageState:
    """
    Aggregate a full set of infos from scratch.

    Entries are folded in timestamp order (stable for equal timestamps), so
    the result is identical to applying them one at a time in that order.
    """
    entries = [entry for entry in (extract_usage_entry(info) for info in infos) if entry]
    entries.sort(key=lambda e: e.timestamp)
    state = SessionUsageState()
    for entry in entries:
        state = apply_usage_state(state, entry)
    return state


def _find_latest(entries: Iterable[UsageEntry]) -> UsageEntry | None:
    latest: UsageEntry | None = None
    for candidate in entries:
        if latest is None or candidate.timestamp > latest.timestamp:
            latest = candidate
    return latest

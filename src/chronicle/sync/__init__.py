"""Streaming reconciliation of transport events into the store."""

from chronicle.sync.normalize import normalize_message_part, permission_entry
from chronicle.sync.reconciler import (
    apply_event,
    create_optimistic_message,
    find_pending_message_id,
    handle_message_updated,
    handle_part_updated,
    reconcile_message_id,
    seed_session_messages,
)

__all__ = [
    "apply_event",
    "create_optimistic_message",
    "find_pending_message_id",
    "handle_message_updated",
    "handle_part_updated",
    "normalize_message_part",
    "permission_entry",
    "reconcile_message_id",
    "seed_session_messages",
]

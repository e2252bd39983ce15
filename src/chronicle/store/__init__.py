"""Normalized in-memory store: instance store, registry, usage and permissions."""

from chronicle.store.bus import MessageStoreBus
from chronicle.store.instance import InstanceStore
from chronicle.store.permissions import GLOBAL_KEY, PermissionQueue
from chronicle.store.usage import (
    apply_usage_state,
    extract_usage_entry,
    rebuild_usage_state,
    remove_usage_entry,
)

__all__ = [
    "GLOBAL_KEY",
    "InstanceStore",
    "MessageStoreBus",
    "PermissionQueue",
    "apply_usage_state",
    "extract_usage_entry",
    "rebuild_usage_state",
    "remove_usage_entry",
]

"""Chronicle event bus."""

from chronicle.events.bus import ChronicleEvent, EventBus, Handler
from chronicle.events.payloads import (
    CompactionCompletedPayload,
    CompactionFailedPayload,
    CompactionStartedPayload,
    CompactionSuggestedPayload,
    CompactionUndonePayload,
    InstanceDestroyedPayload,
    MessageIdReplacedPayload,
    MessageUpdatedPayload,
    PartUpdatedPayload,
    PermissionPayload,
    SessionClearedPayload,
    SessionUpdatedPayload,
    UsageUpdatedPayload,
)

__all__ = [
    "ChronicleEvent",
    "CompactionCompletedPayload",
    "CompactionFailedPayload",
    "CompactionStartedPayload",
    "CompactionSuggestedPayload",
    "CompactionUndonePayload",
    "EventBus",
    "Handler",
    "InstanceDestroyedPayload",
    "MessageIdReplacedPayload",
    "MessageUpdatedPayload",
    "PartUpdatedPayload",
    "PermissionPayload",
    "SessionClearedPayload",
    "SessionUpdatedPayload",
    "UsageUpdatedPayload",
]

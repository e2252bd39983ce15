"""Shared fixtures for Chronicle tests."""

from __future__ import annotations

from typing import Any

import pytest

from chronicle.events.bus import ChronicleEvent, EventBus
from chronicle.models.config import ChronicleConfig, CompactionConfig
from chronicle.models.info import InfoTime, InfoTokens, MessageInfo
from chronicle.models.parts import TextPart, ToolPart, ToolState
from chronicle.models.records import MessageUpsertInput
from chronicle.store.bus import MessageStoreBus
from chronicle.store.instance import InstanceStore
from chronicle.tokens.estimator import TokenEstimator


class FakeClock:
    """Deterministic millisecond clock. Call to read, ``advance()`` to move."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def config():
    """ChronicleConfig with all defaults."""
    return ChronicleConfig.default()


@pytest.fixture
def compaction_config(config):
    return config.compaction


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def estimator():
    """TokenEstimator using heuristic only (no tiktoken required in tests)."""
    e = TokenEstimator()
    e._force_heuristic = True
    return e


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[tuple[ChronicleEvent, dict[str, Any]]] = []

    def _collect(event: ChronicleEvent, payload: dict[str, Any]) -> None:
        collected.append((event, payload))

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest.fixture
def store(config, event_bus, clock):
    """InstanceStore wired to the collecting event bus and the fake clock."""
    return InstanceStore("inst_test", config=config.store, event_bus=event_bus, clock=clock)


@pytest.fixture
def store_bus(config, event_bus, clock):
    """MessageStoreBus whose stores all publish on the collecting event bus."""
    bus = MessageStoreBus(config.store, event_bus=event_bus, clock=clock)
    yield bus
    bus.clear_all()


def events_of(bus: EventBus, event: ChronicleEvent) -> list[dict[str, Any]]:
    """Payloads of every collected ``event``."""
    return [payload for kind, payload in bus.collected if kind == event]  # type: ignore[attr-defined]


def make_text_part(text: str, part_id: str | None = None, **extra: Any) -> TextPart:
    """Helper to create a test TextPart."""
    return TextPart(id=part_id, text=text, **extra)


def make_tool_part(
    tool: str = "read",
    output: str = "tool output here",
    part_id: str | None = None,
    status: str = "completed",
    tool_input: dict[str, Any] | None = None,
    error: str | None = None,
) -> ToolPart:
    """Helper to create a test ToolPart."""
    return ToolPart(
        id=part_id,
        tool=tool,
        call_id=part_id,
        state=ToolState(
            status=status,
            input=tool_input or {},
            output=output,
            error=error,
        ),
    )


def make_info(
    message_id: str,
    session_id: str,
    role: str = "assistant",
    created: int = 1,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cache_read: int = 0,
    cost: float = 0.0,
    **extra: Any,
) -> MessageInfo:
    """Helper to create a test MessageInfo."""
    tokens = None
    if input_tokens or output_tokens or cache_read:
        tokens = InfoTokens(
            input=input_tokens, output=output_tokens, cache={"read": cache_read, "write": 0}
        )
    return MessageInfo(
        id=message_id,
        session_id=session_id,
        role=role,
        time=InfoTime(created=created),
        tokens=tokens,
        cost=cost,
        **extra,
    )


def seed_session(
    store: InstanceStore,
    session_id: str,
    count: int,
    text: str = "plain message {i}",
    prefix: str = "m",
) -> list[str]:
    """Append ``count`` alternating user/assistant text messages. Returns their ids."""
    ids: list[str] = []
    for i in range(count):
        message_id = f"{prefix}{i:03d}"
        store.upsert_message(
            MessageUpsertInput(
                id=message_id,
                session_id=session_id,
                role="user" if i % 2 == 0 else "assistant",
                parts=[make_text_part(text.format(i=i), part_id=f"{message_id}-p0")],
            )
        )
        ids.append(message_id)
    return ids


def small_compaction_config(**overrides: Any) -> CompactionConfig:
    """CompactionConfig with a narrow window so short sessions compact."""
    values: dict[str, Any] = {"recent_messages_to_keep": 2, "overlap_size": 1}
    values.update(overrides)
    return CompactionConfig(**values)


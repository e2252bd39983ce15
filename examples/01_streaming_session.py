"""
Example 01: Streaming Session
=============================

Demonstrates feeding a transport event stream into the normalized store:
- Registering an instance on a MessageStoreBus
- Sending an optimistic message and reconciling the server's id
- Streaming parts, including one that arrives before its message
- Watching store notifications on the event bus
- Reading per-session usage

Run:
    uv run python examples/01_streaming_session.py
"""

import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def main() -> None:
    from chronicle import ChronicleConfig, ChronicleEvent, EventBus, MessageStoreBus, apply_event
    from chronicle.models import TextPart
    from chronicle.sync.reconciler import create_optimistic_message

    print("=== Chronicle Streaming Session Example ===\n")

    bus = EventBus()
    bus.subscribe_all(lambda event, payload: print(f"  [{event}] {payload}"))

    store_bus = MessageStoreBus(ChronicleConfig.default().store, event_bus=bus)
    store = store_bus.register_instance("workspace-1")

    print("User sends a message (optimistic, local id):")
    local = create_optimistic_message(
        store, "ses_1", parts=[TextPart(text="Add a health check endpoint")]
    )
    print(f"  local id: {local.id}\n")

    events = [
        # Server confirms the user message under its own id
        {
            "type": "message.updated",
            "properties": {
                "info": {"id": "msg_user_1", "sessionID": "ses_1", "role": "user", "time": {"created": 1}}
            },
        },
        # A part for the assistant reply arrives before the reply itself
        {
            "type": "message.part.updated",
            "properties": {
                "part": {
                    "id": "prt_1",
                    "type": "text",
                    "text": "Added <code>/healthz</code> &amp; a test.",
                    "sessionID": "ses_1",
                    "messageID": "msg_asst_1",
                }
            },
        },
        {
            "type": "message.updated",
            "properties": {
                "info": {
                    "id": "msg_asst_1",
                    "sessionID": "ses_1",
                    "role": "assistant",
                    "time": {"created": 2, "completed": 3},
                    "tokens": {"input": 1_200, "output": 80, "cache": {"read": 300, "write": 0}},
                    "cost": 0.004,
                }
            },
        },
    ]

    print("Applying server events:")
    for event in events:
        apply_event(store, event)
    print()

    print(f"Session order: {store.get_session_message_ids('ses_1')}")
    reply = store.get_message("msg_asst_1")
    if reply is not None:
        print(f"Reply revision {reply.revision}, parts: {list(reply.part_ids)}")
        print(f"Reply text: {reply.parts['prt_1'].data.text}")

    usage = store.get_session_usage("ses_1")
    if usage is not None:
        print(f"Context in use: {usage.actual_usage_tokens:,} tokens, cost ${usage.total_cost:.4f}")

    store_bus.unregister_instance("workspace-1")
    print(f"\nInstance torn down ({ChronicleEvent.INSTANCE_DESTROYED} published).")


if __name__ == "__main__":
    main()

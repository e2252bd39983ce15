"""
Example 02: Compaction and Undo
===============================

Demonstrates the compaction engine over a long session:
- Checking the token budget before a send
- Compacting with the sliding-window strategy
- Inspecting the structured summary and the audit history
- Undoing the compaction from its snapshot
- Pruning large tool outputs instead of summarizing

No model is called: the built-in heuristic summarizer is used. Pass any
object with an async ``summarize(messages, *, aggressive=False)`` method as
``summarizer=`` to plug in your own.

Run:
    uv run python examples/02_compaction_undo.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


async def main() -> None:
    from chronicle import ChronicleConfig, CompactionConfig, CompactionEngine, MessageStoreBus
    from chronicle.models import MessageInfo, ModelInfo, TextPart, ToolPart
    from chronicle.models.parts import ToolState
    from chronicle.models.records import MessageUpsertInput

    print("=== Chronicle Compaction Example ===\n")

    config = ChronicleConfig(compaction=CompactionConfig(recent_messages_to_keep=6, overlap_size=2))
    store_bus = MessageStoreBus(config.store)
    engine = CompactionEngine(store_bus, config.compaction)
    store = store_bus.register_instance("workspace-1")

    turns = [
        ("user", "Build a CLI that converts CSV files to JSON."),
        ("assistant", "I created the file csv2json.py with an argparse entry point."),
        ("user", "Large files are slow."),
        ("assistant", "Decision: going with streaming reads because memory use must stay flat."),
        ("user", "Running it failed with UnicodeDecodeError on latin-1 input."),
        ("assistant", "Fixed by adding an --encoding flag. Next step: add tests."),
    ]
    for i in range(4):
        for j, (role, text) in enumerate(turns):
            message_id = f"msg_{i}_{j}"
            store.upsert_message(
                MessageUpsertInput(
                    id=message_id,
                    session_id="ses_1",
                    role=role,
                    parts=[TextPart(id=f"{message_id}_p", text=text)],
                )
            )
    store.set_message_info(
        "msg_3_5",
        MessageInfo.model_validate(
            {
                "id": "msg_3_5",
                "sessionID": "ses_1",
                "role": "assistant",
                "time": {"created": 1},
                "tokens": {"input": 7_000, "output": 600},
            }
        ),
    )

    model = ModelInfo(model_id="demo", context_limit=8_000, max_output_tokens=1_000)
    decision = engine.check_token_budget("workspace-1", "ses_1", model)
    print(
        f"Budget: {decision.usage_percent}% used, urgency={decision.urgency}, "
        f"suggest={decision.suggest_compaction}"
    )
    print(f"State: {engine.get_compaction_state('workspace-1', 'ses_1')}\n")

    before = len(store.get_session_message_ids("ses_1"))
    result = await engine.compact("workspace-1", "ses_1", model=model)
    print(f"Compaction success={result.success}: {before} -> "
          f"{len(store.get_session_message_ids('ses_1'))} live messages")
    print(f"Tokens {result.token_before:,} -> {result.token_after:,} "
          f"({result.token_reduction_pct}% reduction)\n")
    print(result.human_summary)
    print()

    print("History (NDJSON):")
    print(engine.export_history())
    print()

    if result.compaction_event is not None:
        undo = await engine.undo_compaction("workspace-1", result.compaction_event.event_id)
        print(f"Undo success={undo.success}, restored {undo.restored_message_count} messages\n")

    print("Pruning large tool outputs instead:")
    for i in range(20):
        store.upsert_message(
            MessageUpsertInput(
                id=f"tool_{i}",
                session_id="ses_2",
                role="assistant",
                parts=[
                    ToolPart(
                        id=f"call_{i}",
                        tool="read",
                        state=ToolState(status="completed", output="row,value\n" * 400),
                    )
                ],
            )
        )
    pruned = await engine.compact("workspace-1", "ses_2", mode="prune")
    print(f"  {pruned.human_summary}")

    engine.close()
    store_bus.clear_all()


if __name__ == "__main__":
    asyncio.run(main())

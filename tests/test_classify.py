"""Tests for keep/compress categorization."""

from __future__ import annotations

from chronicle.compaction.classify import (
    categorize_messages,
    is_decision,
    is_error_message,
    is_file_operation,
    is_system_message,
    message_text,
)
from chronicle.models.parts import PatchPart
from chronicle.models.records import MessageUpsertInput
from tests.conftest import make_info, make_text_part, make_tool_part, small_compaction_config


def _add(store, message_id: str, parts, role: str = "assistant", status: str = "complete"):
    return store.upsert_message(
        MessageUpsertInput(id=message_id, session_id="s1", role=role, status=status, parts=parts)
    )


def _plain(store, message_id: str, role: str = "user"):
    return _add(store, message_id, [make_text_part(f"plain {message_id}")], role=role)


class TestPredicates:
    def test_decision(self, store) -> None:
        record = _add(store, "m1", [make_text_part("We decided to use Postgres.")])
        assert is_decision(record)
        assert not is_decision(_plain(store, "m2"))

    def test_file_operation_by_tool(self, store) -> None:
        record = _add(store, "m1", [make_tool_part("write", tool_input={"filePath": "a.py"})])
        assert is_file_operation(record)

    def test_file_operation_by_patch(self, store) -> None:
        record = _add(store, "m1", [PatchPart(id="p1", files=["a.py"])])
        assert is_file_operation(record)

    def test_file_operation_by_prose(self, store) -> None:
        record = _add(store, "m1", [make_text_part("I created the file for you.")])
        assert is_file_operation(record)

    def test_read_tool_is_not_file_operation(self, store) -> None:
        record = _add(store, "m1", [make_tool_part("read", output="contents")])
        assert not is_file_operation(record)

    def test_error_by_status(self, store) -> None:
        record = _add(store, "m1", [make_text_part("ok")], status="error")
        assert is_error_message(record)

    def test_error_by_tool_state(self, store) -> None:
        record = _add(store, "m1", [make_tool_part("bash", status="error", error="exit 1", output=None)])
        assert is_error_message(record)

    def test_error_by_text(self, store) -> None:
        record = _add(store, "m1", [make_text_part("Traceback (most recent call last)")])
        assert is_error_message(record)

    def test_system_by_synthetic_parts(self, store) -> None:
        record = _add(store, "m1", [make_text_part("injected", synthetic=True)])
        assert is_system_message(record)

    def test_system_by_summary_info(self, store) -> None:
        record = _plain(store, "m1", role="assistant")
        assert is_system_message(record, make_info("m1", "s1", summary=True))
        assert not is_system_message(record)

    def test_message_text_joins_parts(self, store) -> None:
        record = _add(store, "m1", [make_text_part("a", part_id="p1"), make_text_part("b", part_id="p2")])
        assert message_text(record) == "a\nb"


class TestCategorizeMessages:
    def test_recent_window_always_kept(self, store) -> None:
        for i in range(8):
            _plain(store, f"m{i}")
        records = store.get_session_messages("s1")
        result = categorize_messages(records, small_compaction_config())

        assert result.window_start == 5
        assert result.keep == ["m5", "m6", "m7"]
        assert result.compress == ["m0", "m1", "m2", "m3", "m4"]
        assert all(result.reasons[mid] == "window" for mid in result.keep)

    def test_short_session_keeps_everything(self, store) -> None:
        _plain(store, "m0")
        _plain(store, "m1")
        result = categorize_messages(store.get_session_messages("s1"), small_compaction_config())
        assert result.window_start == 0
        assert result.compress == []

    def test_preserved_categories_outside_window(self, store) -> None:
        _plain(store, "m0")
        _add(store, "m1", [make_text_part("Decision: going with Redis for caching.")])
        _add(store, "m2", [make_tool_part("edit", tool_input={"filePath": "app.py"})])
        _add(store, "m3", [make_text_part("Build failed with an exception")])
        _plain(store, "m4")
        for i in range(5, 8):
            _plain(store, f"m{i}")

        result = categorize_messages(store.get_session_messages("s1"), small_compaction_config())

        assert result.reasons["m1"] == "decision"
        assert result.reasons["m2"] == "file_operation"
        assert result.reasons["m3"] == "error"
        assert result.compress == ["m0", "m4"]
        assert result.keep == ["m1", "m2", "m3", "m5", "m6", "m7"]

    def test_preservation_switches(self, store) -> None:
        _add(store, "m0", [make_text_part("We decided to ship it.")])
        _add(store, "m1", [make_tool_part("write", tool_input={"path": "x.py"})])
        for i in range(2, 6):
            _plain(store, f"m{i}")
        config = small_compaction_config(preserve_decisions=False, preserve_file_operations=False)
        result = categorize_messages(store.get_session_messages("s1"), config)
        assert "m0" in result.compress
        assert "m1" in result.compress

    def test_only_last_errors_kept(self, store) -> None:
        _add(store, "m0", [make_text_part("first error here")])
        _add(store, "m1", [make_text_part("second error here")])
        _add(store, "m2", [make_text_part("third error here")])
        for i in range(3, 6):
            _plain(store, f"m{i}")
        config = small_compaction_config(error_messages_to_keep=2)
        result = categorize_messages(store.get_session_messages("s1"), config)
        assert result.compress == ["m0"]
        assert result.reasons["m1"] == "error"
        assert result.reasons["m2"] == "error"

    def test_errors_inside_window_consume_allowance(self, store) -> None:
        _add(store, "m0", [make_text_part("old error")])
        _plain(store, "m1")
        _plain(store, "m2")
        _add(store, "m3", [make_text_part("new error")])
        _plain(store, "m4")
        config = small_compaction_config(error_messages_to_keep=1)
        result = categorize_messages(store.get_session_messages("s1"), config)
        assert result.window_start == 2
        assert "m0" in result.compress

    def test_last_system_messages_kept(self, store) -> None:
        for i in range(3):
            _add(store, f"s{i}", [make_text_part(f"injected {i}", synthetic=True)])
        for i in range(3, 7):
            _plain(store, f"m{i}")
        config = small_compaction_config(system_messages_to_keep=2)
        result = categorize_messages(store.get_session_messages("s1"), config)
        assert result.compress == ["s0", "m3"]
        assert result.reasons["s1"] == "system"
        assert result.reasons["s2"] == "system"

    def test_summary_info_counts_as_system(self, store) -> None:
        _plain(store, "m0", role="assistant")
        for i in range(1, 5):
            _plain(store, f"m{i}")
        infos = {"m0": make_info("m0", "s1", summary=True)}
        result = categorize_messages(store.get_session_messages("s1"), small_compaction_config(), infos)
        assert result.reasons["m0"] == "system"

"""Tests for part parsing, text extraction, inbound normalization and token estimation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from chronicle.models.config import ModelInfo
from chronicle.models.parts import (
    PatchPart,
    StepStartPart,
    TextPart,
    ToolPart,
    derive_part_id,
    dump_part,
    extract_text,
    parse_part,
    part_text,
)
from chronicle.models.records import MessageRecord, NormalizedPartRecord
from chronicle.sync.normalize import derive_tool_call_id, normalize_message_part
from tests.conftest import make_text_part, make_tool_part


class TestParsePart:
    def test_discriminates_on_type(self) -> None:
        assert isinstance(parse_part({"type": "text", "text": "hi"}), TextPart)
        assert isinstance(parse_part({"type": "tool", "tool": "bash"}), ToolPart)
        assert isinstance(parse_part({"type": "step-start"}), StepStartPart)
        assert isinstance(parse_part({"type": "patch", "files": ["a.py"]}), PatchPart)

    def test_unknown_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            parse_part({"type": "hologram"})

    def test_camel_case_aliases(self) -> None:
        part = parse_part(
            {"type": "tool", "tool": "bash", "sessionID": "s1", "messageId": "m1", "callID": "c1"}
        )
        assert part.session_id == "s1"
        assert part.message_id == "m1"
        assert part.call_id == "c1"

    def test_unknown_keys_round_trip(self) -> None:
        part = parse_part({"type": "text", "text": "hi", "renderHint": "bold"})
        assert dump_part(part)["renderHint"] == "bold"

    def test_typed_part_returned_unchanged(self) -> None:
        part = TextPart(text="x")
        assert parse_part(part) is part


class TestExtractText:
    def test_plain_string(self) -> None:
        assert extract_text("hello") == "hello"

    def test_nested_segments(self) -> None:
        value = [{"text": "a"}, {"value": "b"}, {"content": [{"text": "c"}, "d"]}]
        assert extract_text(value) == "a\nb\nc\nd"

    def test_unrecognised_mapping_is_empty(self) -> None:
        assert extract_text({"other": "x"}) == ""

    def test_none_is_empty(self) -> None:
        assert extract_text(None) == ""


class TestPartText:
    def test_tool_part_includes_name_input_and_output(self) -> None:
        part = make_tool_part("bash", output="ok", tool_input={"command": "ls"})
        text = part_text(part)
        assert text.startswith("[tool:bash] completed")
        assert '"command": "ls"' in text
        assert text.endswith("ok")

    def test_markers_render_empty(self) -> None:
        assert part_text(StepStartPart()) == ""

    def test_patch_lists_files(self) -> None:
        assert part_text(PatchPart(files=["a.py", "b.py"])) == "[patch] a.py, b.py"


class TestDerivePartId:
    def test_explicit_id_wins(self) -> None:
        assert derive_part_id("m1", make_text_part("x", part_id="p9"), 0) == "p9"

    def test_tool_call_id_used(self) -> None:
        part = ToolPart(tool="bash", call_id="call_1")
        assert derive_part_id("m1", part, 3) == "call_1"

    def test_positional_fallback(self) -> None:
        assert derive_part_id("m1", TextPart(text="x"), 2) == "m1-part-2"


class TestNormalizeMessagePart:
    def test_decodes_html_entities_in_text(self) -> None:
        normalized = normalize_message_part({"type": "text", "text": "a &lt; b &amp;&amp; c"})
        assert normalized["text"] == "a < b && c"

    def test_decodes_nested_segments(self) -> None:
        normalized = normalize_message_part(
            {"type": "text", "text": {"content": ["&quot;q&quot;", {"text": "&gt;"}]}}
        )
        assert normalized["text"]["content"] == ['"q"', {"text": ">"}]

    def test_drops_render_cache(self) -> None:
        normalized = normalize_message_part({"type": "text", "text": "x", "renderCache": {"a": 1}})
        assert "renderCache" not in normalized

    def test_tool_part_takes_call_id_as_id(self) -> None:
        normalized = normalize_message_part({"type": "tool", "tool": "bash", "toolCallId": "c7"})
        assert normalized["id"] == "c7"

    def test_input_not_mutated(self) -> None:
        raw = {"type": "text", "text": "&amp;"}
        normalize_message_part(raw)
        assert raw["text"] == "&amp;"

    def test_derive_tool_call_id_ignores_non_tools(self) -> None:
        assert derive_tool_call_id({"type": "text", "callID": "c1"}) is None


class TestTokenEstimator:
    def test_empty_text_is_zero(self, estimator) -> None:
        assert estimator.estimate("") == 0

    def test_heuristic_four_chars_per_token(self, estimator) -> None:
        assert estimator.estimate("x" * 400) == 100

    def test_claude_heuristic_three_chars_per_token(self) -> None:
        from chronicle.tokens.estimator import TokenEstimator

        e = TokenEstimator()
        assert e.estimate("x" * 300, ModelInfo.from_model_string("claude-opus-4")) == 100

    def test_estimate_cached_uses_cache(self, estimator) -> None:
        key = estimator.content_hash("abc")
        first = estimator.estimate_cached("x" * 40, key)
        assert estimator.estimate_cached("completely different", key) == first

    def test_pruned_part_counts_placeholder_only(self, estimator) -> None:
        full = make_tool_part("bash", output="y" * 4000)
        pruned = full.model_copy(
            update={"state": full.state.model_copy(update={"output": "[pruned]"}), "pruned_at": 1}
        )
        assert estimator.estimate_part(pruned) < estimator.estimate_part(full)
        assert estimator.estimate_part(pruned) == estimator.estimate("[pruned]")

    def test_estimate_message_sums_parts(self, estimator) -> None:
        part = make_text_part("x" * 400, part_id="p1")
        record = MessageRecord(
            id="m1",
            session_id="s1",
            role="user",
            part_ids=("p1",),
            parts={"p1": NormalizedPartRecord(id="p1", data=part)},
        )
        assert estimator.estimate_message(record) == 100 + 4

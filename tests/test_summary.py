"""Tests for the heuristic summarizer and human summary rendering."""

from __future__ import annotations

import pytest

from chronicle.compaction.summary import HeuristicSummarizer, render_human_summary
from chronicle.models.compaction import validate_structured_summary
from chronicle.models.parts import FilePart
from chronicle.models.records import MessageUpsertInput
from tests.conftest import make_text_part, make_tool_part, seed_session


def _add(store, message_id: str, parts, role: str = "assistant"):
    store.upsert_message(
        MessageUpsertInput(id=message_id, session_id="s1", role=role, parts=parts)
    )


@pytest.fixture
def summarizer(compaction_config, estimator):
    return HeuristicSummarizer(compaction_config, estimator)


@pytest.fixture
def worked_session(store):
    _add(store, "m0", [make_text_part("Please add a login page. It should use OAuth.")], role="user")
    _add(store, "m1", [make_text_part("I implemented the login form. Next step: wire up OAuth.")])
    _add(store, "m2", [make_text_part("We decided to use Authlib because it supports PKCE.")])
    _add(store, "m3", [make_tool_part("write", part_id="t1", tool_input={"filePath": "src/login.py"})])
    _add(
        store,
        "m4",
        [make_tool_part("bash", part_id="t2", status="error", output=None, error="ImportError: no module authlib")],
    )
    _add(store, "m5", [make_text_part("Installed the missing package and it works now.")])
    _add(store, "m6", [FilePart(id="f1", mime="image/png", url="file:///tmp/shot.png")])
    return store.get_session_messages("s1")


class TestHeuristicSummarizer:
    async def test_empty_input_returns_default(self, summarizer) -> None:
        summary = await summarizer.summarize([])
        assert summary.what_was_done == ["Session compaction completed"]
        assert summary.provenance.model == "system"

    async def test_extracts_goals_and_work(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        assert summary.user_goals == ["Please add a login page."]
        assert "I implemented the login form." in summary.what_was_done
        assert summary.next_steps == ["Next step: wire up OAuth."]

    async def test_extracts_decision_with_rationale(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        assert len(summary.key_decisions) == 1
        decision = summary.key_decisions[0]
        assert decision.id == "decision-1"
        assert decision.actor == "agent"
        assert decision.rationale == "it supports PKCE."

    async def test_extracts_files_and_artifacts(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        assert [(f.path, f.action) for f in summary.files] == [("src/login.py", "write")]
        assert [(a.type, a.uri) for a in summary.artifacts] == [("image/png", "file:///tmp/shot.png")]

    async def test_pairs_error_with_resolution(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        assert len(summary.errors) == 1
        assert summary.errors[0].error == "ImportError: no module authlib"
        assert summary.errors[0].resolution == "Installed the missing package and it works now."

    async def test_provenance_and_validity(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        assert summary.provenance.model == "heuristic"
        assert summary.provenance.token_count > 0
        assert summary.summary_type == "tierB_detailed"
        validate_structured_summary(summary)

    async def test_fallback_when_nothing_done(self, summarizer, store) -> None:
        seed_session(store, "s1", 2)
        summary = await summarizer.summarize(store.get_session_messages("s1"))
        assert summary.what_was_done == ["Discussed 2 earlier messages"]
        assert summary.current_state == "plain message 1"

    async def test_aggressive_mode(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session, aggressive=True)
        assert summary.summary_type == "tierA_short"
        assert summary.aggressive is True
        assert "aggressive" in summary.tags

    async def test_current_state_is_capped(self, compaction_config, estimator, store) -> None:
        _add(store, "m0", [make_text_part("word " * 200)], role="user")
        summarizer = HeuristicSummarizer(compaction_config, estimator)
        summary = await summarizer.summarize(store.get_session_messages("s1"))
        assert len(summary.current_state) <= compaction_config.current_state_max_chars


class TestRenderHumanSummary:
    async def test_sections_rendered(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        text = render_human_summary(summary, compressed=7)
        assert text.startswith("## Conversation summary (7 earlier messages compacted)")
        assert "### Goals" in text
        assert "- Please add a login page." in text
        assert "write `src/login.py`" in text
        assert "### Decisions" in text
        assert "### Current state" in text

    async def test_truncated_to_max_chars(self, summarizer, worked_session) -> None:
        summary = await summarizer.summarize(worked_session)
        text = render_human_summary(summary, compressed=7, max_chars=60)
        assert len(text) <= 60
        assert text.endswith("...")

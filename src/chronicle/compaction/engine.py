"""Compaction orchestration: state machine, compact/prune runs, undo and budget checks.

Per session the engine moves ``idle -> compacting -> idle``. A short-lived
``suggested`` state is raised by :meth:`CompactionEngine.check_token_budget`
when usage crosses ``auto_compact_threshold`` percent of the model's context
window, until the user compacts or dismisses the suggestion.

Compact mode (sliding-window categorization):

1. Categorize live messages into keep and compress sets
   (:mod:`chronicle.compaction.classify`).
2. Redact secrets from the compress set and summarize it.
3. Validate summary, audit event and result. Nothing is mutated until all
   three pass.
4. Snapshot the whole pre-compaction message set, append one summary
   message, archive the compressed messages and record the audit event.

Prune mode blanks large tool/text payloads in place
(:mod:`chronicle.compaction.pruner`) with the same snapshot/undo mechanics.

``token_after`` is an estimate, not a measurement::

    token_after = token_before * (1 - (compressed / total) * damping_factor)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

import structlog

from chronicle.compaction.classify import categorize_messages
from chronicle.compaction.history import CompactionHistory
from chronicle.compaction.pruner import plan_prune, pruned_copy
from chronicle.compaction.secrets import Redaction, redact_value
from chronicle.compaction.summary import HeuristicSummarizer, Summarizer, render_human_summary
from chronicle.events.bus import ChronicleEvent, EventBus
from chronicle.ids import make_id, now_ms
from chronicle.models.compaction import (
    CompactionEvent,
    CompactionMode,
    CompactionResult,
    CompactionState,
    TokenBudgetDecision,
    TriggerReason,
    UndoResult,
    estimate_token_reduction,
    validate_compaction_event,
    validate_compaction_result,
    validate_structured_summary,
)
from chronicle.models.config import CompactionConfig, ModelInfo
from chronicle.models.info import InfoTime, MessageInfo
from chronicle.models.parts import TextPart, dump_part, parse_part
from chronicle.models.records import MessageRecord, MessageUpsertInput, PartUpdateInput
from chronicle.models.snapshot import CompactionSnapshot
from chronicle.store.bus import MessageStoreBus
from chronicle.store.instance import InstanceStore
from chronicle.tokens.estimator import TokenEstimator

# Keys that identify a part; never rewritten by secret redaction.
_IDENTITY_KEYS = ("id", "type", "sessionID", "messageID", "callID", "tool")
_PREVIEW_CHARS = 200


class CompactionEngine:
    """
    Runs compaction, prune, undo and rehydrate for sessions of any instance.

    Guarantees:
    - ``compact()``, ``undo_compaction()`` and ``rehydrate_session()`` never
      raise: failures are logged, published as ``COMPACTION_FAILED`` and
      returned as a result with ``success=False`` and a reason.
    - A failed run leaves the store untouched; validation happens before
      the first mutation.
    - A session is never compacted twice concurrently.

    Events go to ``event_bus`` when one is injected, otherwise to the bus of
    the instance store being compacted.

    Example::

        engine = CompactionEngine(store_bus, config.compaction)
        decision = engine.check_token_budget("workspace-1", "ses_1", "anthropic/claude-sonnet-4")
        if decision.suggest_compaction:
            result = await engine.compact("workspace-1", "ses_1")
            if result.success and result.compaction_event:
                await engine.undo_compaction("workspace-1", result.compaction_event.event_id)
    """

    def __init__(
        self,
        store_bus: MessageStoreBus,
        config: CompactionConfig | None = None,
        event_bus: EventBus | None = None,
        estimator: TokenEstimator | None = None,
        summarizer: Summarizer | None = None,
    ) -> None:
        self._store_bus = store_bus
        self._config = config or CompactionConfig()
        self._event_bus = event_bus
        self._estimator = estimator or TokenEstimator()
        self._summarizer: Summarizer = summarizer or HeuristicSummarizer(
            self._config, self._estimator
        )
        self._history = CompactionHistory(retention=self._config.undo_retention_window)
        self._states: dict[tuple[str, str], CompactionState] = {}
        self._pending_tasks: set[asyncio.Task[CompactionResult]] = set()
        self._logger = structlog.get_logger("chronicle.compaction")
        self._unsubscribers = [
            store_bus.on_session_cleared(self._on_session_cleared),
            store_bus.on_instance_destroyed(self._on_instance_destroyed),
        ]

    @property
    def history(self) -> CompactionHistory:
        return self._history

    def close(self) -> None:
        """Detach from the store bus lifecycle hooks."""
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    # ── State machine ──────────────────────────────────────────────────────────

    def get_compaction_state(self, instance_id: str, session_id: str) -> CompactionState:
        return self._states.get((instance_id, session_id), CompactionState.IDLE)

    def is_compacting(self, instance_id: str, session_id: str) -> bool:
        return self.get_compaction_state(instance_id, session_id) == CompactionState.COMPACTING

    def set_suggested(
        self,
        instance_id: str,
        session_id: str,
        usage_percent: float = 0.0,
        urgency: str = "medium",
    ) -> bool:
        """
        Raise the advisory ``suggested`` state for an idle session.

        Returns False when the session is not idle or the user preference is
        ``never``.
        """
        if self._config.user_preference == "never":
            return False
        if self.get_compaction_state(instance_id, session_id) != CompactionState.IDLE:
            return False
        self._states[(instance_id, session_id)] = CompactionState.SUGGESTED
        self._publish(
            instance_id,
            ChronicleEvent.COMPACTION_SUGGESTED,
            {
                "instance_id": instance_id,
                "session_id": session_id,
                "usage_percent": usage_percent,
                "urgency": urgency,
            },
        )
        return True

    def dismiss_suggestion(self, instance_id: str, session_id: str) -> bool:
        if self.get_compaction_state(instance_id, session_id) != CompactionState.SUGGESTED:
            return False
        self._states.pop((instance_id, session_id), None)
        return True

    def set_remote_compacting(self, instance_id: str, session_id: str, compacting: bool) -> None:
        """Mirror a server-side compaction flag into the local state machine."""
        if compacting:
            self._states[(instance_id, session_id)] = CompactionState.COMPACTING
        elif self.is_compacting(instance_id, session_id):
            self._states.pop((instance_id, session_id), None)

    def compacting_callback(self, instance_id: str) -> Callable[[str, bool], None]:
        """Adapter for the reconciler's ``on_compacting`` hook, bound to one instance."""

        def on_compacting(session_id: str, compacting: bool) -> None:
            self.set_remote_compacting(instance_id, session_id, compacting)

        return on_compacting

    # ── Budget check and auto trigger ──────────────────────────────────────────

    def check_token_budget(
        self, instance_id: str, session_id: str, model: ModelInfo | str
    ) -> TokenBudgetDecision:
        """
        Pre-flight check for the send path.

        Sends are disallowed only while the session is compacting (or the
        instance is unknown). Urgency is ``high`` at 90 % of the context
        window, ``medium`` at ``auto_compact_threshold``, ``low`` at 50 %.
        The warning rule (usage at ``warning_threshold`` of the window *and*
        usage plus the model's output limit reaching the window) also reports
        ``high``. Crossing either threshold raises the suggested state.
        """
        model_info = ModelInfo.from_model_string(model) if isinstance(model, str) else model
        store = self._store_bus.get_instance(instance_id)
        if store is None:
            return TokenBudgetDecision(
                allow=False, context_limit=model_info.context_limit, reason="Instance not found"
            )

        usage_tokens = self._current_tokens(
            store, session_id, store.get_session_messages(session_id), model_info
        )
        limit = model_info.context_limit
        percent = usage_tokens / limit * 100 if limit > 0 else 0.0
        threshold = self._config.auto_compact_threshold
        warning = (
            limit > 0
            and usage_tokens >= limit * self._config.warning_threshold
            and usage_tokens + model_info.max_output_tokens >= limit
        )

        if percent >= 90 or warning:
            urgency = "high"
        elif percent >= threshold:
            urgency = "medium"
        elif percent >= 50:
            urgency = "low"
        else:
            urgency = "none"

        compacting = self.is_compacting(instance_id, session_id)
        suggest = (
            (percent >= threshold or warning)
            and self._config.user_preference != "never"
            and not compacting
        )
        if compacting:
            reason = "Compaction in progress"
        elif urgency == "high":
            reason = f"Context {percent:.0f}% full - compaction required"
        elif suggest:
            reason = f"Context {percent:.0f}% full - compaction recommended"
        elif urgency == "low":
            reason = f"Context {percent:.0f}% full"
        else:
            reason = ""

        if suggest:
            self.set_suggested(instance_id, session_id, usage_percent=percent, urgency=urgency)

        return TokenBudgetDecision(
            allow=not compacting,
            suggest_compaction=suggest,
            urgency=urgency,
            usage_tokens=usage_tokens,
            context_limit=limit,
            usage_percent=round(percent, 2),
            reason=reason,
        )

    def check_and_trigger(
        self, instance_id: str, session_id: str, model: ModelInfo | str
    ) -> bool:
        """
        Check the budget and, with ``user_preference == "auto"``, start a
        background compaction.

        Non-blocking. Must be called with a running event loop. Await
        :meth:`wait_for_pending` to join the background task.

        Returns:
            True if a compaction task was scheduled.
        """
        decision = self.check_token_budget(instance_id, session_id, model)
        if not decision.suggest_compaction:
            return False
        if not self._config.auto_compact_enabled or self._config.user_preference != "auto":
            return False

        self._logger.info(
            "compaction_triggered",
            instance_id=instance_id,
            session_id=session_id,
            usage_percent=decision.usage_percent,
        )
        task = asyncio.create_task(
            self.compact(
                instance_id, session_id, trigger_reason="overflow", actor="auto", model=model
            )
        )
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)
        return True

    async def wait_for_pending(self) -> None:
        """Await every in-flight background compaction."""
        tasks = [task for task in self._pending_tasks if not task.done()]
        if not tasks:
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                self._logger.error("background_compaction_failed", error=str(result))

    # ── Compaction entry point ─────────────────────────────────────────────────

    async def compact(
        self,
        instance_id: str,
        session_id: str,
        mode: CompactionMode = "compact",
        trigger_reason: TriggerReason = "manual",
        actor: str = "user",
        aggressive: bool = False,
        model: ModelInfo | str | None = None,
    ) -> CompactionResult:
        """
        Compact or prune one session. Never raises.

        Args:
            instance_id: Instance owning the session.
            session_id: The session to compact.
            mode: ``"compact"`` (summary + archive) or ``"prune"`` (blank payloads).
            trigger_reason: Recorded on the audit event.
            actor: ``"user"`` or ``"auto"``, recorded on the audit event.
            aggressive: Ask the summarizer for a shorter summary.
            model: Model whose encoding sizes the session. Token estimates use
                the character heuristic when omitted.

        Returns:
            CompactionResult. ``success=False`` carries the reason in
            ``human_summary``.
        """
        store = self._store_bus.get_instance(instance_id)
        if store is None:
            return self._failure(instance_id, session_id, mode, "Instance not found")
        if self.is_compacting(instance_id, session_id):
            return self._failure(
                instance_id, session_id, mode, "Compaction already in progress"
            )

        records = store.get_session_messages(session_id)
        if len(records) <= self._config.min_messages:
            reported = self._reported_tokens(store, session_id)
            self._logger.debug(
                "compaction_skipped_short_session",
                session_id=session_id,
                message_count=len(records),
            )
            return CompactionResult(
                success=True,
                mode=mode,
                session_id=session_id,
                human_summary=(
                    f"Session has {len(records)} messages; nothing to compact "
                    f"(minimum {self._config.min_messages + 1})"
                ),
                token_before=reported,
                token_after=reported,
                token_reduction_pct=0,
            )

        model_info = ModelInfo.from_model_string(model) if isinstance(model, str) else model
        token_before = self._current_tokens(store, session_id, records, model_info)

        key = (instance_id, session_id)
        self._states[key] = CompactionState.COMPACTING
        self._publish(
            instance_id,
            ChronicleEvent.COMPACTION_STARTED,
            {
                "instance_id": instance_id,
                "session_id": session_id,
                "mode": mode,
                "trigger_reason": trigger_reason,
            },
        )
        try:
            if mode == "prune":
                result = await self._run_prune(
                    instance_id,
                    store,
                    session_id,
                    records,
                    token_before,
                    trigger_reason,
                    actor,
                    model_info,
                )
            else:
                result = await self._run_compact(
                    instance_id,
                    store,
                    session_id,
                    records,
                    token_before,
                    trigger_reason,
                    actor,
                    aggressive,
                )
        except Exception as exc:
            self._logger.error(
                "compaction_failed",
                instance_id=instance_id,
                session_id=session_id,
                mode=mode,
                error=str(exc),
            )
            return self._failure(instance_id, session_id, mode, f"Compaction failed: {exc}")
        finally:
            self._states.pop(key, None)

        if result.compaction_event is not None:
            self._publish(
                instance_id,
                ChronicleEvent.COMPACTION_COMPLETED,
                {
                    "instance_id": instance_id,
                    **result.compaction_event.model_dump(mode="json"),
                },
            )
        return result

    # ── Compact mode ───────────────────────────────────────────────────────────

    async def _run_compact(
        self,
        instance_id: str,
        store: InstanceStore,
        session_id: str,
        records: list[MessageRecord],
        token_before: int,
        trigger_reason: TriggerReason,
        actor: str,
        aggressive: bool,
    ) -> CompactionResult:
        infos = {
            r.id: info for r in records if (info := store.get_message_info(r.id)) is not None
        }
        categories = categorize_messages(records, self._config, infos)
        if not categories.compress:
            return CompactionResult(
                success=True,
                mode="compact",
                session_id=session_id,
                human_summary="Session is already optimized; every message is retained",
                token_before=token_before,
                token_after=token_before,
                token_reduction_pct=0,
            )

        compress_ids = set(categories.compress)
        compressed = [r for r in records if r.id in compress_ids]
        redacted, redactions = self._redact(compressed)
        if redactions:
            self._logger.info(
                "secrets_redacted",
                session_id=session_id,
                count=len(redactions),
                reasons=sorted({r.reason for r in redactions}),
            )

        summary = validate_structured_summary(
            await self._summarizer.summarize(redacted, aggressive=aggressive)
        )
        human_summary = render_human_summary(
            summary, len(compressed), self._config.summary_max_chars
        )

        now = datetime.now(UTC)
        snapshot_id = make_id("snap")
        summary_message_id = make_id("msg")
        ratio = len(compressed) / len(records)
        token_after = max(0, int(token_before * (1 - ratio * self._config.damping_factor)))

        event = validate_compaction_event(
            CompactionEvent(
                event_id=make_id("cmp"),
                session_id=session_id,
                timestamp=now,
                actor="auto" if actor == "auto" else "user",
                trigger_reason=trigger_reason,
                mode="compact",
                token_before=token_before,
                token_after=token_after,
                model_used=summary.provenance.model,
                snapshot_id=snapshot_id,
                summary_message_id=summary_message_id,
                affected_count=len(compressed),
            )
        )
        result = validate_compaction_result(
            CompactionResult(
                success=True,
                mode="compact",
                session_id=session_id,
                human_summary=human_summary,
                detailed_summary=summary,
                token_before=token_before,
                token_after=token_after,
                token_reduction_pct=estimate_token_reduction(token_before, token_after),
                compaction_event=event,
                preview=human_summary[:_PREVIEW_CHARS],
            )
        )

        # Everything below mutates state; all validation is done.
        snapshot = self._take_snapshot(store, session_id, snapshot_id, now)
        created = now_ms()
        summary_part = TextPart(
            id=make_id("prt"),
            text=human_summary,
            synthetic=True,
            metadata={"compaction_event_id": event.event_id},
        )
        with store.batch():
            store.upsert_message(
                MessageUpsertInput(
                    id=summary_message_id,
                    session_id=session_id,
                    role="assistant",
                    status="complete",
                    parts=[summary_part],
                    created_at=created,
                    updated_at=created,
                    is_ephemeral=False,
                )
            )
            store.set_message_info(
                summary_message_id,
                MessageInfo(
                    id=summary_message_id,
                    session_id=session_id,
                    role="assistant",
                    time=InfoTime(created=created, completed=created),
                    summary=True,
                    mode="compaction",
                ),
            )
            store.archive_messages(session_id, categories.compress)
        self._history.record(instance_id, event, snapshot)

        self._logger.info(
            "compaction_completed",
            instance_id=instance_id,
            session_id=session_id,
            compressed=len(compressed),
            kept=len(categories.keep),
            token_before=token_before,
            token_after=token_after,
        )
        return result

    # ── Prune mode ─────────────────────────────────────────────────────────────

    async def _run_prune(
        self,
        instance_id: str,
        store: InstanceStore,
        session_id: str,
        records: list[MessageRecord],
        token_before: int,
        trigger_reason: TriggerReason,
        actor: str,
        model: ModelInfo | None,
    ) -> CompactionResult:
        plan = plan_prune(records, self._config, self._estimator, model)
        if not plan.candidates:
            return CompactionResult(
                success=True,
                mode="prune",
                session_id=session_id,
                human_summary="Nothing to prune",
                token_before=token_before,
                token_after=token_before,
                token_reduction_pct=0,
            )

        now = datetime.now(UTC)
        snapshot_id = make_id("snap")
        token_after = max(0, token_before - plan.reclaimed_tokens)
        human_summary = (
            f"Pruned {plan.count} parts, reclaiming about {plan.reclaimed_tokens} tokens"
        )
        event = validate_compaction_event(
            CompactionEvent(
                event_id=make_id("cmp"),
                session_id=session_id,
                timestamp=now,
                actor="auto" if actor == "auto" else "user",
                trigger_reason=trigger_reason,
                mode="prune",
                token_before=token_before,
                token_after=token_after,
                model_used="none",
                snapshot_id=snapshot_id,
                affected_count=plan.count,
            )
        )
        result = validate_compaction_result(
            CompactionResult(
                success=True,
                mode="prune",
                session_id=session_id,
                human_summary=human_summary,
                token_before=token_before,
                token_after=token_after,
                token_reduction_pct=estimate_token_reduction(token_before, token_after),
                compaction_event=event,
                preview=human_summary,
            )
        )

        snapshot = self._take_snapshot(store, session_id, snapshot_id, now)
        pruned_at = now_ms()
        with store.batch():
            for candidate in plan.candidates:
                record = store.get_message(candidate.message_id)
                part_record = record.parts.get(candidate.part_id) if record else None
                if part_record is None:
                    continue
                store.apply_part_update(
                    PartUpdateInput(
                        message_id=candidate.message_id,
                        part=pruned_copy(
                            part_record.data, self._config.prune_placeholder, pruned_at
                        ),
                    )
                )
        self._history.record(instance_id, event, snapshot)

        self._logger.info(
            "prune_completed",
            instance_id=instance_id,
            session_id=session_id,
            pruned_count=plan.count,
            pruned_tokens=plan.reclaimed_tokens,
            parts_scanned=plan.parts_scanned,
        )
        return result

    # ── Undo / rehydrate ───────────────────────────────────────────────────────

    async def undo_compaction(self, instance_id: str, event_id: str) -> UndoResult:
        """
        Roll a session back to the snapshot taken by ``event_id``.

        Snapshot records win over current state unconditionally. On success
        the audit event is removed and its snapshot deleted.
        """
        resolved = self._resolve_event(instance_id, event_id)
        if isinstance(resolved, UndoResult):
            return resolved
        store, event = resolved
        snapshot = (
            self._history.get_snapshot(instance_id, event.session_id, event.snapshot_id)
            if event.snapshot_id
            else None
        )
        if snapshot is None:
            return self._undo_failure(
                instance_id, event.session_id, event_id, "Snapshot no longer available"
            )

        try:
            count = self._restore(store, snapshot)
        except Exception as exc:
            self._logger.error(
                "undo_failed", instance_id=instance_id, event_id=event_id, error=str(exc)
            )
            return self._undo_failure(instance_id, event.session_id, event_id, f"Undo failed: {exc}")

        self._history.remove_event(instance_id, event.session_id, event_id)
        self._history.delete_snapshot(instance_id, event.session_id, snapshot.snapshot_id)
        self._publish(
            instance_id,
            ChronicleEvent.COMPACTION_UNDONE,
            {
                "instance_id": instance_id,
                "session_id": event.session_id,
                "event_id": event_id,
                "restored_message_count": count,
            },
        )
        self._logger.info(
            "compaction_undone", instance_id=instance_id, event_id=event_id, restored=count
        )
        return UndoResult(
            success=True,
            event_id=event_id,
            session_id=event.session_id,
            restored_message_count=count,
        )

    async def rehydrate_session(self, instance_id: str, event_id: str) -> UndoResult:
        """
        Restore the nearest snapshot taken at or before ``event_id``.

        Unlike :meth:`undo_compaction` the audit trail and snapshot are kept,
        so the same point can be inspected again.
        """
        resolved = self._resolve_event(instance_id, event_id)
        if isinstance(resolved, UndoResult):
            return resolved
        store, event = resolved
        snapshot = self._history.nearest_snapshot_before(
            instance_id, event.session_id, event.timestamp
        )
        if snapshot is None:
            return self._undo_failure(
                instance_id, event.session_id, event_id, "No snapshot at or before this event"
            )
        try:
            count = self._restore(store, snapshot)
        except Exception as exc:
            self._logger.error(
                "rehydrate_failed", instance_id=instance_id, event_id=event_id, error=str(exc)
            )
            return self._undo_failure(
                instance_id, event.session_id, event_id, f"Rehydrate failed: {exc}"
            )
        self._logger.info(
            "session_rehydrated",
            instance_id=instance_id,
            event_id=event_id,
            snapshot_id=snapshot.snapshot_id,
            restored=count,
        )
        return UndoResult(
            success=True,
            event_id=event_id,
            session_id=event.session_id,
            restored_message_count=count,
        )

    # ── History ────────────────────────────────────────────────────────────────

    def get_history(self, instance_id: str, session_id: str) -> list[CompactionEvent]:
        return self._history.events(instance_id, session_id)

    def export_history(self) -> str:
        """All sessions' compaction events as NDJSON."""
        return self._history.export_ndjson()

    # ── Internal helpers ───────────────────────────────────────────────────────

    def _reported_tokens(self, store: InstanceStore, session_id: str) -> int:
        usage = store.get_session_usage(session_id)
        return usage.actual_usage_tokens if usage is not None else 0

    def _current_tokens(
        self,
        store: InstanceStore,
        session_id: str,
        records: Sequence[MessageRecord],
        model: ModelInfo | None = None,
    ) -> int:
        """Measured context size when the server reported one, else an estimate."""
        reported = self._reported_tokens(store, session_id)
        if reported > 0:
            return reported
        return self._estimator.estimate_messages(records, model)

    def _redact(
        self, records: Sequence[MessageRecord]
    ) -> tuple[list[MessageRecord], list[Redaction]]:
        """Copies of ``records`` with secrets redacted from every part payload."""
        redactions: list[Redaction] = []
        redacted: list[MessageRecord] = []
        for record in records:
            parts = {}
            for part_id, part_record in record.parts.items():
                raw = dump_part(part_record.data)
                clean: dict[str, Any] = redact_value(raw, f"{record.id}.{part_id}", redactions)
                clean.update({k: raw[k] for k in _IDENTITY_KEYS if k in raw})
                parts[part_id] = part_record.model_copy(update={"data": parse_part(clean)})
            redacted.append(record.model_copy(update={"parts": parts}))
        return redacted, redactions

    def _take_snapshot(
        self, store: InstanceStore, session_id: str, snapshot_id: str, created_at: datetime
    ) -> CompactionSnapshot:
        message_ids, records, infos = store.export_session_state(session_id)
        return CompactionSnapshot(
            snapshot_id=snapshot_id,
            session_id=session_id,
            created_at=created_at,
            message_ids=message_ids,
            messages=records,
            infos=infos,
        )

    def _restore(self, store: InstanceStore, snapshot: CompactionSnapshot) -> int:
        # Copies, so a retained snapshot never aliases live records.
        records = {mid: r.model_copy(deep=True) for mid, r in snapshot.messages.items()}
        infos = {mid: i.model_copy(deep=True) for mid, i in snapshot.infos.items()}
        return store.restore_messages(snapshot.session_id, snapshot.message_ids, records, infos)

    def _resolve_event(
        self, instance_id: str, event_id: str
    ) -> tuple[InstanceStore, CompactionEvent] | UndoResult:
        store = self._store_bus.get_instance(instance_id)
        if store is None:
            return self._undo_failure(instance_id, "", event_id, "Instance not found")
        event = self._history.find_event(instance_id, event_id)
        if event is None:
            return self._undo_failure(instance_id, "", event_id, "Compaction event not found")
        if self.is_compacting(instance_id, event.session_id):
            return self._undo_failure(
                instance_id, event.session_id, event_id, "Compaction in progress"
            )
        return store, event

    def _failure(
        self, instance_id: str, session_id: str, mode: CompactionMode, reason: str
    ) -> CompactionResult:
        self._logger.warning(
            "compaction_unsuccessful", instance_id=instance_id, session_id=session_id, reason=reason
        )
        self._publish(
            instance_id,
            ChronicleEvent.COMPACTION_FAILED,
            {"instance_id": instance_id, "session_id": session_id, "error": reason},
        )
        return CompactionResult(
            success=False, mode=mode, session_id=session_id, human_summary=reason
        )

    def _undo_failure(
        self, instance_id: str, session_id: str, event_id: str, reason: str
    ) -> UndoResult:
        self._logger.warning(
            "undo_unsuccessful", instance_id=instance_id, event_id=event_id, reason=reason
        )
        self._publish(
            instance_id,
            ChronicleEvent.COMPACTION_FAILED,
            {"instance_id": instance_id, "session_id": session_id, "error": reason},
        )
        return UndoResult(success=False, event_id=event_id, session_id=session_id, reason=reason)

    def _publish(self, instance_id: str, event: ChronicleEvent, payload: dict[str, Any]) -> None:
        bus = self._event_bus
        if bus is None:
            store = self._store_bus.get_instance(instance_id)
            if store is None:
                return
            bus = store.event_bus
        bus.publish(event, payload)

    def _on_session_cleared(self, instance_id: str, session_id: str) -> None:
        self._history.clear_session(instance_id, session_id)
        self._states.pop((instance_id, session_id), None)

    def _on_instance_destroyed(self, instance_id: str) -> None:
        self._history.clear_instance(instance_id)
        for key in [k for k in self._states if k[0] == instance_id]:
            del self._states[key]

"""chatnav.core.orchestrator

Turn orchestrator: runs every chat turn through a fixed tier precedence.

    1. stop/cancel           exit phrases, list rejection
    2. return-to-list        "back to options" reinstates the paused list
    3. scope-cue resolution  "from chat", "in the Recent panel"
    4. arbitration           selection/command resolution, confidence gate,
                             constrained model fallback, clarifier
    5. known command         fixed global navigation table
    6. informational         answer engine fallback

Each tier either fully handles the turn (returns a TurnResult) or passes
(returns None) without consuming anything. The informational tier always
handles, so every turn ends in an action, a message, an answer or one
clarifying question.

HARD RULES:
- One orchestrator per conversation; it alone mutates ConversationState,
  the clarification session and the focus latch
- Turns are serialized; the model call is the only blocking step
- Model failures produce the same clarifier the deterministic path would
- Collaborator failures (executor, answer engine, telemetry) are absorbed
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from chatnav.brain.arbitrator import ArbiterVerdict, ConstrainedArbitrator, VerdictKind
from chatnav.context.candidates import CandidateGroup, CandidateOption, OptionList, SourceType
from chatnav.context.focus_latch import FocusLatch, FocusLatchState, LatchEvent, LatchEventKind, LatchStatus
from chatnav.context.grounding_set import GroundingSet, build, find_widget, titles, widget_group
from chatnav.context.session_state import ClarificationSession, ConversationState, new_list_id, new_session_id
from chatnav.core import confidence
from chatnav.core.commands import KnownCommand, capability_options, match_command
from chatnav.core.config import Config
from chatnav.core.input_classifier import (
    Classification,
    ClassifierContext,
    InputKind,
    classify,
    is_affirmation,
    is_ambiguous_exit,
    is_keep_choosing,
)
from chatnav.core.logger import get_logger
from chatnav.core.resolver import AmbiguityReason, ResolverOutcome, resolve, select_target_group
from chatnav.core.text_normalize import label_tokens, tokenize
from chatnav.policy.clarifier import (
    EXIT_IDS,
    EXIT_NONE_ID,
    EXIT_START_OVER_ID,
    LIST_CHOICE_PREFIX,
    ClarifierChoice,
    ClarifierOutput,
    build_clarifier,
    build_list_question,
    exit_options,
    list_choice_options,
    loading_message,
    order_pool,
    without_exits,
)
from chatnav.policy.telemetry import RoutingEvent, RoutingTelemetry, TelemetryEventType
from chatnav.widgets.registry import RegistryUnavailableError, WidgetSnapshot, WidgetSnapshotRegistry

# Actions that open a widget; executing one engages the focus latch
WIDGET_OPEN_ACTIONS = {"open_panel", "open_widget", "open_links_panels", "open_recent"}

NOISE_REPROMPT = "Sorry, I didn't catch that. Could you say it another way?"
HESITATION_REPLY = "Take your time."
HESITATION_HINT_REPLY = "No rush. Say the number, or \"none of these\"."
CANCEL_REPLY = "Okay, cancelled."
EXIT_CONFIRM_QUESTION = "Do you want to cancel and start over, or keep choosing from these options?"
KEEP_CHOOSING_REPLY = "Okay, keep choosing."
STOP_SUPPRESSED_REPLY = "All set. What would you like to do?"
STOPPED_LIST_REPLY = (
    "That list was closed. Say 'back to the options' to reopen it, or tell me what you want instead."
)
REJECTION_REPLY = "Okay, none of those. What would you like instead?"
NO_LIST_REPLY = "There's no earlier list to go back to."
NO_PANEL_REPLY = "I don't see an open panel with options right now."
NO_ANSWER_REPLY = "I can open panels and pick from lists. Try \"help\" to see what I can do."
CAPABILITY_QUESTION = "I'm not sure which one you mean. Here's what I can open:"
RETURN_QUESTION = "Here are the earlier options:"


class Tier(Enum):
    STOP_CANCEL = "stop_cancel"
    RETURN_TO_LIST = "return_to_list"
    SCOPE_CUE = "scope_cue"
    ARBITRATION = "arbitration"
    KNOWN_COMMAND = "known_command"
    INFORMATIONAL = "informational"


class ResultKind(Enum):
    EXECUTE = "execute"
    CLARIFY = "clarify"
    MESSAGE = "message"
    ANSWER = "answer"


@dataclass
class ExecutedAction:
    option_id: str
    label: str
    action: str
    source_type: str
    group_id: str = ""
    widget_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "option_id": self.option_id,
            "label": self.label,
            "action": self.action,
            "source": self.source_type,
            "group_id": self.group_id,
            "widget_id": self.widget_id,
        }


@dataclass
class ArbitrationResult:
    """
    Outcome of the selection/command arbitration tier.

    decision is one of execute / clarify / need_more_info.
    """
    decision: str
    winner_id: Optional[str] = None
    confidence: float = 0.0
    ambiguity_reason: Optional[str] = None
    verdict: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision,
            "winner_id": self.winner_id,
            "confidence": self.confidence,
            "ambiguity_reason": self.ambiguity_reason,
            "verdict": self.verdict,
        }


@dataclass
class TurnResult:
    tier: Tier
    kind: ResultKind
    action: Optional[ExecutedAction] = None
    clarifier: Optional[ClarifierOutput] = None
    message: str = ""
    arbitration: Optional[ArbitrationResult] = None
    ambiguity_reason: Optional[str] = None
    passed_tiers: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        """User-facing text for the turn."""
        if self.clarifier is not None:
            return self.clarifier.render()
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "kind": self.kind.value,
            "action": self.action.to_dict() if self.action else None,
            "clarifier": self.clarifier.to_dict() if self.clarifier else None,
            "message": self.message,
            "arbitration": self.arbitration.to_dict() if self.arbitration else None,
            "ambiguity_reason": self.ambiguity_reason,
        }


@dataclass
class _Turn:
    """Everything a tier needs for one turn."""
    text: str
    classification: Classification
    grounding: GroundingSet
    registry: Optional[Mapping[str, WidgetSnapshot]]


OptionLike = Union[CandidateOption, Mapping[str, Any], str]


class TurnOrchestrator:
    """
    Owns one conversation's routing state and runs turns through the tiers.

    Collaborators:
        registry: Widget snapshot registry (read once per turn)
        arbitrator: Constrained model arbitrator
        telemetry: Routing telemetry
        executor: Called with each ExecutedAction
        answer_engine: Called with the raw text for informational turns
    """

    def __init__(
        self,
        registry: Optional[WidgetSnapshotRegistry] = None,
        arbitrator: Optional[ConstrainedArbitrator] = None,
        telemetry: Optional[RoutingTelemetry] = None,
        executor: Optional[Callable[[ExecutedAction], Any]] = None,
        answer_engine: Optional[Callable[[str], str]] = None,
        conversation_id: Optional[str] = None,
    ):
        self.logger = get_logger()
        self.registry = registry
        self.arbitrator = arbitrator if arbitrator is not None else ConstrainedArbitrator()
        self.telemetry = telemetry if telemetry is not None else RoutingTelemetry()
        self.executor = executor
        self.answer_engine = answer_engine

        cid = conversation_id or f"conv_{uuid.uuid4().hex[:8]}"
        self.state = ConversationState(
            conversation_id=cid,
            latch=FocusLatch(on_change=self._on_latch_change),
        )
        self._lock = threading.Lock()
        self._tiers = [
            (Tier.STOP_CANCEL, self._tier_stop_cancel),
            (Tier.RETURN_TO_LIST, self._tier_return_to_list),
            (Tier.SCOPE_CUE, self._tier_scope_cue),
            (Tier.ARBITRATION, self._tier_arbitration),
            (Tier.KNOWN_COMMAND, self._tier_known_command),
            (Tier.INFORMATIONAL, self._tier_informational),
        ]

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    def handle_turn(self, text: str) -> TurnResult:
        """
        Process one user message to completion.

        Args:
            text: Raw chat input

        Returns:
            TurnResult from the first tier that handled the turn
        """
        with self._lock:
            start = time.time()
            self.state.turn += 1
            registry_snapshot = self._pull_registry()
            self._advance_pending_latch(registry_snapshot)

            classification = classify(text, self._classifier_context(registry_snapshot))
            grounding = build(self.state, registry_snapshot, classification)
            turn = _Turn(text=text, classification=classification, grounding=grounding, registry=registry_snapshot)

            self.logger.debug(f"[TIER] turn={self.state.turn} input={text!r} cls={classification.to_dict()}")

            passed: List[str] = []
            result: Optional[TurnResult] = None
            for tier, handler in self._tiers:
                result = handler(turn)
                if result is not None:
                    break
                passed.append(tier.value)

            if result is None:
                result = self._tier_informational(turn)
            result.passed_tiers = passed

            self.logger.info(
                f"[TIER] turn={self.state.turn} tier={result.tier.value} kind={result.kind.value}"
                + (f" reason={result.ambiguity_reason}" if result.ambiguity_reason else "")
            )
            self._emit(RoutingEvent(
                event_type=TelemetryEventType.TIER_TRANSITION,
                tier=result.tier.value,
                ambiguity_reason=result.ambiguity_reason,
                detail={
                    "kind": result.kind.value,
                    "passed": ",".join(passed) or "-",
                    "turn_ms": int((time.time() - start) * 1000),
                },
            ))

            if result.kind == ResultKind.EXECUTE and result.action is not None:
                self._run_executor(result.action)
            return result

    def show_options(self, options: Sequence[OptionLike], title: str = "") -> OptionList:
        """
        Post a new chat option list. This is a list replacement: the latch
        clears and any open clarification ends.

        Args:
            options: CandidateOptions, {"id", "label", ...} mappings or labels
            title: Optional list title

        Returns:
            The OptionList now active
        """
        with self._lock:
            self.state.latch.transition(LatchEvent(LatchEventKind.LIST_REPLACED, turn=self.state.turn))
            self._end_cycle()
            option_list = OptionList(
                list_id=new_list_id(),
                options=[_coerce_option(o, i) for i, o in enumerate(options)][:Config.LIST_CANDIDATE_CAP],
                shown_turn=self.state.turn,
                title=title,
            )
            self.state.active_options = option_list
            self.state.paused_snapshot = None
            self.state.stopped_turn = None
            self.logger.debug(f"[TIER] show_options list={option_list.list_id} size={len(option_list.options)}")
            return option_list

    def record_referent(self, option: CandidateOption) -> None:
        """Remember something the user acted on outside of chat selection."""
        with self._lock:
            self.state.remember_referent(option)

    @property
    def latch_state(self) -> FocusLatchState:
        return self.state.latch_state

    # ========================================================================
    # TURN SETUP
    # ========================================================================

    def _pull_registry(self) -> Optional[Dict[str, WidgetSnapshot]]:
        if self.registry is None:
            return None
        try:
            return self.registry.snapshot()
        except RegistryUnavailableError as e:
            self.logger.warning(f"[GROUND] registry unavailable, widget lists omitted: {e}")
            return None

    def _advance_pending_latch(self, registry_snapshot: Optional[Mapping[str, WidgetSnapshot]]) -> None:
        latch = self.state.latch_state
        if latch.status != LatchStatus.PENDING:
            return
        match = find_widget(registry_snapshot, latch.target_ref or "")
        if match is not None and match.is_visible:
            self.state.latch.transition(LatchEvent(
                LatchEventKind.REGISTRY_MATCH, turn=self.state.turn, target_id=match.widget_id,
            ))
        else:
            self.state.latch.transition(LatchEvent(LatchEventKind.TURN_ELAPSED, turn=self.state.turn))

    def _classifier_context(self, registry_snapshot: Optional[Mapping[str, WidgetSnapshot]]) -> ClassifierContext:
        labels: List[str] = []
        badges = False
        for options in (self.state.active_options, self.state.paused_snapshot):
            if self.state.is_fresh(options):
                labels.extend(o.label for o in options.options)
                badges = badges or any(o.badge for o in options.options)
        for snapshot in (registry_snapshot or {}).values():
            group = widget_group(snapshot)
            if group is not None:
                labels.extend(c.label for c in group.candidates)
                badges = badges or group.badges_visible
        return ClassifierContext(option_labels=labels, badges_visible=badges, widget_titles=titles(registry_snapshot))

    # ========================================================================
    # TIER 1: STOP / CANCEL
    # ========================================================================

    def _tier_stop_cancel(self, turn: _Turn) -> Optional[TurnResult]:
        cls = turn.classification
        session = self.state.clarification

        if session is not None and session.exit_count and self.state.active_options is not None:
            if cls.kind == InputKind.EXIT or is_affirmation(turn.text):
                return self._stop(Tier.STOP_CANCEL)
            session.exit_count = 0
            if is_keep_choosing(turn.text):
                return self._reprompt(turn, KEEP_CHOOSING_REPLY, tier=Tier.STOP_CANCEL)
            # Anything else answers the options themselves

        if cls.kind == InputKind.EXIT:
            if session is None and self.state.in_stop_window():
                self.logger.info("[TIER] repeated exit inside the stop window")
                return TurnResult(tier=Tier.STOP_CANCEL, kind=ResultKind.MESSAGE, message=STOP_SUPPRESSED_REPLY)
            if (
                session is not None
                and session.session_type == "option_selection"
                and self.state.active_options is not None
                and is_ambiguous_exit(cls.normalized)
            ):
                session.exit_count += 1
                return self._reprompt(turn, "", tier=Tier.STOP_CANCEL, question=EXIT_CONFIRM_QUESTION)
            return self._stop(Tier.STOP_CANCEL)

        if cls.kind == InputKind.LIST_REJECTION:
            if self.state.clarification is None and self.state.active_options is None:
                return None
            return self._reject(Tier.STOP_CANCEL)

        return None

    def _stop(self, tier: Tier) -> TurnResult:
        self.state.latch.transition(LatchEvent(LatchEventKind.STOP, turn=self.state.turn))
        self._end_cycle()
        self.state.pause_active("stopped")
        self.state.stopped_turn = self.state.turn
        return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=CANCEL_REPLY)

    def _reject(self, tier: Tier) -> TurnResult:
        self._end_cycle()
        self.state.pause_active("rejected")
        return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=REJECTION_REPLY)

    # ========================================================================
    # TIER 2: RETURN TO LIST
    # ========================================================================

    def _tier_return_to_list(self, turn: _Turn) -> Optional[TurnResult]:
        cls = turn.classification
        if not cls.is_return_cue:
            return None

        if self.state.is_fresh(self.state.paused_snapshot):
            self.state.latch.transition(LatchEvent(LatchEventKind.UNRELATED_INTERACTION, turn=self.state.turn))
            self.state.reinstate_paused()
        elif not self.state.is_fresh(self.state.active_options):
            # Nothing recoverable; the scope-cue tier reports it
            return None

        self.state.stopped_turn = None
        restored = self.state.active_options
        restored.options = without_exits(restored.options)
        group = CandidateGroup(
            source_type=SourceType.CHAT_ACTIVE,
            candidates=list(restored.options),
            group_id=restored.list_id,
            title=restored.title,
            shown_turn=restored.shown_turn,
            badges_visible=any(o.badge for o in restored.options),
        )
        self.logger.info(f"[TIER] return-to-list reinstated list={restored.list_id}")

        if cls.has_ordinal or cls.badge or cls.label_match_count:
            grounding = GroundingSet(groups=[group], turn=self.state.turn)
            outcome = resolve(grounding, cls, target=group, scoped=True)
            return self._decide(turn, outcome, grounding, Tier.RETURN_TO_LIST)

        self._end_cycle()
        return self._ask(
            pool=group.candidates,
            group_ref=restored.list_id,
            tier=Tier.RETURN_TO_LIST,
            question=RETURN_QUESTION,
        )

    # ========================================================================
    # TIER 3: SCOPE CUE
    # ========================================================================

    def _tier_scope_cue(self, turn: _Turn) -> Optional[TurnResult]:
        cls = turn.classification
        cue = cls.scope_cue
        if not cue.is_present:
            return None

        latch = self.state.latch_state
        if cue.scope == "chat":
            target = select_target_group(turn.grounding, cls, latch)
            if target is None:
                return TurnResult(tier=Tier.SCOPE_CUE, kind=ResultKind.MESSAGE, message=NO_LIST_REPLY)
        else:
            target = select_target_group(turn.grounding, cls, latch)
            if target is None:
                if latch.status == LatchStatus.PENDING:
                    return self._loading_notice(Tier.SCOPE_CUE)
                widgets = turn.grounding.widget_groups
                if len(widgets) >= 2 and not cue.named_target_hint:
                    return self._ask_which_list(turn, widgets, Tier.SCOPE_CUE)
                return TurnResult(tier=Tier.SCOPE_CUE, kind=ResultKind.MESSAGE, message=NO_PANEL_REPLY)
            if cue.named_target_hint and target.widget_id:
                # Naming a widget explicitly is a confirmed engagement
                prior = latch.prior if latch.status == LatchStatus.SUSPENDED else None
                if prior is not None and prior.target_id == target.widget_id:
                    event = LatchEvent(LatchEventKind.REENGAGED, turn=self.state.turn)
                else:
                    event = LatchEvent(LatchEventKind.ENGAGED, turn=self.state.turn, target_id=target.widget_id)
                self.state.latch.transition(event)

        if not cls.remainder:
            self._end_cycle()
            return self._ask(pool=target.candidates, group_ref=target.group_id, tier=Tier.SCOPE_CUE,
                             question=f"Here's what's in {target.title or 'that list'}:")

        outcome = resolve(turn.grounding, cls, target=target, scoped=True)
        return self._decide(turn, outcome, turn.grounding, Tier.SCOPE_CUE)

    # ========================================================================
    # TIER 4: SELECTION / COMMAND ARBITRATION
    # ========================================================================

    def _tier_arbitration(self, turn: _Turn) -> Optional[TurnResult]:
        cls = turn.classification
        clarification = self.state.clarification

        if clarification is not None and self._is_new_topic(cls):
            self.logger.info(f"[TIER] new topic during clarification session={clarification.session_id}")
            self._end_cycle()
            self.state.pause_active("topic_change")
            return None

        if cls.kind == InputKind.NOISE:
            return self._reprompt(turn, NOISE_REPROMPT)

        if cls.kind == InputKind.HESITATION:
            message = HESITATION_REPLY
            if clarification is not None:
                clarification.hesitation_count += 1
                if clarification.hesitation_count >= 2:
                    message = HESITATION_HINT_REPLY
            return self._reprompt(turn, message)

        if cls.kind == InputKind.REPAIR:
            return self._repair(turn)

        if cls.kind == InputKind.SELECTION:
            return self._select(turn)

        if cls.kind == InputKind.COMMAND:
            target = self._target(turn)
            outcome = resolve(turn.grounding, cls, target=target)
            if self._command_hits_list(outcome, turn.grounding):
                return self._decide(turn, outcome, turn.grounding, Tier.ARBITRATION)

        return None

    def _select(self, turn: _Turn) -> TurnResult:
        cls = turn.classification
        latch = self.state.latch_state

        positional = cls.has_ordinal or cls.badge is not None or cls.is_pronoun_ref
        if latch.status == LatchStatus.PENDING and positional:
            return self._loading_notice(Tier.ARBITRATION)

        if (
            (cls.has_ordinal or cls.badge is not None)
            and self.state.in_stop_window()
            and self.state.active_options is None
            and latch.status != LatchStatus.RESOLVED
        ):
            # The user just closed the list this ordinal was meant for
            return TurnResult(tier=Tier.ARBITRATION, kind=ResultKind.MESSAGE, message=STOPPED_LIST_REPLY)

        if turn.grounding.multi_list_ambiguous:
            return self._ask_which_list(turn, turn.grounding.ambiguous_lists, Tier.ARBITRATION)

        target = self._target(turn)
        outcome = resolve(turn.grounding, cls, target=target)
        return self._decide(turn, outcome, turn.grounding, Tier.ARBITRATION)

    def _repair(self, turn: _Turn) -> TurnResult:
        cls = turn.classification
        if self.state.active_options is None and self.state.is_fresh(self.state.paused_snapshot):
            self.state.latch.transition(LatchEvent(LatchEventKind.UNRELATED_INTERACTION, turn=self.state.turn))
            self.state.reinstate_paused()

        active = self.state.active_options
        if active is None or not self.state.is_fresh(active):
            return TurnResult(tier=Tier.ARBITRATION, kind=ResultKind.MESSAGE, message=REJECTION_REPLY)

        if cls.has_ordinal or cls.label_match_count:
            grounding = build(self.state, turn.registry, cls)
            target = grounding.first(SourceType.CHAT_ACTIVE)
            outcome = resolve(grounding, cls, target=target)
            return self._decide(turn, outcome, grounding, Tier.ARBITRATION)

        return self._ask(pool=active.options, group_ref=active.list_id, tier=Tier.ARBITRATION)

    def _target(self, turn: _Turn) -> Optional[CandidateGroup]:
        clarification = self.state.clarification
        return select_target_group(
            turn.grounding,
            turn.classification,
            self.state.latch_state,
            clarification.active_group_ref if clarification else None,
        )

    @staticmethod
    def _command_hits_list(outcome: ResolverOutcome, grounding: GroundingSet) -> bool:
        """A command goes through arbitration only when it lands on a shown list."""
        if outcome.winner_group is not None:
            return outcome.winner_group.source_type not in (SourceType.CAPABILITY,)
        if outcome.ambiguity_reason in (None, AmbiguityReason.NO_CANDIDATE):
            return False
        list_ids = {c.id for g in grounding.list_groups for c in g.candidates}
        return any(c.id in list_ids for c in outcome.pool)

    def _is_new_topic(self, cls: Classification) -> bool:
        if cls.kind not in (InputKind.COMMAND, InputKind.QUESTION):
            return False
        active = self.state.active_options
        known = set()
        for option in (active.options if active else []):
            known |= label_tokens(option.label)
        return any(t not in known for t in tokenize(cls.normalized))

    # ========================================================================
    # DECISION: CONFIDENCE GATE -> EXECUTE / ARBITRATE / CLARIFY
    # ========================================================================

    def _decide(self, turn: _Turn, outcome: ResolverOutcome, grounding: GroundingSet, tier: Tier) -> TurnResult:
        bucket = confidence.classify(outcome, grounding)
        reason = outcome.ambiguity_reason.value if outcome.ambiguity_reason else None

        if bucket == confidence.ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE:
            return self._execute(turn, outcome.winner, outcome.winner_group, tier)

        if not outcome.pool:
            self._end_cycle()
            return self._ask(
                pool=capability_options()[:Config.NON_LIST_CANDIDATE_CAP],
                group_ref="capability",
                tier=tier,
                reason=reason,
                question=CAPABILITY_QUESTION,
            )

        group_ref = outcome.pool_group.group_id if outcome.pool_group else ""
        if bucket == confidence.ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY:
            return self._ask(pool=outcome.pool, group_ref=group_ref, tier=tier, reason=reason)

        # LLM-eligible
        verdict = self.arbitrator.arbitrate(turn.text, outcome.pool, group_id=group_ref)
        self._emit(RoutingEvent(
            event_type=TelemetryEventType.ARBITRATION_ATTEMPT,
            tier=tier.value,
            ambiguity_reason=reason,
            latency_ms=verdict.latency_ms,
            detail={"verdict": verdict.kind.value, "abstain": verdict.reason or "-", "cached": verdict.from_cache},
        ))

        if verdict.kind == VerdictKind.SELECT and Config.ARBITER_AUTO_EXECUTE:
            chosen = next(o for o in outcome.pool if o.id == verdict.choice_id)
            group = self._group_of(grounding, chosen) or outcome.pool_group
            result = self._execute(turn, chosen, group, tier)
            result.arbitration = _arbitration(verdict, "execute", reason)
            return result

        decision = "need_more_info" if verdict.kind == VerdictKind.NEED_MORE_INFO else "clarify"
        result = self._ask(
            pool=outcome.pool,
            group_ref=group_ref,
            tier=tier,
            reason=reason,
            suggestion_order=verdict.suggestion_order if verdict.kind == VerdictKind.SELECT else None,
        )
        result.arbitration = _arbitration(verdict, decision, reason)
        return result

    @staticmethod
    def _group_of(grounding: GroundingSet, option: CandidateOption) -> Optional[CandidateGroup]:
        for group in grounding.groups:
            if group.find(option.id) is not None:
                return group
        return None

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _execute(
        self,
        turn: _Turn,
        option: CandidateOption,
        group: Optional[CandidateGroup],
        tier: Tier,
    ) -> TurnResult:
        if option.id == EXIT_NONE_ID:
            return self._reject(tier)
        if option.id == EXIT_START_OVER_ID:
            return self._stop(tier)
        if option.id.startswith(LIST_CHOICE_PREFIX):
            return self._answer_list_choice(turn, option, tier)

        source = group.source_type if group is not None else SourceType.CAPABILITY
        latch = self.state.latch
        now = self.state.turn

        widget_id: Optional[str] = None
        if source == SourceType.WIDGET_LIST:
            widget_id = group.widget_id
        elif turn.registry and option.source_tag in turn.registry:
            widget_id = option.source_tag

        if widget_id:
            latch.transition(LatchEvent(LatchEventKind.ENGAGED, turn=now, target_id=widget_id))
            if source == SourceType.CHAT_ACTIVE:
                # Clarifier copy of the widget's list; drop it, keep the paused chat list
                self.state.active_options = None
            else:
                self.state.pause_active("widget_engaged")
        else:
            if latch.state.status == LatchStatus.RESOLVED:
                latch.transition(LatchEvent(LatchEventKind.UNRELATED_INTERACTION, turn=now))
            if source == SourceType.CHAT_ACTIVE:
                self.state.pause_active("selected")
            if option.default_action in WIDGET_OPEN_ACTIONS:
                self._engage_by_label(option.label, turn.registry)

        if source != SourceType.CAPABILITY:
            self.state.remember_referent(option)
        self._end_cycle()

        action = ExecutedAction(
            option_id=option.id,
            label=option.label,
            action=option.default_action,
            source_type=source.value,
            group_id=group.group_id if group is not None else "",
            widget_id=widget_id,
        )
        return TurnResult(
            tier=tier,
            kind=ResultKind.EXECUTE,
            action=action,
            message=f"Opening {option.label}.",
            arbitration=ArbitrationResult(decision="execute", winner_id=option.id, confidence=1.0),
        )

    def _engage_by_label(self, label: str, registry_snapshot: Optional[Mapping[str, WidgetSnapshot]]) -> None:
        widget = find_widget(registry_snapshot, label)
        registered = widget is not None and widget.is_visible
        self.state.latch.transition(LatchEvent(
            LatchEventKind.ENGAGED,
            turn=self.state.turn,
            target_id=widget.widget_id if registered else None,
            target_ref=label,
            registered=registered,
        ))

    def _answer_list_choice(self, turn: _Turn, option: CandidateOption, tier: Tier) -> TurnResult:
        widget_id = option.id[len(LIST_CHOICE_PREFIX):]
        deferred = self.state.clarification.deferred_input if self.state.clarification else None
        self.state.active_options = None
        self._end_cycle()

        group = turn.grounding.by_id(widget_id)
        if group is None:
            return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=NO_PANEL_REPLY)

        self.state.latch.transition(LatchEvent(LatchEventKind.ENGAGED, turn=self.state.turn, target_id=widget_id))
        if not deferred:
            return self._ask(pool=group.candidates, group_ref=group.group_id, tier=tier,
                             question=f"Here's what's in {group.title}:")

        # Replay the held selection against the chosen list
        replay = classify(deferred, self._classifier_context(turn.registry))
        grounding = build(self.state, turn.registry, replay)
        target = grounding.by_id(widget_id) or group
        outcome = resolve(grounding, replay, target=target, scoped=True)
        self.logger.info(f"[TIER] which-list answered list={widget_id} replay={deferred!r}")
        return self._decide(turn, outcome, grounding, tier)

    def _run_executor(self, action: ExecutedAction) -> None:
        if self.executor is None:
            return
        try:
            self.executor(action)
        except Exception as e:
            self.logger.error(f"[TIER] executor failed for {action.option_id}: {e}")

    # ========================================================================
    # CLARIFICATION
    # ========================================================================

    def _ask(
        self,
        pool: Sequence[CandidateOption],
        group_ref: str,
        tier: Tier,
        reason: Optional[str] = None,
        suggestion_order: Optional[Sequence[str]] = None,
        question: Optional[str] = None,
    ) -> TurnResult:
        """Open or advance the clarification cycle and show `pool` as the active list."""
        ordered = order_pool(without_exits(pool), suggestion_order)
        group_ref = self._show_as_active(ordered, group_ref)

        session = self.state.clarification
        if session is None or session.session_type != "option_selection":
            session = ClarificationSession(
                session_id=new_session_id(),
                created_turn=self.state.turn,
            )
            self.state.clarification = session
            self.state.stopped_turn = None
        session.attempt_count += 1
        session.active_group_ref = group_ref
        session.ambiguity_reason = reason

        clarifier = build_clarifier(
            pool=ordered,
            session_id=session.session_id,
            attempt_number=session.attempt_count,
            ambiguity_reason=reason,
            question=question,
        )
        self._offer_exits(clarifier)
        return TurnResult(tier=tier, kind=ResultKind.CLARIFY, clarifier=clarifier, ambiguity_reason=reason)

    def _offer_exits(self, clarifier: ClarifierOutput) -> None:
        """Numbered exit choices must resolve like any other option in the active list."""
        active = self.state.active_options
        if active is None or not EXIT_IDS.intersection(clarifier.choice_ids):
            return
        present = {o.id for o in active.options}
        active.options.extend(o for o in exit_options() if o.id not in present)

    def _show_as_active(self, ordered: Sequence[CandidateOption], group_ref: str) -> str:
        active = self.state.active_options
        ids = {o.id for o in ordered}
        if active is not None and {o.id for o in without_exits(active.options)} == ids:
            active.options = list(ordered)
            active.shown_turn = self.state.turn
            return active.list_id

        if active is not None:
            self.state.pause_active("clarifier")
        # Keep the source group's id so the loop-guard key is stable across re-asks
        list_id = group_ref or new_list_id()
        self.state.active_options = OptionList(
            list_id=list_id,
            options=list(ordered),
            shown_turn=self.state.turn,
        )
        return list_id

    def _ask_which_list(self, turn: _Turn, groups: Sequence[CandidateGroup], tier: Tier) -> TurnResult:
        session = ClarificationSession(
            session_id=new_session_id(),
            attempt_count=1,
            session_type="list_choice",
            created_turn=self.state.turn,
            deferred_input=turn.classification.remainder or turn.text,
        )
        options = list_choice_options(groups)
        self.state.pause_active("which_list")
        self.state.active_options = OptionList(
            list_id=new_list_id(), options=options, shown_turn=self.state.turn, title="Lists",
        )
        session.active_group_ref = self.state.active_options.list_id
        self.state.clarification = session
        self.logger.info(f"[TIER] which-list question lists={[g.group_id for g in groups]}")
        return TurnResult(
            tier=tier,
            kind=ResultKind.CLARIFY,
            clarifier=build_list_question(groups, session.session_id, session.attempt_count),
        )

    def _reprompt(
        self,
        turn: _Turn,
        message: str,
        tier: Tier = Tier.ARBITRATION,
        question: Optional[str] = None,
    ) -> TurnResult:
        """Re-show the open clarifier unchanged, or a plain re-prompt."""
        session = self.state.clarification
        active = self.state.active_options
        if session is None or active is None:
            return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=message)

        if session.session_type == "list_choice":
            clarifier = ClarifierOutput(
                question="Which list do you mean?",
                choices=[ClarifierChoice(id=o.id, label=o.label) for o in active.options],
                session_id=session.session_id,
                attempt_number=session.attempt_count,
                kind="list_choice",
            )
        else:
            clarifier = build_clarifier(
                pool=active.options,
                session_id=session.session_id,
                attempt_number=session.attempt_count,
                ambiguity_reason=session.ambiguity_reason,
                question=question,
            )
        active.shown_turn = self.state.turn
        return TurnResult(
            tier=tier,
            kind=ResultKind.CLARIFY,
            clarifier=clarifier,
            message=message,
            ambiguity_reason=session.ambiguity_reason,
        )

    def _loading_notice(self, tier: Tier) -> TurnResult:
        """One "still loading" notice per pending cycle."""
        latch = self.state.latch_state
        if latch.loading_notice_sent:
            return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=NO_PANEL_REPLY)
        self.state.latch.transition(LatchEvent(LatchEventKind.LOADING_NOTICE_SENT, turn=self.state.turn))
        return TurnResult(tier=tier, kind=ResultKind.MESSAGE, message=loading_message(latch.target_ref))

    def _end_cycle(self) -> None:
        """Close the clarification cycle and forget cached model verdicts."""
        self.state.end_clarification()
        self.arbitrator.reset_cycle()

    # ========================================================================
    # TIERS 5-6: KNOWN COMMANDS, INFORMATIONAL
    # ========================================================================

    def _tier_known_command(self, turn: _Turn) -> Optional[TurnResult]:
        command: Optional[KnownCommand] = match_command(turn.classification.remainder or turn.text)
        if command is None:
            return None
        option = command.to_option()
        return self._execute(turn, option, turn.grounding.first(SourceType.CAPABILITY), Tier.KNOWN_COMMAND)

    def _tier_informational(self, turn: _Turn) -> TurnResult:
        if self.answer_engine is None:
            return TurnResult(tier=Tier.INFORMATIONAL, kind=ResultKind.MESSAGE, message=NO_ANSWER_REPLY)
        try:
            answer = self.answer_engine(turn.text)
        except Exception as e:
            self.logger.error(f"[TIER] answer engine failed: {e}")
            return TurnResult(tier=Tier.INFORMATIONAL, kind=ResultKind.MESSAGE, message=NO_ANSWER_REPLY)
        return TurnResult(tier=Tier.INFORMATIONAL, kind=ResultKind.ANSWER, message=answer or NO_ANSWER_REPLY)

    # ========================================================================
    # TELEMETRY
    # ========================================================================

    def _emit(self, event: RoutingEvent) -> None:
        event.conversation_id = self.state.conversation_id
        event.turn = self.state.turn
        try:
            self.telemetry.emit(event)
        except Exception as e:
            self.logger.warning(f"[TELEMETRY] emit failed: {e}")

    def _on_latch_change(self, old: FocusLatchState, new: FocusLatchState, event: LatchEvent) -> None:
        self._emit(RoutingEvent(
            event_type=TelemetryEventType.LATCH_CHANGE,
            detail={"from": old.describe(), "to": new.describe(), "on": event.kind.value},
        ))


def _arbitration(verdict: ArbiterVerdict, decision: str, reason: Optional[str]) -> ArbitrationResult:
    return ArbitrationResult(
        decision=decision,
        winner_id=verdict.choice_id,
        confidence=verdict.confidence,
        ambiguity_reason=reason,
        verdict=verdict.kind.value if verdict.kind != VerdictKind.ABSTAIN else f"abstain:{verdict.reason}",
    )


def _coerce_option(raw: OptionLike, index: int) -> CandidateOption:
    if isinstance(raw, CandidateOption):
        return raw
    if isinstance(raw, str):
        return CandidateOption(id=f"opt_{index + 1}", label=raw)
    actions = raw.get("actions") or raw.get("allowed_actions") or ("open",)
    return CandidateOption(
        id=str(raw.get("id") or f"opt_{index + 1}"),
        label=str(raw.get("label", "")),
        badge=raw.get("badge"),
        source_tag=str(raw.get("source_tag", "chat")),
        allowed_actions=tuple(actions),
    )

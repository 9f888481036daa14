"""chatnav.context.focus_latch

Focus latch: short-term memory of which widget the user is engaged with.

States:
    none                 nothing latched
    pending(target_ref)  engagement confirmed, widget not yet registered
    resolved(target_id)  latched to a registered widget
    suspended(prior)     latched earlier, an unrelated interaction intervened

Transitions:
    none/suspended/resolved --ENGAGED(registered)-->   resolved
    none/suspended/resolved --ENGAGED(unregistered)--> pending
    pending  --REGISTRY_MATCH-->         resolved
    pending  --TURN_ELAPSED (too old)--> none
    resolved --UNRELATED_INTERACTION-->  suspended
    suspended --REENGAGED-->             prior resolved state
    any      --STOP / LIST_REPLACED-->   none

HARD RULES:
- Set only on confirmed engagement (a selection from the widget, or the
  widget named explicitly), never because a widget became visible.
- `next_state` is pure. Only the turn orchestrator holds a FocusLatch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, List, Optional

from chatnav.core.config import Config
from chatnav.core.logger import get_logger


class LatchStatus(Enum):
    NONE = "none"
    PENDING = "pending"
    RESOLVED = "resolved"
    SUSPENDED = "suspended"


class LatchEventKind(Enum):
    ENGAGED = "engaged"
    REGISTRY_MATCH = "registry_match"
    TURN_ELAPSED = "turn_elapsed"
    UNRELATED_INTERACTION = "unrelated_interaction"
    REENGAGED = "reengaged"
    LOADING_NOTICE_SENT = "loading_notice_sent"
    STOP = "stop"
    LIST_REPLACED = "list_replaced"


@dataclass(frozen=True)
class FocusLatchState:
    """
    Tagged union over LatchStatus.

    Fields:
        status: Which variant this is
        target_id: Registered widget id (resolved)
        target_ref: Id or title the user engaged with (pending)
        prior: The resolved state held while suspended
        since_turn: Turn the current pending/resolved state began
        loading_notice_sent: Pending only; "still loading" already shown this cycle
    """
    status: LatchStatus = LatchStatus.NONE
    target_id: Optional[str] = None
    target_ref: Optional[str] = None
    prior: Optional["FocusLatchState"] = None
    since_turn: int = 0
    loading_notice_sent: bool = False

    @property
    def is_active(self) -> bool:
        """Latched and not suspended."""
        return self.status == LatchStatus.RESOLVED

    def describe(self) -> str:
        if self.status == LatchStatus.RESOLVED:
            return f"resolved({self.target_id})"
        if self.status == LatchStatus.PENDING:
            return f"pending({self.target_ref})"
        if self.status == LatchStatus.SUSPENDED:
            prior = self.prior.target_id if self.prior else None
            return f"suspended({prior})"
        return "none"


LATCH_NONE = FocusLatchState()


@dataclass(frozen=True)
class LatchEvent:
    kind: LatchEventKind
    turn: int = 0
    target_id: Optional[str] = None
    target_ref: Optional[str] = None
    registered: bool = True


def resolved(target_id: str, turn: int = 0) -> FocusLatchState:
    return FocusLatchState(status=LatchStatus.RESOLVED, target_id=target_id, since_turn=turn)


def pending(target_ref: str, turn: int = 0) -> FocusLatchState:
    return FocusLatchState(status=LatchStatus.PENDING, target_ref=target_ref, since_turn=turn)


def next_state(
    state: FocusLatchState,
    event: LatchEvent,
    max_pending_turns: Optional[int] = None,
) -> FocusLatchState:
    """
    Compute the successor latch state. Events that do not apply to the
    current variant leave it unchanged.

    Args:
        state: Current latch state
        event: Incoming event
        max_pending_turns: Override for Config.PENDING_LATCH_MAX_TURNS

    Returns:
        New FocusLatchState (may be the same object)
    """
    limit = Config.PENDING_LATCH_MAX_TURNS if max_pending_turns is None else max_pending_turns
    kind = event.kind

    if kind in (LatchEventKind.STOP, LatchEventKind.LIST_REPLACED):
        return LATCH_NONE

    if kind == LatchEventKind.ENGAGED:
        if event.registered and event.target_id:
            if state.status == LatchStatus.RESOLVED and state.target_id == event.target_id:
                return state
            return resolved(event.target_id, event.turn)
        ref = event.target_ref or event.target_id
        if ref:
            return pending(ref, event.turn)
        return state

    if state.status == LatchStatus.PENDING:
        if kind == LatchEventKind.REGISTRY_MATCH and event.target_id:
            return resolved(event.target_id, event.turn)
        if kind == LatchEventKind.TURN_ELAPSED and event.turn - state.since_turn > limit:
            return LATCH_NONE
        if kind == LatchEventKind.LOADING_NOTICE_SENT:
            return replace(state, loading_notice_sent=True)
        return state

    if state.status == LatchStatus.RESOLVED:
        if kind == LatchEventKind.UNRELATED_INTERACTION:
            return FocusLatchState(status=LatchStatus.SUSPENDED, prior=state, since_turn=event.turn)
        return state

    if state.status == LatchStatus.SUSPENDED:
        if kind == LatchEventKind.REENGAGED and state.prior is not None:
            return replace(state.prior, since_turn=event.turn)
        return state

    return state


class FocusLatch:
    """
    Mutable holder around FocusLatchState.

    Owned exclusively by the turn orchestrator; every change is logged and
    reported to the optional listener (telemetry).
    """

    def __init__(self, on_change: Optional[Callable[[FocusLatchState, FocusLatchState, LatchEvent], None]] = None):
        self._state = LATCH_NONE
        self._on_change = on_change
        self.history: List[str] = []
        self.logger = get_logger()

    @property
    def state(self) -> FocusLatchState:
        return self._state

    def transition(self, event: LatchEvent) -> FocusLatchState:
        """Apply an event and return the new state."""
        old = self._state
        new = next_state(old, event)
        if new != old:
            self._state = new
            self.history.append(new.describe())
            self.logger.info(f"[LATCH] {old.describe()} -> {new.describe()} on={event.kind.value}")
            if self._on_change is not None:
                self._on_change(old, new, event)
        return new

    def reset(self) -> None:
        self._state = LATCH_NONE
        self.history.clear()

"""chatnav.context.session_state

Per-conversation state carried between turns.

Tracks:
- Turn counter
- The active chat option list and the paused/soft-active snapshot
- Recent referents (things the user just acted on)
- The open clarification session (attempt/hesitation counters)
- The focus latch

HARD RULES:
- One ConversationState per conversation, owned by its TurnOrchestrator
- Threaded explicitly through each tier call; never a module global
- The builder, resolver and arbitrator read it but never mutate it
"""

from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

from chatnav.context.candidates import CandidateOption, OptionList
from chatnav.context.focus_latch import FocusLatch, FocusLatchState
from chatnav.core.config import Config


@dataclass
class ClarificationSession:
    """
    An open clarifying question awaiting the user's answer.

    Fields:
        session_id: Stable id shown to the UI for this question cycle
        attempt_count: Clarifiers asked in this cycle (1 after the first)
        hesitation_count: Hesitations seen ("hmm", "not sure")
        exit_count: Ambiguous exits awaiting confirmation (0 or 1)
        active_group_ref: Group the question is about (list id or widget id)
        session_type: "option_selection" | "list_choice" | "loading"
        created_at: Unix timestamp
        created_turn: Turn the session opened
        deferred_input: Selection text held while asking which list
        ambiguity_reason: Why the question was asked
    """
    session_id: str
    attempt_count: int = 0
    hesitation_count: int = 0
    exit_count: int = 0
    active_group_ref: str = ""
    session_type: str = "option_selection"
    created_at: float = field(default_factory=time.time)
    created_turn: int = 0
    deferred_input: Optional[str] = None
    ambiguity_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "attempt_count": self.attempt_count,
            "hesitation_count": self.hesitation_count,
            "exit_count": self.exit_count,
            "active_group_ref": self.active_group_ref,
            "session_type": self.session_type,
        }


def new_session_id() -> str:
    return f"clar_{uuid.uuid4().hex[:10]}"


def new_list_id() -> str:
    return f"opts_{uuid.uuid4().hex[:10]}"


@dataclass
class ConversationState:
    conversation_id: str
    turn: int = 0
    active_options: Optional[OptionList] = None
    paused_snapshot: Optional[OptionList] = None
    recent_referents: Deque[CandidateOption] = field(
        default_factory=lambda: deque(maxlen=Config.RECENT_REFERENT_LIMIT)
    )
    recent_referent_turn: int = 0
    clarification: Optional[ClarificationSession] = None
    latch: FocusLatch = field(default_factory=FocusLatch)
    stopped_turn: Optional[int] = None

    @property
    def latch_state(self) -> FocusLatchState:
        return self.latch.state

    def is_fresh(self, options: Optional[OptionList], ttl: Optional[int] = None) -> bool:
        """A chat list stays resolvable for GROUP_TTL_TURNS turns after shown/paused."""
        if options is None:
            return False
        limit = Config.GROUP_TTL_TURNS if ttl is None else ttl
        return options.age(self.turn) <= limit

    def pause_active(self, reason: str) -> None:
        """Move the active list to the paused/soft-active slot."""
        if self.active_options is None:
            return
        paused = self.active_options
        paused.paused_turn = self.turn
        paused.pause_reason = reason
        self.paused_snapshot = paused
        self.active_options = None

    def reinstate_paused(self) -> Optional[OptionList]:
        """Make the paused list active again (explicit return cue)."""
        if self.paused_snapshot is None:
            return None
        restored = self.paused_snapshot
        restored.shown_turn = self.turn
        restored.paused_turn = None
        restored.pause_reason = ""
        self.active_options = restored
        self.paused_snapshot = None
        return restored

    def remember_referent(self, option: CandidateOption) -> None:
        # Newest first; re-acting on an item moves it to the front
        for existing in list(self.recent_referents):
            if existing.id == option.id:
                self.recent_referents.remove(existing)
        self.recent_referents.appendleft(option)
        self.recent_referent_turn = self.turn

    def referents(self) -> List[CandidateOption]:
        return list(self.recent_referents)

    def end_clarification(self) -> None:
        self.clarification = None

    def in_stop_window(self) -> bool:
        """True for STOP_SUPPRESSION_TURN_LIMIT turns after the user stopped a list."""
        if self.stopped_turn is None:
            return False
        return self.turn - self.stopped_turn <= Config.STOP_SUPPRESSION_TURN_LIMIT

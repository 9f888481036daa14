"""chatnav.context.candidates

Candidate types shared by the grounding-set builder, the resolver, the
arbitrator and the clarifier.

A candidate group's source is a closed set (SourceType). Option payloads
never travel as open dicts past the widget registry boundary.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class SourceType(Enum):
    CHAT_ACTIVE = "chat_active"
    CHAT_PAUSED = "chat_paused"
    WIDGET_LIST = "widget_list"
    RECENT_REFERENT = "recent_referent"
    CAPABILITY = "capability"


LIST_SOURCES = (SourceType.CHAT_ACTIVE, SourceType.CHAT_PAUSED, SourceType.WIDGET_LIST)


@dataclass(frozen=True)
class CandidateOption:
    """
    One selectable thing.

    Fields:
        id: Stable across turns for the same item
        label: Display text
        badge: Single-letter badge, when the UI shows one
        source_tag: Where the item came from ("chat", a widget id, "capability", ...)
        allowed_actions: Actions the item supports (first is the default)
    """
    id: str
    label: str
    badge: Optional[str] = None
    source_tag: str = "chat"
    allowed_actions: Tuple[str, ...] = ("open",)

    @property
    def default_action(self) -> str:
        return self.allowed_actions[0] if self.allowed_actions else "open"

    def to_dict(self) -> dict:
        return {"id": self.id, "label": self.label}


@dataclass
class CandidateGroup:
    """
    Candidates from one source, stamped with freshness.

    `group_id` is stable for the lifetime of the underlying list (the chat
    list id, the widget id, or the fixed ids "recent"/"capability").
    """
    source_type: SourceType
    candidates: List[CandidateOption]
    group_id: str
    title: str = ""
    freshness_timestamp: float = field(default_factory=time.time)
    shown_turn: int = 0
    widget_id: Optional[str] = None
    badges_visible: bool = False

    @property
    def is_list(self) -> bool:
        return self.source_type in LIST_SOURCES

    @property
    def ids(self) -> List[str]:
        return [c.id for c in self.candidates]

    def find(self, candidate_id: str) -> Optional[CandidateOption]:
        for c in self.candidates:
            if c.id == candidate_id:
                return c
        return None


@dataclass
class OptionList:
    """A chat-shown option list as remembered by the session."""
    list_id: str
    options: List[CandidateOption]
    shown_turn: int
    title: str = ""
    paused_turn: Optional[int] = None
    pause_reason: str = ""

    def age(self, turn: int) -> int:
        anchor = self.paused_turn if self.paused_turn is not None else self.shown_turn
        return turn - anchor

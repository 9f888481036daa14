"""chatnav.context

Conversation context for arbitration: candidate types, per-conversation
session state and the focus latch. The grounding-set builder lives in
chatnav.context.grounding_set.
"""

from chatnav.context.candidates import CandidateGroup, CandidateOption, OptionList, SourceType
from chatnav.context.focus_latch import FocusLatch, FocusLatchState, LatchEvent, LatchEventKind, LatchStatus
from chatnav.context.session_state import ClarificationSession, ConversationState

__all__ = [
    "CandidateGroup",
    "CandidateOption",
    "OptionList",
    "SourceType",
    "FocusLatch",
    "FocusLatchState",
    "LatchEvent",
    "LatchEventKind",
    "LatchStatus",
    "ClarificationSession",
    "ConversationState",
]

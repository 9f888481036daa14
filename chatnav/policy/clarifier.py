"""chatnav.policy.clarifier

Builds the single clarifying question a turn may end with.

Escalation ladder (per clarification cycle):
    attempt 1   plain re-ask
    attempt 2   narrower question (say the number or the name)
    attempt 3+  same choices plus "None of these" / "Start over"

HARD RULES:
- Choices are drawn only from the candidate pool passed in
- The UI renders what it gets; it never routes on its own
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from chatnav.context.candidates import CandidateGroup, CandidateOption
from chatnav.core.config import Config

EXIT_NONE_ID = "exit_none"
EXIT_START_OVER_ID = "exit_start_over"
EXIT_CHOICES = (
    (EXIT_NONE_ID, "None of these"),
    (EXIT_START_OVER_ID, "Start over"),
)
EXIT_IDS = frozenset(i for i, _ in EXIT_CHOICES)

LIST_CHOICE_PREFIX = "widget:"

_FIRST_ASK = {
    "typo_ambiguous": "Did you mean one of these?",
    "cross_source_tie": "That matches more than one list. Which one do you mean?",
    "no_candidate": "I couldn't match that. Which one do you mean?",
}
_DEFAULT_FIRST_ASK = "Which one do you mean?"
_SECOND_ASK = "Which one is closer to what you need? You can say the number or the name."
_FINAL_ASK = "I still can't tell which one you mean. Pick one, or choose None of these or Start over."


@dataclass
class ClarifierChoice:
    id: str
    label: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "label": self.label}


@dataclass
class ClarifierOutput:
    """
    What the UI renders for a clarifying question.

    Fields:
        question: Question text
        choices: Ordered choices (ids from the pool, plus exits at attempt 3+)
        session_id: Clarification session this question belongs to
        attempt_number: Position on the escalation ladder
        ambiguity_reason: Why deterministic resolution stopped, if it did
        kind: "options" | "list_choice"
    """
    question: str
    choices: List[ClarifierChoice] = field(default_factory=list)
    session_id: str = ""
    attempt_number: int = 1
    ambiguity_reason: Optional[str] = None
    kind: str = "options"

    @property
    def choice_ids(self) -> List[str]:
        return [c.id for c in self.choices]

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "choices": [c.to_dict() for c in self.choices],
            "sessionId": self.session_id,
            "attemptNumber": self.attempt_number,
        }

    def render(self) -> str:
        lines = [self.question]
        for i, choice in enumerate(self.choices, start=1):
            lines.append(f"  {i}. {choice.label}")
        return "\n".join(lines)


def question_for_attempt(attempt_number: int, ambiguity_reason: Optional[str] = None) -> str:
    if attempt_number >= Config.MAX_ATTEMPT_COUNT:
        return _FINAL_ASK
    if attempt_number == 2:
        return _SECOND_ASK
    return _FIRST_ASK.get(ambiguity_reason or "", _DEFAULT_FIRST_ASK)


def _choice_labels(pool: Sequence[CandidateOption]) -> List[str]:
    # Same label from two sources: suffix the source so the user can tell them apart
    counts: Dict[str, int] = {}
    for option in pool:
        counts[option.label.lower()] = counts.get(option.label.lower(), 0) + 1
    labels = []
    for option in pool:
        if counts[option.label.lower()] > 1 and option.source_tag:
            labels.append(f"{option.label} ({option.source_tag})")
        else:
            labels.append(option.label)
    return labels


def order_pool(pool: Sequence[CandidateOption], suggestion_order: Optional[Sequence[str]]) -> List[CandidateOption]:
    """Reorder the pool by suggested ids; unknown ids are ignored, missing ones keep pool order."""
    if not suggestion_order:
        return list(pool)
    by_id = {o.id: o for o in pool}
    ordered = [by_id[i] for i in suggestion_order if i in by_id]
    seen = {o.id for o in ordered}
    ordered.extend(o for o in pool if o.id not in seen)
    return ordered


def build_clarifier(
    pool: Sequence[CandidateOption],
    session_id: str,
    attempt_number: int = 1,
    ambiguity_reason: Optional[str] = None,
    suggestion_order: Optional[Sequence[str]] = None,
    question: Optional[str] = None,
) -> ClarifierOutput:
    """
    Build an option clarifier.

    Args:
        pool: Candidates the user may pick from
        session_id: Clarification session id
        attempt_number: Escalation ladder position (1-based)
        ambiguity_reason: Reason string, shapes the first question
        suggestion_order: Candidate ids to show first (model suggestion)
        question: Explicit question text (overrides the ladder)

    Returns:
        ClarifierOutput
    """
    ordered = order_pool(without_exits(pool), suggestion_order)
    choices = [ClarifierChoice(id=o.id, label=label) for o, label in zip(ordered, _choice_labels(ordered))]
    if attempt_number >= Config.MAX_ATTEMPT_COUNT:
        choices.extend(ClarifierChoice(id=i, label=label) for i, label in EXIT_CHOICES)

    return ClarifierOutput(
        question=question or question_for_attempt(attempt_number, ambiguity_reason),
        choices=choices,
        session_id=session_id,
        attempt_number=attempt_number,
        ambiguity_reason=ambiguity_reason,
    )


def list_choice_options(groups: Sequence[CandidateGroup]) -> List[CandidateOption]:
    """One pseudo-option per competing widget list (id "widget:<widget_id>")."""
    return [
        CandidateOption(
            id=f"{LIST_CHOICE_PREFIX}{g.widget_id or g.group_id}",
            label=g.title or (g.widget_id or g.group_id),
            source_tag="list_choice",
            allowed_actions=("choose_list",),
        )
        for g in groups
    ]


def build_list_question(
    groups: Sequence[CandidateGroup],
    session_id: str,
    attempt_number: int = 1,
) -> ClarifierOutput:
    """Ask which of several live widget lists the user means."""
    options = list_choice_options(groups)
    return ClarifierOutput(
        question="Which list do you mean?",
        choices=[ClarifierChoice(id=o.id, label=o.label) for o in options],
        session_id=session_id,
        attempt_number=attempt_number,
        kind="list_choice",
    )


def loading_message(target_ref: Optional[str]) -> str:
    name = target_ref or "That panel"
    return f"{name} is still loading, try again in a moment."


def exit_options() -> List[CandidateOption]:
    """Exit choices as selectable options, so "3" or "the last one" can pick them."""
    return [
        CandidateOption(id=i, label=label, source_tag="exit", allowed_actions=("exit",))
        for i, label in EXIT_CHOICES
    ]


def without_exits(pool: Sequence[CandidateOption]) -> List[CandidateOption]:
    return [o for o in pool if o.id not in EXIT_IDS]

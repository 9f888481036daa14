"""chatnav.core.resolver

Deterministic resolution of a classified input against the grounding set.

Attempt order (first success wins):
1. Exact normalized label match
2. Ordinal / badge within the selected target group
3. Pronoun reference to the most recent referent ("open it again")
4. Unique token-subset match after verb/polite stripping
5. The global command table (exact, then token subset)
6. Typo-tolerant token match (never executes; reported as typo_ambiguous)

Label steps search groups in tiers: the target group, then other lists,
then recent referents. A lower tier is consulted only when every higher
tier produced no match. The command table is searched only after every
shown list came up empty.

HARD RULES:
- A winner is returned only when exactly one candidate matched
- Two or more matches are reported, never guessed
- Pure: reads the grounding set, never session state or the registry
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from chatnav.context.candidates import CandidateGroup, CandidateOption, SourceType
from chatnav.context.focus_latch import FocusLatchState, LatchStatus
from chatnav.context.grounding_set import GroundingSet
from chatnav.core.commands import match_command
from chatnav.core.input_classifier import Classification, resolve_ordinal
from chatnav.core.logger import get_logger
from chatnav.core.text_normalize import (
    canonical_tokens,
    canonicalize_command,
    fuzzy_token_match,
    label_tokens,
    normalize,
)


class AmbiguityReason(Enum):
    NO_CANDIDATE = "no_candidate"
    MULTI_MATCH_NO_EXACT_WINNER = "multi_match_no_exact_winner"
    CROSS_SOURCE_TIE = "cross_source_tie"
    TYPO_AMBIGUOUS = "typo_ambiguous"
    COMMAND_SELECTION_COLLISION = "command_selection_collision"


class MatchMethod(Enum):
    EXACT_LABEL = "exact_label"
    ORDINAL = "ordinal"
    BADGE = "badge"
    PRONOUN = "pronoun"
    TOKEN_SUBSET = "token_subset"
    FUZZY = "fuzzy"
    NONE = "none"


# Words that carry no label content once ordinals have been handled
_SELECTION_FILLER = {"one", "option", "options", "item", "choice", "this", "that", "it", "again"}


@dataclass
class ResolverOutcome:
    """
    Result of deterministic resolution.

    Fields:
        winner: The unique match, if any
        winner_group: Group the winner came from
        ambiguity_reason: Why no winner was produced
        match_method: Which attempt produced the result
        matches: Tied candidates, or typo suggestions
        pool: Candidates a clarifier or the arbitrator may offer
        pool_group: Group the pool belongs to (None when it spans groups)
    """
    winner: Optional[CandidateOption] = None
    winner_group: Optional[CandidateGroup] = None
    ambiguity_reason: Optional[AmbiguityReason] = None
    match_method: MatchMethod = MatchMethod.NONE
    matches: List[CandidateOption] = field(default_factory=list)
    pool: List[CandidateOption] = field(default_factory=list)
    pool_group: Optional[CandidateGroup] = None

    @property
    def resolved(self) -> bool:
        return self.winner is not None

    def to_dict(self) -> dict:
        return {
            "winner": self.winner.id if self.winner else None,
            "reason": self.ambiguity_reason.value if self.ambiguity_reason else None,
            "method": self.match_method.value,
            "matches": [m.id for m in self.matches],
            "pool": [p.id for p in self.pool],
        }


# ============================================================================
# TARGET GROUP SELECTION
# ============================================================================

def select_target_group(
    grounding_set: GroundingSet,
    classification: Classification,
    latch_state: Optional[FocusLatchState] = None,
    clarification_group_id: Optional[str] = None,
) -> Optional[CandidateGroup]:
    """
    Pick the single group that ordinals, badges and tie-breaks bind to.

    Precedence: explicit scope cue, open clarification list, resolved
    latch target, active chat list, the only live widget list.
    A paused chat list is a target only through a chat scope/return cue.

    Returns:
        CandidateGroup or None when no unambiguous group exists
    """
    cue = classification.scope_cue
    if cue.is_present:
        if cue.scope == "chat":
            if classification.is_return_cue:
                return grounding_set.first(SourceType.CHAT_PAUSED) or grounding_set.first(SourceType.CHAT_ACTIVE)
            return grounding_set.first(SourceType.CHAT_ACTIVE) or grounding_set.first(SourceType.CHAT_PAUSED)
        if cue.named_target_hint:
            wanted = cue.named_target_hint.strip().lower()
            for group in grounding_set.widget_groups:
                if group.title.strip().lower() == wanted:
                    return group
            return None
        if latch_state is not None and latch_state.status == LatchStatus.RESOLVED:
            group = grounding_set.by_id(latch_state.target_id or "")
            if group is not None:
                return group
        widgets = grounding_set.widget_groups
        return widgets[0] if len(widgets) == 1 else None

    if clarification_group_id:
        group = grounding_set.by_id(clarification_group_id)
        if group is not None:
            return group

    if latch_state is not None and latch_state.status == LatchStatus.RESOLVED:
        group = grounding_set.by_id(latch_state.target_id or "")
        if group is not None:
            return group

    active = grounding_set.first(SourceType.CHAT_ACTIVE)
    if active is not None:
        return active

    widgets = grounding_set.widget_groups
    if len(widgets) == 1:
        return widgets[0]
    return None


# ============================================================================
# MATCH HELPERS
# ============================================================================

def _tiers(
    grounding_set: GroundingSet,
    target: Optional[CandidateGroup],
    scoped: bool,
) -> Tuple[List[List[CandidateGroup]], List[CandidateGroup]]:
    """(shown-list tiers, capability groups). Scoped resolution never leaves the target."""
    if scoped and target is not None:
        return [[target]], []

    tiers: List[List[CandidateGroup]] = []
    if target is not None:
        tiers.append([target])
    others = [g for g in grounding_set.list_groups if g is not target]
    if others:
        tiers.append(others)
    recent = grounding_set.of_type(SourceType.RECENT_REFERENT)
    if recent:
        tiers.append(recent)
    return tiers, grounding_set.of_type(SourceType.CAPABILITY)


def _dedupe(hits: Sequence[Tuple[CandidateGroup, CandidateOption]]) -> List[Tuple[CandidateGroup, CandidateOption]]:
    seen = set()
    out = []
    for group, option in hits:
        if option.id not in seen:
            seen.add(option.id)
            out.append((group, option))
    return out


def _exact_hits(text: str, groups: Sequence[CandidateGroup]) -> List[Tuple[CandidateGroup, CandidateOption]]:
    normalized = normalize(text)
    canonical = canonicalize_command(text)
    if not normalized:
        return []
    hits = []
    for group in groups:
        for option in group.candidates:
            label = normalize(option.label)
            if label and label in (normalized, canonical):
                hits.append((group, option))
    return _dedupe(hits)


def _content_tokens(text: str) -> set:
    return {t for t in canonical_tokens(canonicalize_command(text)) if t not in _SELECTION_FILLER}


def _subset_hits(tokens: set, groups: Sequence[CandidateGroup]) -> List[Tuple[CandidateGroup, CandidateOption]]:
    hits = []
    for group in groups:
        for option in group.candidates:
            if tokens <= label_tokens(option.label):
                hits.append((group, option))
    return _dedupe(hits)


def _fuzzy_hits(tokens: set, groups: Sequence[CandidateGroup]) -> List[Tuple[CandidateGroup, CandidateOption]]:
    hits = []
    for group in groups:
        for option in group.candidates:
            ltoks = label_tokens(option.label)
            if all(fuzzy_token_match(t, ltoks) for t in tokens):
                hits.append((group, option))
    return _dedupe(hits)


def _tie_outcome(
    hits: List[Tuple[CandidateGroup, CandidateOption]],
    method: MatchMethod,
    classification: Classification,
) -> ResolverOutcome:
    groups: Dict[str, CandidateGroup] = {g.group_id: g for g, _ in hits}
    matches = [o for _, o in hits]
    pool = list(matches)
    if len(groups) > 1:
        reason = AmbiguityReason.CROSS_SOURCE_TIE
        pool_group = None
    else:
        pool_group = next(iter(groups.values()))
        command = match_command(classification.remainder) if classification.is_command_like else None
        if command is not None:
            reason = AmbiguityReason.COMMAND_SELECTION_COLLISION
            # The global command stays selectable next to the list items
            option = command.to_option()
            if all(m.id != option.id for m in matches):
                pool.append(option)
                pool_group = None
        else:
            reason = AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER
    return ResolverOutcome(
        ambiguity_reason=reason,
        match_method=method,
        matches=matches,
        pool=pool,
        pool_group=pool_group,
    )


def _won(group: CandidateGroup, option: CandidateOption, method: MatchMethod) -> ResolverOutcome:
    return ResolverOutcome(
        winner=option,
        winner_group=group,
        match_method=method,
        matches=[option],
        pool=[option],
        pool_group=group,
    )


def _no_candidate(target: Optional[CandidateGroup], grounding_set: GroundingSet) -> ResolverOutcome:
    pool_group = target
    if pool_group is None:
        lists = grounding_set.list_groups
        pool_group = lists[0] if len(lists) == 1 else None
    return ResolverOutcome(
        ambiguity_reason=AmbiguityReason.NO_CANDIDATE,
        pool=list(pool_group.candidates) if pool_group else [],
        pool_group=pool_group,
    )


# ============================================================================
# RESOLVE
# ============================================================================

def resolve(
    grounding_set: GroundingSet,
    classification: Classification,
    target: Optional[CandidateGroup] = None,
    scoped: bool = False,
) -> ResolverOutcome:
    """
    Resolve an input to a unique candidate or an ambiguity reason.

    Args:
        grounding_set: This turn's candidate groups
        classification: Classified input (scope cue already stripped in remainder)
        target: Group ordinals/badges bind to (see select_target_group)
        scoped: True when an explicit scope cue restricts matching to `target`

    Returns:
        ResolverOutcome
    """
    logger = get_logger()
    text = classification.remainder or classification.normalized
    tiers, capability = _tiers(grounding_set, target, scoped)

    outcome = _resolve(text, classification, grounding_set, target, tiers, capability)
    logger.debug(f"[RESOLVE] text={text!r} target={target.group_id if target else None} -> {outcome.to_dict()}")
    return outcome


def _resolve(
    text: str,
    classification: Classification,
    grounding_set: GroundingSet,
    target: Optional[CandidateGroup],
    tiers: List[List[CandidateGroup]],
    capability: List[CandidateGroup],
) -> ResolverOutcome:
    # 1. Exact label
    for groups in tiers:
        hits = _exact_hits(text, groups)
        if len(hits) == 1:
            return _won(hits[0][0], hits[0][1], MatchMethod.EXACT_LABEL)
        if hits:
            return _tie_outcome(hits, MatchMethod.EXACT_LABEL, classification)

    # 2. Ordinal / badge in the target group
    if classification.has_ordinal:
        if target is None or not target.is_list:
            return _no_candidate(None, grounding_set)
        index = resolve_ordinal(classification.ordinal_index, len(target.candidates))
        if index is None:
            return _no_candidate(target, grounding_set)
        return _won(target, target.candidates[index], MatchMethod.ORDINAL)

    if classification.badge:
        if target is not None and target.badges_visible:
            hits = [(target, o) for o in target.candidates if o.badge and o.badge.lower() == classification.badge]
            if len(hits) == 1:
                return _won(hits[0][0], hits[0][1], MatchMethod.BADGE)
            if hits:
                return _tie_outcome(hits, MatchMethod.BADGE, classification)
        return _no_candidate(target, grounding_set)

    # 3. Pronoun reference
    if classification.is_pronoun_ref:
        recent = grounding_set.first(SourceType.RECENT_REFERENT)
        if recent is not None and recent.candidates:
            return _won(recent, recent.candidates[0], MatchMethod.PRONOUN)
        return _no_candidate(target, grounding_set)

    tokens = _content_tokens(text)
    if not tokens:
        return _no_candidate(target, grounding_set)

    # 4. Token subset
    for groups in tiers:
        hits = _subset_hits(tokens, groups)
        if len(hits) == 1:
            return _won(hits[0][0], hits[0][1], MatchMethod.TOKEN_SUBSET)
        if hits:
            return _tie_outcome(hits, MatchMethod.TOKEN_SUBSET, classification)

    # 5. Capability set, only once no shown list matched
    for hits, method in (
        (_exact_hits(text, capability), MatchMethod.EXACT_LABEL),
        (_subset_hits(tokens, capability), MatchMethod.TOKEN_SUBSET),
    ):
        if len(hits) == 1:
            return _won(hits[0][0], hits[0][1], method)
        if hits:
            return _tie_outcome(hits, method, classification)

    # 6. Typo-tolerant match: suggestions only
    for groups in tiers + [capability]:
        hits = _fuzzy_hits(tokens, groups)
        if hits:
            groups_hit = {g.group_id: g for g, _ in hits}
            matches = [o for _, o in hits]
            return ResolverOutcome(
                ambiguity_reason=AmbiguityReason.TYPO_AMBIGUOUS,
                match_method=MatchMethod.FUZZY,
                matches=matches,
                pool=list(matches),
                pool_group=next(iter(groups_hit.values())) if len(groups_hit) == 1 else None,
            )

    return _no_candidate(target, grounding_set)

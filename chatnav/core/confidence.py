"""chatnav.core.confidence

Maps a resolver outcome and the grounding-set shape to an escalation bucket.

HARD RULES:
- Pure lookup, no heuristics
- multi_list_ambiguous always forces clarifier-only (the user picks the
  list, never the model)
"""

from __future__ import annotations

from enum import Enum
from typing import Dict

from chatnav.context.grounding_set import GroundingSet
from chatnav.core.resolver import AmbiguityReason, ResolverOutcome


class ConfidenceBucket(Enum):
    HIGH_CONFIDENCE_EXECUTE = "high_confidence_execute"
    LOW_CONFIDENCE_LLM_ELIGIBLE = "low_confidence_llm_eligible"
    LOW_CONFIDENCE_CLARIFIER_ONLY = "low_confidence_clarifier_only"


_BUCKET_BY_REASON: Dict[AmbiguityReason, ConfidenceBucket] = {
    AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER: ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
    AmbiguityReason.COMMAND_SELECTION_COLLISION: ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
    AmbiguityReason.TYPO_AMBIGUOUS: ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
    AmbiguityReason.CROSS_SOURCE_TIE: ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY,
    AmbiguityReason.NO_CANDIDATE: ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY,
}


def classify(outcome: ResolverOutcome, grounding_set: GroundingSet) -> ConfidenceBucket:
    """
    Args:
        outcome: Deterministic resolver result
        grounding_set: The set it was resolved against

    Returns:
        ConfidenceBucket
    """
    if grounding_set.multi_list_ambiguous:
        return ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY
    if outcome.winner is not None:
        return ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE
    if outcome.ambiguity_reason is None or not outcome.pool:
        return ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY
    return _BUCKET_BY_REASON[outcome.ambiguity_reason]

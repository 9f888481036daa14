"""chatnav.context.grounding_set

Per-turn grounding set: the bounded, ordered candidate groups that an input
may resolve against.

Source priority (freshest/most specific first):
    chat_active -> widget_list (latched widget first) -> chat_paused
    -> recent_referent -> capability

HARD RULES:
- A source contributes a group only when it has candidates
- Stale groups (older than GROUP_TTL_TURNS) are excluded, never resurfaced
- Capability group is always present, so the set is never empty
- Registry unreachable (None) means no widget groups, never an error
- Reads session state and the registry copy; mutates neither
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from chatnav.context.candidates import CandidateGroup, CandidateOption, SourceType
from chatnav.context.focus_latch import LatchStatus
from chatnav.context.session_state import ConversationState
from chatnav.core.commands import capability_options
from chatnav.core.config import Config
from chatnav.core.input_classifier import Classification
from chatnav.core.logger import get_logger
from chatnav.widgets.registry import WidgetSnapshot

RECENT_GROUP_ID = "recent"
CAPABILITY_GROUP_ID = "capability"


@dataclass
class GroundingSet:
    """
    Ordered candidate groups for one turn.

    Fields:
        groups: CandidateGroups in source priority order
        multi_list_ambiguous: Selection-like input with 2+ live widget lists
            and nothing to pick between them; forces a which-list question
        ambiguous_lists: The widget groups in contention when flagged
        turn: Turn the set was built for
        registry_available: False when the widget registry could not be read
    """
    groups: List[CandidateGroup] = field(default_factory=list)
    multi_list_ambiguous: bool = False
    ambiguous_lists: List[CandidateGroup] = field(default_factory=list)
    turn: int = 0
    registry_available: bool = True

    def first(self, source_type: SourceType) -> Optional[CandidateGroup]:
        for group in self.groups:
            if group.source_type == source_type:
                return group
        return None

    def of_type(self, source_type: SourceType) -> List[CandidateGroup]:
        return [g for g in self.groups if g.source_type == source_type]

    def by_id(self, group_id: str) -> Optional[CandidateGroup]:
        for group in self.groups:
            if group.group_id == group_id:
                return group
        return None

    @property
    def widget_groups(self) -> List[CandidateGroup]:
        return self.of_type(SourceType.WIDGET_LIST)

    @property
    def list_groups(self) -> List[CandidateGroup]:
        return [g for g in self.groups if g.is_list]

    def to_dict(self) -> dict:
        return {
            "turn": self.turn,
            "groups": [
                {"source": g.source_type.value, "id": g.group_id, "size": len(g.candidates)}
                for g in self.groups
            ],
            "multi_list_ambiguous": self.multi_list_ambiguous,
        }


# ============================================================================
# GROUP BUILDERS
# ============================================================================

def _chat_group(state: ConversationState, source_type: SourceType) -> Optional[CandidateGroup]:
    options = state.active_options if source_type == SourceType.CHAT_ACTIVE else state.paused_snapshot
    if options is None or not options.options:
        return None
    if not state.is_fresh(options):
        return None
    return CandidateGroup(
        source_type=source_type,
        candidates=list(options.options[:Config.LIST_CANDIDATE_CAP]),
        group_id=options.list_id,
        title=options.title,
        shown_turn=options.shown_turn if options.paused_turn is None else options.paused_turn,
        badges_visible=any(o.badge for o in options.options),
    )


def widget_group(snapshot: WidgetSnapshot) -> Optional[CandidateGroup]:
    """Flatten a widget's list segments into one group (None if nothing selectable)."""
    if not snapshot.is_visible:
        return None

    candidates: List[CandidateOption] = []
    seen = set()
    badges = False
    for segment in snapshot.list_segments:
        for item in segment.items:
            if item.item_id in seen:
                continue
            seen.add(item.item_id)
            show_badge = segment.badges_enabled and item.badge_visible and bool(item.badge)
            badges = badges or show_badge
            candidates.append(CandidateOption(
                id=item.item_id,
                label=item.label,
                badge=item.badge if show_badge else None,
                source_tag=snapshot.widget_id,
                allowed_actions=item.actions,
            ))

    if not candidates:
        return None

    return CandidateGroup(
        source_type=SourceType.WIDGET_LIST,
        candidates=candidates[:Config.LIST_CANDIDATE_CAP],
        group_id=snapshot.widget_id,
        title=snapshot.title,
        freshness_timestamp=snapshot.registered_at,
        widget_id=snapshot.widget_id,
        badges_visible=badges,
    )


def _widget_groups(
    registry_snapshot: Mapping[str, WidgetSnapshot],
    latched_id: Optional[str],
) -> List[CandidateGroup]:
    groups = []
    for snapshot in registry_snapshot.values():
        group = widget_group(snapshot)
        if group is not None:
            groups.append(group)

    # Latched widget first, then most recently registered
    groups.sort(key=lambda g: (g.widget_id != latched_id, -g.freshness_timestamp))
    return groups


def _recent_group(state: ConversationState) -> Optional[CandidateGroup]:
    referents = state.referents()
    if not referents:
        return None
    if state.turn - state.recent_referent_turn > Config.GROUP_TTL_TURNS:
        return None
    return CandidateGroup(
        source_type=SourceType.RECENT_REFERENT,
        candidates=referents[:Config.NON_LIST_CANDIDATE_CAP],
        group_id=RECENT_GROUP_ID,
        title="Recent",
        shown_turn=state.recent_referent_turn,
    )


def _capability_group() -> CandidateGroup:
    return CandidateGroup(
        source_type=SourceType.CAPABILITY,
        candidates=capability_options()[:Config.NON_LIST_CANDIDATE_CAP],
        group_id=CAPABILITY_GROUP_ID,
        title="Things I can open",
    )


# ============================================================================
# BUILD
# ============================================================================

def build(
    turn_state: ConversationState,
    registry_snapshot: Optional[Mapping[str, WidgetSnapshot]],
    classification: Optional[Classification] = None,
) -> GroundingSet:
    """
    Assemble this turn's grounding set.

    Args:
        turn_state: The conversation's session state (read only)
        registry_snapshot: Point-in-time widget registry copy, or None when
            the registry could not be read
        classification: Classified input; needed for the multi-list rule

    Returns:
        GroundingSet (always contains the capability group)
    """
    logger = get_logger()
    latch = turn_state.latch_state
    latched_id = latch.target_id if latch.status == LatchStatus.RESOLVED else None

    groups: List[CandidateGroup] = []

    active = _chat_group(turn_state, SourceType.CHAT_ACTIVE)
    if active is not None:
        groups.append(active)

    widget_groups: List[CandidateGroup] = []
    if registry_snapshot is not None:
        widget_groups = _widget_groups(registry_snapshot, latched_id)
        groups.extend(widget_groups)

    paused = _chat_group(turn_state, SourceType.CHAT_PAUSED)
    if paused is not None:
        groups.append(paused)

    recent = _recent_group(turn_state)
    if recent is not None:
        groups.append(recent)

    groups.append(_capability_group())

    grounding = GroundingSet(
        groups=groups,
        turn=turn_state.turn,
        registry_available=registry_snapshot is not None,
    )

    if classification is not None and len(widget_groups) >= 2:
        latched_visible = latched_id is not None and any(g.widget_id == latched_id for g in widget_groups)
        if (
            classification.is_selection_like
            and not classification.scope_cue.is_present
            and not latched_visible
            and active is None
        ):
            grounding.multi_list_ambiguous = True
            grounding.ambiguous_lists = list(widget_groups)

    logger.debug(f"[GROUND] {grounding.to_dict()}")
    return grounding


def titles(registry_snapshot: Optional[Mapping[str, WidgetSnapshot]]) -> List[str]:
    """Titles of registered widgets (used for named scope cues)."""
    if not registry_snapshot:
        return []
    return [s.title for s in registry_snapshot.values()]


def find_widget(
    registry_snapshot: Optional[Mapping[str, WidgetSnapshot]],
    ref: str,
) -> Optional[WidgetSnapshot]:
    """Look a widget up by id or case-insensitive title."""
    if not registry_snapshot or not ref:
        return None
    if ref in registry_snapshot:
        return registry_snapshot[ref]
    wanted = ref.strip().lower()
    for snapshot in registry_snapshot.values():
        if snapshot.title.strip().lower() == wanted:
            return snapshot
    return None


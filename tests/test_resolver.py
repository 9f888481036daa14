"""
Tests for deterministic resolution and target-group selection.

Run with: python -m pytest tests/test_resolver.py -v
"""

import pytest

from chatnav.context.candidates import CandidateGroup, CandidateOption, SourceType
from chatnav.context.focus_latch import resolved
from chatnav.context.grounding_set import GroundingSet
from chatnav.core.commands import capability_options
from chatnav.core.input_classifier import ClassifierContext, classify
from chatnav.core.resolver import AmbiguityReason, MatchMethod, resolve, select_target_group

D = CandidateOption("panel_d", "Links Panel D")
E = CandidateOption("panel_e", "Links Panel E")
W = CandidateOption("notes_weekly", "Weekly notes")


def _chat(*options, group_id="opts_1", source=SourceType.CHAT_ACTIVE):
    return CandidateGroup(source_type=source, candidates=list(options), group_id=group_id)


def _widget(widget_id, *options, title="", badges=False):
    return CandidateGroup(
        source_type=SourceType.WIDGET_LIST,
        candidates=list(options),
        group_id=widget_id,
        widget_id=widget_id,
        title=title or widget_id,
        badges_visible=badges,
    )


def _capability():
    return CandidateGroup(SourceType.CAPABILITY, capability_options()[:5], "capability")


def _gs(*groups):
    return GroundingSet(groups=list(groups) + [_capability()])


def _cls(text, grounding, badges=False):
    labels = [c.label for g in grounding.list_groups for c in g.candidates]
    titles = [g.title for g in grounding.widget_groups]
    return classify(text, ClassifierContext(option_labels=labels, badges_visible=badges, widget_titles=titles))


@pytest.fixture
def chat_gs():
    return _gs(_chat(D, E, W))


# ============================================================================
# RESOLVE
# ============================================================================

class TestResolve:
    """Attempt order and ambiguity reasons."""

    def test_ordinal(self, chat_gs):
        target = chat_gs.first(SourceType.CHAT_ACTIVE)
        outcome = resolve(chat_gs, _cls("the second one", chat_gs), target=target)
        assert outcome.winner == E
        assert outcome.match_method == MatchMethod.ORDINAL
        assert outcome.resolved

    def test_exact_label(self, chat_gs):
        outcome = resolve(chat_gs, _cls("Links Panel D", chat_gs), target=chat_gs.groups[0])
        assert outcome.winner == D
        assert outcome.match_method == MatchMethod.EXACT_LABEL

    def test_unique_token_subset_after_verb_strip(self, chat_gs):
        outcome = resolve(chat_gs, _cls("open the weekly one", chat_gs), target=chat_gs.groups[0])
        assert outcome.winner == W
        assert outcome.match_method == MatchMethod.TOKEN_SUBSET

    def test_multi_match(self, chat_gs):
        outcome = resolve(chat_gs, _cls("panel", chat_gs), target=chat_gs.groups[0])
        assert outcome.winner is None
        assert outcome.ambiguity_reason == AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER
        assert [o.id for o in outcome.pool] == ["panel_d", "panel_e"]
        assert outcome.pool_group is chat_gs.groups[0]

    def test_cross_source_tie(self):
        grounding = _gs(
            _widget("w1", CandidateOption("b1", "Budget report")),
            _widget("w2", CandidateOption("b2", "Budget plan")),
        )
        outcome = resolve(grounding, _cls("budget", grounding), target=None)
        assert outcome.ambiguity_reason == AmbiguityReason.CROSS_SOURCE_TIE
        assert outcome.pool_group is None
        assert {o.id for o in outcome.pool} == {"b1", "b2"}

    def test_target_tier_beats_other_lists(self):
        target = _widget("w1", CandidateOption("b1", "Budget report"))
        grounding = _gs(target, _widget("w2", CandidateOption("b2", "Budget plan")))
        outcome = resolve(grounding, _cls("budget", grounding), target=target)
        assert outcome.winner.id == "b1"

    def test_typo_is_never_a_winner(self, chat_gs):
        outcome = resolve(chat_gs, _cls("weekly notez", chat_gs), target=chat_gs.groups[0])
        assert outcome.winner is None
        assert outcome.ambiguity_reason == AmbiguityReason.TYPO_AMBIGUOUS
        assert [o.id for o in outcome.pool] == ["notes_weekly"]

    def test_typo_ambiguous(self, chat_gs):
        outcome = resolve(chat_gs, _cls("linkz panle", chat_gs), target=chat_gs.groups[0])
        assert outcome.ambiguity_reason == AmbiguityReason.TYPO_AMBIGUOUS
        assert [o.id for o in outcome.pool] == ["panel_d", "panel_e"]

    def test_ordinal_out_of_range(self, chat_gs):
        target = chat_gs.groups[0]
        outcome = resolve(chat_gs, _cls("the fifth one", chat_gs), target=target)
        assert outcome.ambiguity_reason == AmbiguityReason.NO_CANDIDATE
        assert outcome.pool == target.candidates

    def test_ordinal_without_target(self):
        grounding = _gs(_widget("w1", D), _widget("w2", E))
        outcome = resolve(grounding, _cls("first option", grounding), target=None)
        assert outcome.ambiguity_reason == AmbiguityReason.NO_CANDIDATE
        assert outcome.pool == []

    def test_badge(self):
        alpha = CandidateOption("r1", "Alpha", badge="a")
        beta = CandidateOption("r2", "Beta", badge="b")
        target = _widget("w_recent", alpha, beta, badges=True)
        grounding = _gs(target)
        outcome = resolve(grounding, _cls("b", grounding, badges=True), target=target)
        assert outcome.winner == beta
        assert outcome.match_method == MatchMethod.BADGE

    def test_pronoun_uses_most_recent_referent(self):
        recent = CandidateGroup(SourceType.RECENT_REFERENT, [W, D], "recent")
        grounding = _gs(recent)
        outcome = resolve(grounding, _cls("open it again", grounding))
        assert outcome.winner == W
        assert outcome.match_method == MatchMethod.PRONOUN

    def test_command_selection_collision(self):
        files = CandidateOption("rf", "Recent files")
        notes = CandidateOption("rn", "Recent notes")
        grounding = _gs(_chat(files, notes))
        outcome = resolve(grounding, _cls("recent", grounding), target=grounding.groups[0])
        assert outcome.ambiguity_reason == AmbiguityReason.COMMAND_SELECTION_COLLISION
        assert [o.id for o in outcome.pool] == ["rf", "rn", "cmd:recent"]

    def test_capability_only_after_lists(self, chat_gs):
        outcome = resolve(chat_gs, _cls("open settings", chat_gs), target=chat_gs.groups[0])
        assert outcome.winner.id == "cmd:settings"
        assert outcome.winner_group.source_type == SourceType.CAPABILITY

    def test_scoped_never_leaves_target(self, chat_gs):
        outcome = resolve(chat_gs, _cls("settings", chat_gs), target=chat_gs.groups[0], scoped=True)
        assert outcome.winner is None
        assert outcome.ambiguity_reason == AmbiguityReason.NO_CANDIDATE

    def test_no_candidate(self, chat_gs):
        outcome = resolve(chat_gs, _cls("quarterly forecast", chat_gs), target=chat_gs.groups[0])
        assert outcome.ambiguity_reason == AmbiguityReason.NO_CANDIDATE
        assert outcome.pool == chat_gs.groups[0].candidates


# ============================================================================
# TARGET GROUP
# ============================================================================

class TestSelectTargetGroup:
    """Which group ordinals and badges bind to."""

    def test_active_chat_by_default(self, chat_gs):
        target = select_target_group(chat_gs, _cls("second one", chat_gs))
        assert target.source_type == SourceType.CHAT_ACTIVE

    def test_latch_beats_active_chat(self):
        widget = _widget("w_recent", CandidateOption("r1", "Alpha"), title="Recent")
        grounding = _gs(_chat(D, E), widget)
        target = select_target_group(grounding, _cls("second one", grounding), resolved("w_recent"))
        assert target is widget

    def test_named_widget_cue(self):
        recent = _widget("w_recent", CandidateOption("r1", "Alpha"), title="Recent")
        links = _widget("w_links", CandidateOption("l1", "Docs"), title="Links")
        grounding = _gs(_chat(D, E), recent, links)
        target = select_target_group(grounding, _cls("first one in the Links panel", grounding))
        assert target is links

    def test_chat_cue_beats_latch(self):
        chat = _chat(D, E)
        grounding = _gs(chat, _widget("w_recent", CandidateOption("r1", "Alpha"), title="Recent"))
        target = select_target_group(grounding, _cls("second one from chat", grounding), resolved("w_recent"))
        assert target is chat

    def test_return_cue_prefers_paused(self):
        paused = _chat(D, E, group_id="opts_0", source=SourceType.CHAT_PAUSED)
        grounding = _gs(_chat(W), paused)
        target = select_target_group(grounding, _cls("back to options", grounding))
        assert target is paused

    def test_clarification_group(self, chat_gs):
        other = _widget("w_recent", CandidateOption("r1", "Alpha"))
        grounding = _gs(_chat(D, E), other)
        target = select_target_group(grounding, _cls("first one", grounding), clarification_group_id="w_recent")
        assert target is other

    def test_sole_widget(self):
        widget = _widget("w_recent", CandidateOption("r1", "Alpha"))
        grounding = _gs(widget)
        assert select_target_group(grounding, _cls("first one", grounding)) is widget

    def test_no_target_for_two_widgets(self):
        grounding = _gs(_widget("w1", D), _widget("w2", E))
        assert select_target_group(grounding, _cls("first one", grounding)) is None

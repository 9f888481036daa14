"""
Tests for deterministic input classification.

Covers kind precedence, ordinals (incl. typo repair), badges, scope cues
and label-match counting.

Run with: python -m pytest tests/test_input_classifier.py -v
"""

import pytest

from chatnav.core.input_classifier import (
    LAST_ORDINAL,
    OTHER_ORDINAL,
    ClassifierContext,
    InputKind,
    classify,
    count_label_matches,
    extract_ordinal,
    is_affirmation,
    is_ambiguous_exit,
    is_keep_choosing,
    normalize_ordinal_typos,
    resolve_ordinal,
    resolve_scope_cue,
)

LABELS = ["Links Panel D", "Links Panel E", "Weekly notes"]


@pytest.fixture
def ctx():
    return ClassifierContext(option_labels=list(LABELS))


# ============================================================================
# KIND PRECEDENCE
# ============================================================================

class TestKinds:
    """First matching check decides the kind."""

    def test_ordinal_selection(self, ctx):
        result = classify("the second one", ctx)
        assert result.kind == InputKind.SELECTION
        assert result.ordinal_index == 1

    def test_bare_number_is_selection_not_noise(self, ctx):
        result = classify("2", ctx)
        assert result.kind == InputKind.SELECTION
        assert result.ordinal_index == 1

    def test_label_selection(self, ctx):
        result = classify("panel", ctx)
        assert result.kind == InputKind.SELECTION
        assert result.label_match_count == 2

    @pytest.mark.parametrize("text", ["cancel", "nevermind", "stop", "forget it", "start over"])
    def test_exit(self, text):
        assert classify(text).kind == InputKind.EXIT

    @pytest.mark.parametrize("text,ambiguous", [
        ("stop", True),
        ("never mind", True),
        ("forget it", True),
        ("cancel", False),
        ("quit", False),
        ("lets start over", False),
    ])
    def test_exit_strength(self, text, ambiguous):
        assert is_ambiguous_exit(classify(text).normalized) is ambiguous

    @pytest.mark.parametrize("text", ["yes", "Yes please", "ok", "go ahead", "sure"])
    def test_affirmation(self, text):
        assert is_affirmation(text)
        assert not is_keep_choosing(text)

    @pytest.mark.parametrize("text", ["no", "Nope.", "keep choosing", "continue"])
    def test_keep_choosing(self, text):
        assert is_keep_choosing(text)
        assert not is_affirmation(text)

    @pytest.mark.parametrize("text", ["none of these", "neither", "something else"])
    def test_list_rejection(self, text):
        assert classify(text).kind == InputKind.LIST_REJECTION

    @pytest.mark.parametrize("text", ["not that one", "wrong one", "no, I meant the other"])
    def test_repair(self, text):
        assert classify(text).kind == InputKind.REPAIR

    @pytest.mark.parametrize("text", ["hmm", "um", "not sure", "let me think", "hold on"])
    def test_hesitation(self, text):
        assert classify(text).kind == InputKind.HESITATION

    def test_command_by_verb(self):
        result = classify("open recent")
        assert result.kind == InputKind.COMMAND
        assert result.is_command_like

    def test_single_word_known_command(self):
        assert classify("settings").kind == InputKind.COMMAND

    def test_question(self):
        result = classify("what is this?")
        assert result.kind == InputKind.QUESTION
        assert result.has_question_intent


class TestNoise:
    """Unclassifiable input is noise, never a selection."""

    def test_empty(self):
        result = classify("???")
        assert result.kind == InputKind.NOISE
        assert result.noise_reason == "empty"

    def test_low_alpha_ratio(self):
        assert classify("#### ab1 %%").noise_reason == "low_alpha_ratio"

    def test_short_token(self):
        assert classify("zz").noise_reason == "short_token"

    def test_no_vowel(self):
        assert classify("xkcd").noise_reason == "no_vowel"

    def test_unclassified_is_noise(self, ctx):
        result = classify("asdfgh", ctx)
        assert result.kind == InputKind.NOISE
        assert result.noise_reason == "unclassified"
        assert not result.is_selection_like

    def test_badge_letter_without_badges_is_noise(self):
        assert classify("d").kind == InputKind.NOISE

    def test_badge_letter_with_badges_is_selection(self):
        result = classify("d", ClassifierContext(badges_visible=True))
        assert result.kind == InputKind.SELECTION
        assert result.badge == "d"


# ============================================================================
# ORDINALS
# ============================================================================

class TestOrdinals:
    """Ordinal extraction and mapping onto a list."""

    def test_typo_repair(self):
        assert normalize_ordinal_typos("ffirst") == "first"
        assert normalize_ordinal_typos("secondoption") == "second option"
        assert normalize_ordinal_typos("sedond") == "second"
        assert normalize_ordinal_typos("thrid") == "third"

    def test_positional_words(self):
        assert extract_ordinal("the last one") == LAST_ORDINAL
        assert extract_ordinal("bottom") == LAST_ORDINAL
        assert extract_ordinal("top one") == 0
        assert extract_ordinal("the other one") == OTHER_ORDINAL

    def test_option_number(self):
        assert extract_ordinal("option 3") == 2
        assert extract_ordinal("number two") == 1

    def test_large_numbers_are_not_selections(self):
        assert extract_ordinal("open workspace 2024 notes") is None

    def test_resolve_ordinal(self):
        assert resolve_ordinal(LAST_ORDINAL, 3) == 2
        assert resolve_ordinal(OTHER_ORDINAL, 2) == 1
        assert resolve_ordinal(OTHER_ORDINAL, 3) is None
        assert resolve_ordinal(4, 3) is None
        assert resolve_ordinal(0, 0) is None


# ============================================================================
# SCOPE CUES
# ============================================================================

class TestScopeCues:
    """Explicit source naming."""

    def test_chat_cue(self, ctx):
        result = classify("second one from chat", ctx)
        assert result.kind == InputKind.SELECTION
        assert result.scope_cue.scope == "chat"
        assert result.remainder == "second one"
        assert result.ordinal_index == 1

    def test_named_widget_cue(self):
        cue = resolve_scope_cue("the first one in the Recent panel", ["Recent", "Links Panels"])
        assert cue.scope == "widget"
        assert cue.named_target_hint == "Recent"
        assert cue.confidence == "high"

    def test_generic_widget_cue(self):
        cue = resolve_scope_cue("first one from the widget")
        assert cue.scope == "widget"
        assert cue.named_target_hint is None

    def test_chat_wins_over_widget(self):
        assert resolve_scope_cue("from chat in the panel").scope == "chat"

    def test_return_cue(self):
        result = classify("back to options")
        assert result.is_return_cue
        assert result.scope_cue.scope == "chat"
        assert result.remainder == ""
        assert result.kind == InputKind.SCOPE_CUE

    def test_no_cue(self):
        assert not resolve_scope_cue("the second one").is_present


class TestLabelMatches:
    """Token-subset and typo-tolerant label counting."""

    def test_exact_subset(self):
        assert count_label_matches("panel", LABELS) == (2, False)

    def test_unique_subset(self):
        assert count_label_matches("open panel d", LABELS) == (1, False)

    def test_fuzzy_fallback(self):
        assert count_label_matches("linkz panle", LABELS) == (2, True)

    def test_no_labels(self):
        assert count_label_matches("panel", []) == (0, False)

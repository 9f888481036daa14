"""
Tests for clarifier construction and the escalation ladder.

Run with: python -m pytest tests/test_clarifier.py -v
"""

from chatnav.context.candidates import CandidateGroup, CandidateOption, SourceType
from chatnav.policy.clarifier import (
    EXIT_NONE_ID,
    EXIT_START_OVER_ID,
    build_clarifier,
    build_list_question,
    exit_options,
    loading_message,
    order_pool,
    question_for_attempt,
    without_exits,
)

D = CandidateOption("panel_d", "Links Panel D")
E = CandidateOption("panel_e", "Links Panel E")
POOL = [D, E]


class TestLadder:
    """Question text per attempt."""

    def test_first_attempt_by_reason(self):
        assert question_for_attempt(1) == "Which one do you mean?"
        assert question_for_attempt(1, "typo_ambiguous") == "Did you mean one of these?"

    def test_second_attempt_narrows(self):
        assert "number or the name" in question_for_attempt(2, "typo_ambiguous")

    def test_exits_only_from_third_attempt(self):
        second = build_clarifier(POOL, "clar_1", attempt_number=2)
        third = build_clarifier(POOL, "clar_1", attempt_number=3)
        assert EXIT_NONE_ID not in second.choice_ids
        assert third.choice_ids == ["panel_d", "panel_e", EXIT_NONE_ID, EXIT_START_OVER_ID]

    def test_exits_in_pool_not_repeated(self):
        pool = POOL + exit_options()
        third = build_clarifier(pool, "clar_1", attempt_number=3)
        first = build_clarifier(pool, "clar_1", attempt_number=1)
        assert third.choice_ids == ["panel_d", "panel_e", EXIT_NONE_ID, EXIT_START_OVER_ID]
        assert first.choice_ids == ["panel_d", "panel_e"]

    def test_exit_options_are_selectable(self):
        options = exit_options()
        assert [o.id for o in options] == [EXIT_NONE_ID, EXIT_START_OVER_ID]
        assert [o.label for o in options] == ["None of these", "Start over"]
        assert without_exits(POOL + options) == POOL


class TestBuildClarifier:

    def test_choices_come_from_pool(self):
        output = build_clarifier(POOL, "clar_1")
        assert output.choice_ids == ["panel_d", "panel_e"]
        assert output.session_id == "clar_1"
        assert output.attempt_number == 1

    def test_suggestion_order(self):
        output = build_clarifier(POOL, "clar_1", suggestion_order=["panel_e", "unknown"])
        assert output.choice_ids == ["panel_e", "panel_d"]

    def test_order_pool_without_suggestion(self):
        assert order_pool(POOL, None) == POOL

    def test_duplicate_labels_show_source(self):
        a = CandidateOption("a", "Budget", source_tag="chat")
        b = CandidateOption("b", "Budget", source_tag="w_recent")
        labels = [c.label for c in build_clarifier([a, b], "clar_1").choices]
        assert labels == ["Budget (chat)", "Budget (w_recent)"]

    def test_explicit_question(self):
        assert build_clarifier(POOL, "clar_1", question="Pick one:").question == "Pick one:"

    def test_to_dict_shape(self):
        data = build_clarifier(POOL, "clar_1").to_dict()
        assert set(data) == {"question", "choices", "sessionId", "attemptNumber"}
        assert data["choices"][0] == {"id": "panel_d", "label": "Links Panel D"}

    def test_render(self):
        text = build_clarifier(POOL, "clar_1").render()
        assert text.splitlines() == ["Which one do you mean?", "  1. Links Panel D", "  2. Links Panel E"]


class TestListQuestion:

    def test_one_choice_per_list(self):
        groups = [
            CandidateGroup(SourceType.WIDGET_LIST, [D], "w_recent", title="Recent", widget_id="w_recent"),
            CandidateGroup(SourceType.WIDGET_LIST, [E], "w_links", title="Links", widget_id="w_links"),
        ]
        output = build_list_question(groups, "clar_2")
        assert output.kind == "list_choice"
        assert output.question == "Which list do you mean?"
        assert output.choice_ids == ["widget:w_recent", "widget:w_links"]
        assert [c.label for c in output.choices] == ["Recent", "Links"]

    def test_loading_message(self):
        assert loading_message("Links Panels") == "Links Panels is still loading, try again in a moment."
        assert loading_message(None).startswith("That panel")

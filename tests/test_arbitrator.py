"""
Tests for constrained model arbitration.

The model client is always faked; no network.

Run with: python -m pytest tests/test_arbitrator.py -v
"""

import threading

import pytest
from unittest.mock import MagicMock

from chatnav.brain.arbitrator import (
    ConstrainedArbitrator,
    VerdictKind,
    build_prompt,
    build_request,
    validate_reply,
)
from chatnav.context.candidates import CandidateOption

POOL = [
    CandidateOption("panel_d", "Links Panel D"),
    CandidateOption("panel_e", "Links Panel E", source_tag="w_links"),
]
POOL_IDS = [c.id for c in POOL]


def _client(reply=None, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.generate_json.side_effect = side_effect
    else:
        client.generate_json.return_value = reply
    return client


def _arbitrator(client, **kwargs):
    kwargs.setdefault("timeout_ms", 500)
    kwargs.setdefault("min_confidence", 0.6)
    return ConstrainedArbitrator(client=client, model="test-model", enabled=True, **kwargs)


# ============================================================================
# REQUEST / PROMPT
# ============================================================================

class TestRequest:

    def test_request_shape(self):
        request = build_request("panel", POOL)
        assert request == {
            "userText": "panel",
            "candidates": [
                {"id": "panel_d", "label": "Links Panel D"},
                {"id": "panel_e", "label": "Links Panel E", "hint": "w_links"},
            ],
        }

    def test_prompt_lists_only_pool(self):
        prompt = build_prompt(build_request("panel", POOL))
        assert 'ID="panel_d"' in prompt
        assert 'ID="panel_e"' in prompt
        assert "need_more_info" in prompt


# ============================================================================
# REPLY VALIDATION
# ============================================================================

class TestValidateReply:
    """Every invalid shape is an abstain."""

    def test_select(self):
        verdict = validate_reply({"decision": "select", "choiceId": "panel_e", "confidence": 0.9}, POOL_IDS, 0.6)
        assert verdict.kind == VerdictKind.SELECT
        assert verdict.choice_id == "panel_e"
        assert verdict.suggestion_order == ["panel_e", "panel_d"]

    def test_need_more_info(self):
        assert validate_reply({"decision": "need_more_info"}, POOL_IDS).kind == VerdictKind.NEED_MORE_INFO

    def test_out_of_pool(self):
        verdict = validate_reply({"decision": "select", "choiceId": "cmd:home", "confidence": 0.99}, POOL_IDS)
        assert verdict.kind == VerdictKind.ABSTAIN
        assert verdict.reason == "out_of_pool"

    def test_low_confidence(self):
        verdict = validate_reply({"decision": "select", "choiceId": "panel_d", "confidence": 0.3}, POOL_IDS, 0.6)
        assert verdict.reason == "low_confidence"

    @pytest.mark.parametrize("reply", [
        "panel_d",
        None,
        {"decision": "maybe"},
        {"decision": "select", "choiceId": "panel_d"},
        {"decision": "select", "choiceId": "panel_d", "confidence": "high"},
        {"decision": "select", "choiceId": "panel_d", "confidence": True},
        {"decision": "select", "choiceId": "panel_d", "confidence": 1.5},
    ])
    def test_malformed(self, reply):
        verdict = validate_reply(reply, POOL_IDS)
        assert verdict.kind == VerdictKind.ABSTAIN
        assert verdict.reason == "malformed"

    def test_extra_fields_ignored(self):
        reply = {"decision": "select", "choiceId": "panel_d", "confidence": 0.8, "action": "delete_everything"}
        verdict = validate_reply(reply, POOL_IDS, 0.6)
        assert verdict.kind == VerdictKind.SELECT
        assert "action" not in verdict.to_dict()


# ============================================================================
# ARBITRATE
# ============================================================================

class TestArbitrate:
    """Time box, failure mapping and loop guard."""

    def test_select_from_model(self):
        client = _client({"decision": "select", "choiceId": "panel_d", "confidence": 0.8})
        verdict = _arbitrator(client).arbitrate("panel", POOL, group_id="opts_1")
        assert verdict.kind == VerdictKind.SELECT
        assert verdict.choice_id == "panel_d"
        prompt, model, options, timeout = client.generate_json.call_args[0]
        assert model == "test-model"
        assert timeout == pytest.approx(0.5)

    def test_disabled_never_calls(self):
        client = _client({"decision": "need_more_info"})
        arbitrator = ConstrainedArbitrator(client=client, enabled=False)
        verdict = arbitrator.arbitrate("panel", POOL)
        assert verdict.reason == "disabled"
        client.generate_json.assert_not_called()

    def test_empty_pool(self):
        client = _client({"decision": "need_more_info"})
        assert _arbitrator(client).arbitrate("panel", []).reason == "empty_pool"
        client.generate_json.assert_not_called()

    def test_timeout_is_abstain(self):
        release = threading.Event()

        def slow(*args, **kwargs):
            release.wait(2)
            return {"decision": "select", "choiceId": "panel_d", "confidence": 0.9}

        arbitrator = _arbitrator(_client(side_effect=slow), timeout_ms=50)
        try:
            verdict = arbitrator.arbitrate("linkz panle", POOL)
        finally:
            release.set()
        assert verdict.kind == VerdictKind.ABSTAIN
        assert verdict.reason == "timeout"
        assert verdict.latency_ms < 1000

    def test_transport_error(self):
        verdict = _arbitrator(_client(side_effect=ConnectionError("down"))).arbitrate("panel", POOL)
        assert verdict.reason == "transport"

    def test_bad_reply_error(self):
        verdict = _arbitrator(_client(side_effect=ValueError("not json"))).arbitrate("panel", POOL)
        assert verdict.reason == "malformed"

    def test_unexpected_error_is_abstain(self):
        verdict = _arbitrator(_client(side_effect=RuntimeError("boom"))).arbitrate("panel", POOL)
        assert verdict.kind == VerdictKind.ABSTAIN

    def test_loop_guard_same_cycle(self):
        client = _client({"decision": "need_more_info"})
        arbitrator = _arbitrator(client)
        first = arbitrator.arbitrate("Panel!", POOL, group_id="opts_1")
        second = arbitrator.arbitrate("panel", list(reversed(POOL)), group_id="opts_1")
        assert client.generate_json.call_count == 1
        assert arbitrator.calls == 1
        assert not first.from_cache
        assert second.from_cache
        assert second.kind == first.kind

    def test_loop_guard_keyed_by_group(self):
        client = _client({"decision": "need_more_info"})
        arbitrator = _arbitrator(client)
        arbitrator.arbitrate("panel", POOL, group_id="opts_1")
        arbitrator.arbitrate("panel", POOL, group_id="opts_2")
        assert client.generate_json.call_count == 2

    def test_reset_cycle_allows_new_call(self):
        client = _client({"decision": "need_more_info"})
        arbitrator = _arbitrator(client)
        arbitrator.arbitrate("panel", POOL)
        arbitrator.reset_cycle()
        arbitrator.arbitrate("panel", POOL)
        assert client.generate_json.call_count == 2

    def test_executor_reused_across_calls(self):
        client = _client({"decision": "need_more_info"})
        arbitrator = _arbitrator(client)
        arbitrator.arbitrate("panel", POOL)
        executor = arbitrator._executor
        arbitrator.arbitrate("links", POOL)

        assert executor is not None
        assert arbitrator._executor is executor
        assert client.generate_json.call_count == 2

    def test_close_releases_executor(self):
        arbitrator = _arbitrator(_client({"decision": "need_more_info"}))
        arbitrator.arbitrate("panel", POOL)
        arbitrator.close()
        assert arbitrator._executor is None

        # A later call starts a fresh pool
        assert arbitrator.arbitrate("links", POOL).kind == VerdictKind.NEED_MORE_INFO
        arbitrator.close()

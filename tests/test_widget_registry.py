"""
Tests for the widget snapshot registry.

Run with: python -m pytest tests/test_widget_registry.py -v
"""

import pytest

from chatnav.widgets.registry import (
    ContextSegment,
    ListSegment,
    RegistryUnavailableError,
    validate_snapshot,
)


class TestValidation:
    """Payload validation at the registration boundary."""

    def test_valid_payload(self, make_widget):
        snapshot, reason = validate_snapshot("w_recent", make_widget("Recent", [("r1", "Alpha"), ("r2", "Beta")]))
        assert reason == ""
        assert snapshot.title == "Recent"
        assert [i.item_id for i in snapshot.items] == ["r1", "r2"]
        assert isinstance(snapshot.segments[0], ListSegment)
        assert isinstance(snapshot.segments[1], ContextSegment)

    def test_schema_version_mismatch(self, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha")])
        payload["_version"] = 99
        snapshot, reason = validate_snapshot("w_recent", payload)
        assert snapshot is None
        assert reason.startswith("schema_version_mismatch")

    def test_missing_version_rejected(self, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha")])
        del payload["_version"]
        assert validate_snapshot("w_recent", payload)[0] is None

    def test_missing_title(self, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha")])
        payload["title"] = ""
        assert validate_snapshot("w_recent", payload) == (None, "missing_title")

    def test_not_a_mapping(self):
        assert validate_snapshot("w_recent", ["nope"]) == (None, "not_a_mapping")

    def test_bad_items_dropped(self, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha"), ("r2", "Beta")])
        items = payload["segments"][0]["items"]
        items.append({"itemId": "r3", "label": "No actions", "actions": []})
        items.append({"itemId": "r1", "label": "Duplicate", "actions": ["open"]})
        items.append("garbage")
        snapshot, _ = validate_snapshot("w_recent", payload)
        assert [i.item_id for i in snapshot.items] == ["r1", "r2"]

    def test_unknown_segment_type_dropped(self, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha")])
        payload["segments"].append({"segmentId": "chart", "segmentType": "chart"})
        snapshot, _ = validate_snapshot("w_recent", payload)
        assert len(snapshot.segments) == 2

    def test_badges_visible_requires_enabled_segment(self, make_widget):
        with_badges, _ = validate_snapshot("w1", make_widget("Recent", [("r1", "Alpha")], badges=True))
        without, _ = validate_snapshot("w2", make_widget("Recent", [("r1", "Alpha")], badges=False))
        assert with_badges.badges_visible
        assert not without.badges_visible


class TestRegistry:
    """Keyed store semantics."""

    def test_register_and_snapshot(self, registry, make_widget):
        assert registry.register("w_recent", make_widget("Recent", [("r1", "Alpha")]))
        snap = registry.snapshot()
        assert list(snap) == ["w_recent"]

    def test_rejected_payload_not_stored(self, registry, make_widget):
        payload = make_widget("Recent", [("r1", "Alpha")])
        payload["_version"] = 0
        assert registry.register("w_recent", payload) is False
        assert registry.snapshot() == {}

    def test_last_writer_wins(self, registry, make_widget):
        registry.register("w_recent", make_widget("Recent", [("r1", "Alpha")]))
        registry.register("w_recent", make_widget("Recent items", [("r9", "Omega")]))
        assert registry.get("w_recent").title == "Recent items"
        assert [i.item_id for i in registry.get("w_recent").items] == ["r9"]

    def test_unregister(self, registry, make_widget):
        registry.register("w_recent", make_widget("Recent", [("r1", "Alpha")]))
        registry.unregister("w_recent")
        registry.unregister("w_missing")
        assert registry.get("w_recent") is None

    def test_overlong_id_rejected_not_truncated(self, registry, make_widget):
        long_id = "w_" + "x" * 200
        assert registry.register(long_id, make_widget("Recent", [("r1", "Alpha")])) is False
        assert registry.snapshot() == {}

    def test_unregister_matches_registered_key(self, registry, make_widget):
        widget_id = "w_" + "x" * 118
        assert registry.register(widget_id, make_widget("Recent", [("r1", "Alpha")])) is True
        registry.unregister(widget_id)
        assert registry.snapshot() == {}

    def test_snapshot_is_a_copy(self, registry, make_widget):
        registry.register("w_recent", make_widget("Recent", [("r1", "Alpha")]))
        snap = registry.snapshot()
        snap.clear()
        assert "w_recent" in registry.snapshot()

    def test_unavailable(self, registry, make_widget):
        registry.register("w_recent", make_widget("Recent", [("r1", "Alpha")]))
        registry.set_available(False)
        with pytest.raises(RegistryUnavailableError):
            registry.snapshot()
        registry.set_available(True)
        assert "w_recent" in registry.snapshot()

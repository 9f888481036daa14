"""
Shared fixtures for the chatnav test suite.

Run with: python -m pytest tests -v
"""

import itertools
import time

import pytest

from chatnav.core.config import Config
from chatnav.core.logger import init_logger
from chatnav.widgets.registry import WidgetSnapshotRegistry

_clock = itertools.count(1)


@pytest.fixture(autouse=True)
def quiet_logger():
    """Keep test output readable; routing internals only on failure."""
    init_logger("ERROR")
    yield


@pytest.fixture
def make_widget():
    """
    Factory for raw widget registration payloads.

    make_widget("Recent", [("r1", "Alpha"), ("r2", "Beta")], badges=True)
    """
    def _make(title, items, visible=True, badges=False, registered_at=None, actions=("open",)):
        return {
            "_version": Config.WIDGET_SCHEMA_VERSION,
            "title": title,
            "isVisible": visible,
            "registeredAt": registered_at if registered_at is not None else time.time() + next(_clock),
            "segments": [
                {
                    "segmentId": f"{title.lower()}_list",
                    "segmentType": "list",
                    "listLabel": title,
                    "badgesEnabled": badges,
                    "items": [
                        {
                            "itemId": item_id,
                            "label": label,
                            "actions": list(actions),
                            "badge": chr(ord("a") + i),
                            "badgeVisible": badges,
                        }
                        for i, (item_id, label) in enumerate(items)
                    ],
                },
                {
                    "segmentId": f"{title.lower()}_ctx",
                    "segmentType": "context",
                    "summary": f"{title} widget",
                    "currentView": "list",
                },
            ],
        }
    return _make


@pytest.fixture
def registry():
    return WidgetSnapshotRegistry()

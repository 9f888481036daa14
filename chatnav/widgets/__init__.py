"""chatnav.widgets

Widget UI snapshot registry.

Widgets publish selectable-item snapshots here; the arbitration core pulls
one copy per turn and never writes.
"""

from chatnav.widgets.registry import (
    ContextSegment,
    ListItem,
    ListSegment,
    RegistryUnavailableError,
    WidgetSnapshot,
    WidgetSnapshotRegistry,
)

__all__ = [
    "ContextSegment",
    "ListItem",
    "ListSegment",
    "RegistryUnavailableError",
    "WidgetSnapshot",
    "WidgetSnapshotRegistry",
]

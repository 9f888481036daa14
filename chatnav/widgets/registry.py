"""chatnav.widgets.registry

In-memory store where widgets self-register structured snapshots with typed
segments (list + context). The grounding-set builder reads a frozen copy
once per turn.

HARD RULES:
- Last-writer-wins keyed store; no locking is exposed to readers.
- Written only by widgets (register/unregister), read-only for the core.
- Payloads without the current schema version tag are rejected.
- Runtime-only, never persisted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from chatnav.core.config import Config
from chatnav.core.logger import get_logger

# Validation limits
MAX_STRING_LENGTH = 120
MAX_SUMMARY_LENGTH = 200
MAX_LIST_ITEMS = 20
MAX_SEGMENTS = 10
MAX_ACTIONS = 10


class RegistryUnavailableError(RuntimeError):
    """Raised by snapshot() when the registry cannot be read."""


@dataclass(frozen=True)
class ListItem:
    item_id: str
    label: str
    actions: Tuple[str, ...]
    badge: Optional[str] = None
    badge_visible: bool = False


@dataclass(frozen=True)
class ListSegment:
    segment_id: str
    list_label: str
    items: Tuple[ListItem, ...]
    badges_enabled: bool = False
    focus_item_id: Optional[str] = None
    segment_type: str = "list"


@dataclass(frozen=True)
class ContextSegment:
    segment_id: str
    summary: str
    current_view: str
    focus_text: Optional[str] = None
    segment_type: str = "context"


Segment = Union[ListSegment, ContextSegment]


@dataclass(frozen=True)
class WidgetSnapshot:
    """
    Validated widget snapshot.

    Fields:
        widget_id: Unique widget key (e.g., "w_recent")
        title: Human-readable title (e.g., "Recent")
        is_visible: Whether the widget is currently on screen
        segments: List and context segments
        registered_at: Unix timestamp when registered
    """
    widget_id: str
    title: str
    is_visible: bool
    segments: Tuple[Segment, ...] = field(default_factory=tuple)
    registered_at: float = field(default_factory=time.time)

    @property
    def list_segments(self) -> List[ListSegment]:
        return [s for s in self.segments if isinstance(s, ListSegment)]

    @property
    def items(self) -> List[ListItem]:
        return [item for seg in self.list_segments for item in seg.items]

    @property
    def badges_visible(self) -> bool:
        for seg in self.list_segments:
            if seg.badges_enabled and any(i.badge and i.badge_visible for i in seg.items):
                return True
        return False


# ============================================================================
# VALIDATION
# ============================================================================

def _truncate(value: str, limit: int) -> str:
    return value if len(value) <= limit else value[:limit]


def _validate_item(raw: Any) -> Optional[ListItem]:
    if not isinstance(raw, Mapping):
        return None
    item_id = raw.get("itemId")
    label = raw.get("label")
    actions = raw.get("actions")
    if not isinstance(item_id, str) or not item_id:
        return None
    if not isinstance(label, str) or not label:
        return None
    if not isinstance(actions, (list, tuple)):
        return None

    clean_actions = tuple(a for a in list(actions)[:MAX_ACTIONS] if isinstance(a, str) and a)
    if not clean_actions:
        return None

    badge = raw.get("badge")
    return ListItem(
        item_id=item_id,
        label=_truncate(label, MAX_STRING_LENGTH),
        actions=clean_actions,
        badge=badge[:1] if isinstance(badge, str) and badge else None,
        badge_visible=raw.get("badgeVisible") is True,
    )


def _validate_segment(raw: Any) -> Optional[Segment]:
    if not isinstance(raw, Mapping):
        return None
    segment_id = raw.get("segmentId")
    if not isinstance(segment_id, str) or not segment_id:
        return None

    segment_type = raw.get("segmentType")
    if segment_type == "list":
        raw_items = raw.get("items")
        if not isinstance(raw_items, (list, tuple)):
            return None
        items: List[ListItem] = []
        seen = set()
        for raw_item in list(raw_items)[:MAX_LIST_ITEMS]:
            item = _validate_item(raw_item)
            if item and item.item_id not in seen:
                seen.add(item.item_id)
                items.append(item)
        list_label = raw.get("listLabel")
        focus = raw.get("focusItemId")
        return ListSegment(
            segment_id=segment_id,
            list_label=_truncate(list_label, MAX_STRING_LENGTH) if isinstance(list_label, str) else "",
            items=tuple(items),
            badges_enabled=raw.get("badgesEnabled") is True,
            focus_item_id=focus if isinstance(focus, str) and focus in seen else None,
        )

    if segment_type == "context":
        summary = raw.get("summary")
        view = raw.get("currentView")
        if not isinstance(summary, str) or not isinstance(view, str):
            return None
        focus_text = raw.get("focusText")
        return ContextSegment(
            segment_id=segment_id,
            summary=_truncate(summary, MAX_SUMMARY_LENGTH),
            current_view=_truncate(view, MAX_STRING_LENGTH),
            focus_text=_truncate(focus_text, MAX_STRING_LENGTH) if isinstance(focus_text, str) else None,
        )

    # Unknown segment type
    return None


def validate_snapshot(widget_id: str, payload: Any) -> Tuple[Optional[WidgetSnapshot], str]:
    """
    Validate a raw registration payload.

    Args:
        widget_id: Registering widget key
        payload: Raw snapshot mapping (camelCase keys, `_version` tag)

    Returns:
        (snapshot, "") on success, (None, reason) on rejection
    """
    if not isinstance(widget_id, str) or not widget_id:
        return None, "missing_widget_id"
    if len(widget_id) > MAX_STRING_LENGTH:
        # Ids are keys; truncating could make two widgets collide
        return None, "widget_id_too_long"
    if not isinstance(payload, Mapping):
        return None, "not_a_mapping"
    if payload.get("_version") != Config.WIDGET_SCHEMA_VERSION:
        return None, f"schema_version_mismatch({payload.get('_version')!r})"

    title = payload.get("title")
    if not isinstance(title, str) or not title:
        return None, "missing_title"
    if not isinstance(payload.get("isVisible"), bool):
        return None, "missing_is_visible"
    raw_segments = payload.get("segments")
    if not isinstance(raw_segments, (list, tuple)):
        return None, "missing_segments"
    registered_at = payload.get("registeredAt")
    if not isinstance(registered_at, (int, float)) or isinstance(registered_at, bool):
        return None, "missing_registered_at"

    segments = []
    for raw_segment in list(raw_segments)[:MAX_SEGMENTS]:
        segment = _validate_segment(raw_segment)
        if segment is not None:
            segments.append(segment)

    return WidgetSnapshot(
        widget_id=widget_id,
        title=_truncate(title, MAX_STRING_LENGTH),
        is_visible=payload["isVisible"],
        segments=tuple(segments),
        registered_at=float(registered_at),
    ), ""


# ============================================================================
# REGISTRY
# ============================================================================

class WidgetSnapshotRegistry:
    """Last-writer-wins store of widget snapshots."""

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshots: Dict[str, WidgetSnapshot] = {}
        self._available = True
        self.logger = get_logger()

    def register(self, widget_id: str, payload: Mapping[str, Any]) -> bool:
        """
        Register (or replace) a widget snapshot.

        Returns:
            True if accepted, False if the payload was rejected
        """
        snapshot, reason = validate_snapshot(widget_id, payload)
        if snapshot is None:
            self.logger.warning(f"[REGISTRY] rejected widget={widget_id!r} reason={reason}")
            return False

        with self._lock:
            self._snapshots[snapshot.widget_id] = snapshot
        self.logger.debug(
            f"[REGISTRY] registered widget={snapshot.widget_id} visible={snapshot.is_visible} "
            f"items={len(snapshot.items)}"
        )
        return True

    def unregister(self, widget_id: str) -> None:
        with self._lock:
            removed = self._snapshots.pop(widget_id, None)
        if removed is not None:
            self.logger.debug(f"[REGISTRY] unregistered widget={widget_id}")

    def snapshot(self) -> Dict[str, WidgetSnapshot]:
        """
        Return a point-in-time copy of all snapshots.

        Raises:
            RegistryUnavailableError: If the registry is offline
        """
        with self._lock:
            if not self._available:
                raise RegistryUnavailableError("widget registry is offline")
            return dict(self._snapshots)

    def get(self, widget_id: str) -> Optional[WidgetSnapshot]:
        with self._lock:
            return self._snapshots.get(widget_id)

    def set_available(self, available: bool) -> None:
        """Mark the registry reachable/unreachable (host shutdown, tests)."""
        with self._lock:
            self._available = available

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

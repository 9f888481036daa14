"""chatnav.policy.telemetry

Fire-and-forget routing telemetry.

One event per tier transition, per arbitration attempt and per focus-latch
change, carrying the winning tier, the ambiguity reason if any, and the
model latency when the arbitrator was invoked.

HARD RULES:
- Telemetry failure never affects routing outcomes
- In-memory history is bounded (last MAX_HISTORY_SIZE events)
- Logs only; nothing user-visible
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from chatnav.core.logger import get_logger

MAX_HISTORY_SIZE = 200


class TelemetryEventType(Enum):
    TIER_TRANSITION = "tier_transition"
    ARBITRATION_ATTEMPT = "arbitration_attempt"
    LATCH_CHANGE = "latch_change"


@dataclass
class RoutingEvent:
    """
    Structured routing event.

    Fields:
        event_type: What happened
        conversation_id: Owning conversation
        turn: Turn number the event belongs to
        tier: Winning tier (tier transitions) or the tier that invoked the model
        ambiguity_reason: Resolver ambiguity reason, if any
        latency_ms: Model latency when the arbitrator was called
        detail: Small extra fields (verdict, latch states, passed tiers)
        timestamp: Unix timestamp
    """
    event_type: TelemetryEventType
    conversation_id: str = ""
    turn: int = 0
    tier: Optional[str] = None
    ambiguity_reason: Optional[str] = None
    latency_ms: int = 0
    detail: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    def to_log_line(self) -> str:
        parts = [f"event={self.event_type.value}", f"turn={self.turn}"]
        if self.tier:
            parts.append(f"tier={self.tier}")
        if self.ambiguity_reason:
            parts.append(f"reason={self.ambiguity_reason}")
        if self.latency_ms > 0:
            parts.append(f"latency_ms={self.latency_ms}")
        for key, value in self.detail.items():
            parts.append(f"{key}={value}")
        return " ".join(parts)


TelemetrySink = Callable[[RoutingEvent], None]


class RoutingTelemetry:
    """Bounded event history plus pluggable sinks."""

    def __init__(self, sinks: Optional[List[TelemetrySink]] = None, max_history: int = MAX_HISTORY_SIZE):
        self.logger = get_logger()
        self._sinks: List[TelemetrySink] = list(sinks or [])
        self._history: Deque[RoutingEvent] = deque(maxlen=max_history)

    def add_sink(self, sink: TelemetrySink) -> None:
        self._sinks.append(sink)

    def emit(self, event: RoutingEvent) -> None:
        """Record and forward an event. Never raises."""
        try:
            self._history.append(event)
            self.logger.info(f"[TELEMETRY] {event.to_log_line()}")
        except Exception as e:
            self.logger.warning(f"[TELEMETRY] failed to record event: {e}")
            return

        for sink in self._sinks:
            try:
                sink(event)
            except Exception as e:
                self.logger.warning(f"[TELEMETRY] sink {getattr(sink, '__name__', sink)!r} failed: {e}")

    @property
    def history(self) -> List[RoutingEvent]:
        return list(self._history)

    def events_of(self, event_type: TelemetryEventType) -> List[RoutingEvent]:
        return [e for e in self._history if e.event_type == event_type]

    def clear(self) -> None:
        self._history.clear()

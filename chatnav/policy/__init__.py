"""chatnav.policy

This package provides:
- The clarifier builder (escalation ladder, which-list questions)
- Routing telemetry (tier transitions, arbitration attempts, latch changes)

HARD RULES:
- Clarifier choices come only from the candidate pool
- Telemetry never affects routing
"""

from chatnav.policy.clarifier import ClarifierChoice, ClarifierOutput, build_clarifier, build_list_question
from chatnav.policy.telemetry import RoutingEvent, RoutingTelemetry, TelemetryEventType

__all__ = [
    "ClarifierChoice",
    "ClarifierOutput",
    "build_clarifier",
    "build_list_question",
    "RoutingEvent",
    "RoutingTelemetry",
    "TelemetryEventType",
]

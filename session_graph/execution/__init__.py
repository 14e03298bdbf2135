"""Execution events and the state machine that applies them."""

from .events import Event, parse_event
from .machine import ExecutionMetrics, ExecutionState, ExecutionStateMachine

__all__ = [
    "Event",
    "parse_event",
    "ExecutionMetrics",
    "ExecutionState",
    "ExecutionStateMachine",
]

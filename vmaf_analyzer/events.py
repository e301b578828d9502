"""Structured event sinks for vmaf_analyzer.

Components never log through a process-wide singleton directly; each one
receives an EventSink and reports what happened as typed events. The default
sink forwards to the standard logging hierarchy under "vmaf_analyzer", and
tests pass a CapturingEventSink to assert on exactly what was reported.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional


class EventType(Enum):
    """Core event types."""
    TOOL_RESOLVED = auto()
    TOOL_NOT_FOUND = auto()
    PROCESS_STARTED = auto()
    PROCESS_FINISHED = auto()
    PROCESS_FAILED = auto()
    PROCESS_CANCELLED = auto()
    PROCESS_LAUNCH_FAILED = auto()
    PROGRESS_UNIT_SKIPPED = auto()
    STATE_CHANGED = auto()
    STAGE_STARTED = auto()
    STAGE_COMPLETED = auto()
    STAGE_FAILED = auto()
    REPORT_PARSED = auto()
    WORKSPACE_CREATED = auto()
    WORKSPACE_REMOVED = auto()
    WORKSPACE_SWEPT = auto()
    CLEANUP_FAILED = auto()


@dataclass
class Event:
    """Event data container.

    Attributes:
        type: Type of event
        source: Component that generated the event
        message: Human readable summary
        data: Event-specific data
        timestamp: When the event occurred
    """
    type: EventType
    source: str
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)


class EventSink(ABC):
    """Interface for receiving pipeline events."""

    @abstractmethod
    def emit(self, event_type: EventType, source: str, message: str, **data: Any) -> None:
        """Record one event.

        Args:
            event_type: Type of event to emit
            source: Component emitting the event
            message: Human readable summary
            **data: Event-specific data
        """


_LEVELS = {
    EventType.PROCESS_STARTED: logging.DEBUG,
    EventType.PROCESS_FINISHED: logging.DEBUG,
    EventType.PROGRESS_UNIT_SKIPPED: logging.DEBUG,
    EventType.TOOL_RESOLVED: logging.DEBUG,
    EventType.WORKSPACE_REMOVED: logging.DEBUG,
    EventType.PROCESS_FAILED: logging.ERROR,
    EventType.PROCESS_LAUNCH_FAILED: logging.ERROR,
    EventType.STAGE_FAILED: logging.ERROR,
    EventType.TOOL_NOT_FOUND: logging.ERROR,
    EventType.CLEANUP_FAILED: logging.WARNING,
    EventType.PROCESS_CANCELLED: logging.WARNING,
}


class LoggingEventSink(EventSink):
    """Forward events to loggers named after their source component."""

    def __init__(self, root: str = "vmaf_analyzer") -> None:
        self.root = root

    def emit(self, event_type: EventType, source: str, message: str, **data: Any) -> None:
        logger = logging.getLogger(f"{self.root}.{source}")
        level = _LEVELS.get(event_type, logging.INFO)
        if data and logger.isEnabledFor(logging.DEBUG):
            logger.log(level, "%s %s", message, data)
        else:
            logger.log(level, "%s", message)


class CapturingEventSink(EventSink):
    """Keep every event in memory, optionally forwarding to another sink."""

    def __init__(self, forward: Optional[EventSink] = None) -> None:
        self.events: List[Event] = []
        self._forward = forward
        self._lock = threading.Lock()

    def emit(self, event_type: EventType, source: str, message: str, **data: Any) -> None:
        with self._lock:
            self.events.append(Event(type=event_type, source=source, message=message, data=data))
        if self._forward is not None:
            self._forward.emit(event_type, source, message, **data)

    def of_type(self, event_type: EventType) -> List[Event]:
        """Return captured events of one type, in emission order."""
        with self._lock:
            return [e for e in self.events if e.type == event_type]

    def get_errors(self) -> List[str]:
        return [e.message for e in self.events if _LEVELS.get(e.type) == logging.ERROR]

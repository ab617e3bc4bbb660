"""
Observability sink passed explicitly into every workflow.

Workflows describe what they did as ``Event`` records and hand them to an
``EventSink``. The default sink forwards to the ``logging`` module; tests pass
a collecting sink instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class Event:
    """A single workflow event."""

    name: str
    fields: Dict[str, Any] = field(default_factory=dict)


class EventSink(Protocol):
    def record(self, event: Event) -> None:
        ...


class LoggingEventSink:
    """Writes events to a logger, failures at WARNING and the rest at INFO."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("adomcp.workflows")

    def record(self, event: Event) -> None:
        level = logging.WARNING if event.name.endswith(("failed", "conflict")) else logging.INFO
        details = " ".join(f"{key}={value}" for key, value in event.fields.items())
        self.logger.log(level, f"{event.name} {details}".rstrip())


def emit(sink: EventSink, name: str, **fields: Any) -> None:
    """Record an event named ``name`` on ``sink``."""
    sink.record(Event(name=name, fields=fields))

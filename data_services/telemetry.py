"""
Telemetry sink for operational events (NBA runs, executions, ingest failures).

Events are sanitized before they leave the core and the sink is never allowed
to raise back into the caller.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel, Field

from data_models.base import utcnow
from data_services.sanitize import safe_fingerprint, sanitize_error_message, sanitize_meta

logger = logging.getLogger(__name__)
events_logger = logging.getLogger("ops_events")


class OpsEvent(BaseModel):
    category: str
    event_key: str
    status: str = "success"
    actor_type: Optional[str] = None
    actor_id: Optional[str] = None
    error_message: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    # Same category, key, actor and error collapse to one fingerprint
    fingerprint: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)


class TelemetrySink(Protocol):
    def emit(self, event: OpsEvent) -> None:
        ...


class LoggingTelemetrySink:
    """Writes one JSON line per event to the "ops_events" logger."""

    def emit(self, event: OpsEvent) -> None:
        level = logging.WARNING if event.status == "failure" else logging.INFO
        events_logger.log(level, json.dumps(event.model_dump(mode="json"), default=str))


class MemoryTelemetrySink:
    """Keeps events in a list. Used by tests and local debugging."""

    def __init__(self):
        self.events: list[OpsEvent] = []

    def emit(self, event: OpsEvent) -> None:
        self.events.append(event)

    def keys(self) -> list[str]:
        return [e.event_key for e in self.events]


_sink: TelemetrySink = LoggingTelemetrySink()


def get_telemetry_sink() -> TelemetrySink:
    return _sink


def set_telemetry_sink(sink: TelemetrySink) -> TelemetrySink:
    """Swaps the process-wide sink and returns the previous one."""
    global _sink
    previous = _sink
    _sink = sink
    return previous


def log_ops_event_safe(
    category: str,
    event_key: str,
    status: str = "success",
    actor_type: Optional[str] = None,
    actor_id: Optional[str] = None,
    error_message: Any = None,
    meta: Any = None,
) -> None:
    """Sanitizes and emits an event. Failures are logged locally and dropped."""
    try:
        clean_error = sanitize_error_message(error_message) if error_message is not None else None
        event = OpsEvent(
            category=category,
            event_key=event_key,
            status=status,
            actor_type=actor_type,
            actor_id=actor_id,
            error_message=clean_error,
            meta=sanitize_meta(meta),
            fingerprint=safe_fingerprint([category, event_key, actor_id, clean_error]),
        )
        _sink.emit(event)
    except Exception as e:
        logger.warning(f"Telemetry sink dropped event '{event_key}': {sanitize_error_message(e)}")

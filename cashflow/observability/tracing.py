"""Minimal tracing primitives.

Every workflow call gets a trace id; phases are timed with a `Span` and
reported as one JSON event per line on stdout. This keeps the service
dependency-light while staying trace-ready (an OTEL exporter can consume the
same events).
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Span:
    name: str
    trace_id: str
    span_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    start_ns: int = field(default_factory=time.time_ns)
    end_ns: int | None = None
    status: str = 'ok'
    attributes: dict[str, Any] = field(default_factory=dict)

    def end(self) -> None:
        # First call wins; a span closed in an error path stays closed
        if self.end_ns is None:
            self.end_ns = time.time_ns()

    def fail(self, error: BaseException | str) -> None:
        self.status = 'error'
        self.attributes['error'] = str(error) or type(error).__name__

    @property
    def duration_ms(self) -> float | None:
        if self.end_ns is None:
            return None
        return round((self.end_ns - self.start_ns) / 1_000_000.0, 3)

    def as_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'span_id': self.span_id,
            'status': self.status,
            'duration_ms': self.duration_ms,
            'attributes': self.attributes,
        }


def new_trace_id() -> str:
    return uuid.uuid4().hex


def log_event(
    event: str,
    *,
    trace_id: str,
    span: Span | None = None,
    level: str = 'info',
    **fields: Any,
) -> None:
    """Print one structured event. `level` is info, warning or error."""
    payload: dict[str, Any] = {'event': event, 'level': level, 'trace_id': trace_id, **fields}
    if span is not None:
        payload['span'] = span.as_dict()
    # Decimals, datetimes and enums fall back to str()
    print(json.dumps(payload, ensure_ascii=False, default=str))

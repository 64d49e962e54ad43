"""Structured state-transition events for the fulfillment pipeline.

Each component gets a `PipelineEvents` instance and emits one record per
state change. Records go to the standard logger with the fields in
`extra`, and the most recent ones are kept in memory for audits and tests.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger("app.pipeline")


@dataclass(frozen=True)
class TransitionEvent:
    """One state change of a pipeline entity."""

    event: str
    entity: str
    entity_id: str
    from_status: str | None
    to_status: str | None
    fields: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class PipelineEvents:
    """Emits structured transition records."""

    def __init__(self, log: logging.Logger | None = None, history: int = 500) -> None:
        self._log = log or logger
        self._recent: deque[TransitionEvent] = deque(maxlen=history)

    def transition(
        self,
        event: str,
        entity: str,
        entity_id: object,
        from_status: str | None,
        to_status: str | None,
        **fields: Any,
    ) -> TransitionEvent:
        record = TransitionEvent(
            event=event,
            entity=entity,
            entity_id=str(entity_id),
            from_status=from_status,
            to_status=to_status,
            fields=fields,
        )
        self._recent.append(record)
        self._log.info(
            f"[{entity}] {event}: {entity_id} {from_status or '-'} -> {to_status or '-'}",
            extra={
                "event": event,
                "entity": entity,
                "entity_id": record.entity_id,
                "from_status": from_status,
                "to_status": to_status,
                **{f"ctx_{k}": v for k, v in fields.items()},
            },
        )
        return record

    @property
    def recent(self) -> list[TransitionEvent]:
        return list(self._recent)

    def of(self, event: str) -> list[TransitionEvent]:
        """Recent events with the given name."""
        return [e for e in self._recent if e.event == event]


pipeline_events = PipelineEvents()

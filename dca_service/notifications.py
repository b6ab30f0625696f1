"""
Lifecycle notification log

Append-only record of every committed notification (order created,
cancelled, purchase completed, order completed, order reset).

- Records are NEVER modified or deleted
- Optional JSONL file mirrors the in-memory list
- Subscribers receive each event after it is recorded

Completed and cancelled orders look identical in the order store; this log
is the only place that tells them apart historically.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from dca_service.order_models import OrderEvent, OrderEventType


logger = logging.getLogger(__name__)


class OrderEventLog:
    def __init__(self, log_file: Optional[str] = None):
        """
        Args:
            log_file: Path to an append-only JSONL file.
                     If None, events are kept in memory only.
        """
        self.log_file = log_file
        self._events: List[OrderEvent] = []
        self._subscribers: List[Callable[[OrderEvent], None]] = []

        if self.log_file:
            Path(self.log_file).parent.mkdir(parents=True, exist_ok=True)
            Path(self.log_file).touch(exist_ok=True)

    def subscribe(self, callback: Callable[[OrderEvent], None]) -> None:
        self._subscribers.append(callback)

    def publish(self, event: OrderEvent) -> None:
        """
        Record a committed event, then fan it out.

        The operation behind `event` has already committed, so file and
        subscriber failures are logged and never raised.
        """
        self._events.append(event)
        logger.info(
            "Order event: type=%s order_id=%s actor=%s data=%s",
            event.event_type.value, event.order_id, event.actor, event.data,
        )
        if self.log_file:
            try:
                with open(self.log_file, "a", encoding="utf-8") as fh:
                    fh.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")
            except OSError as e:
                logger.error("Event log write failed: file=%s error=%s", self.log_file, e)
        for callback in self._subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    "Event subscriber failed: type=%s order_id=%s error=%s",
                    event.event_type.value, event.order_id, e,
                )

    @property
    def events(self) -> List[OrderEvent]:
        return list(self._events)

    def events_for(self, order_id: int) -> List[OrderEvent]:
        return [e for e in self._events if e.order_id == order_id]

    def of_type(self, event_type: OrderEventType) -> List[OrderEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def read_file(self) -> List[Dict[str, Any]]:
        """Read back the JSONL mirror (empty if memory-only)."""
        if not self.log_file:
            return []
        records = []
        with open(self.log_file, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records

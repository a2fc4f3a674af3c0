"""Lease event history and in-process fan-out."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import utc_now

logger = logging.getLogger(__name__)


class LeaseEvent(BaseModel):
    """Durable event structure stored per lease."""

    model_config = ConfigDict(extra="forbid")

    id: str
    lease_id: int
    seq: int = Field(default=0)
    ts: str
    type: str
    data: dict[str, Any] = Field(default_factory=dict)


def new_event(event_type: str, lease_id: int, data: Mapping[str, Any] | None = None) -> LeaseEvent:
    """Create a fresh event with metadata initialized."""
    return LeaseEvent(
        id=str(uuid4()),
        lease_id=lease_id,
        seq=0,
        ts=utc_now().isoformat(),
        type=event_type,
        data=dict(data or {}),
    )


class EventStore:
    """Append-only JSONL history, one file per lease."""

    def __init__(self, base_dir: str | Path, *, ensure_dirs: bool = True):
        self.base_dir = Path(base_dir)
        self._lock = threading.Lock()
        self._seq: dict[int, int] = {}
        if ensure_dirs:
            self.ensure_base_dir()

    def ensure_base_dir(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _event_file(self, lease_id: int) -> Path:
        return self.base_dir / f"{lease_id}.jsonl"

    def _next_seq_locked(self, lease_id: int) -> int:
        if lease_id not in self._seq:
            self._seq[lease_id] = len(self.replay(lease_id))
        self._seq[lease_id] += 1
        return self._seq[lease_id]

    def append(self, event: LeaseEvent) -> LeaseEvent:
        with self._lock:
            event.seq = self._next_seq_locked(event.lease_id)
            line = json.dumps(event.model_dump(), ensure_ascii=False, separators=(",", ":"))
            with self._event_file(event.lease_id).open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        return event

    def replay(self, lease_id: int) -> list[LeaseEvent]:
        path = self._event_file(lease_id)
        if not path.exists():
            return []
        events: list[LeaseEvent] = []
        with path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(LeaseEvent.model_validate(json.loads(line)))
                except (json.JSONDecodeError, ValidationError):
                    logger.warning("skipping malformed event lease_id=%s", lease_id)
        return events


EventCallback = Callable[[LeaseEvent], Awaitable[None]]


class EventBus:
    """In-memory pub/sub bus that persists through the event store first."""

    def __init__(self, store: EventStore):
        self._store = store
        self._subscribers: set[EventCallback] = set()

    @property
    def store(self) -> EventStore:
        return self._store

    async def publish(self, event: LeaseEvent) -> LeaseEvent:
        """Persist event then fan out to live subscribers."""
        stored = self._store.append(event)
        for callback in list(self._subscribers):
            try:
                await callback(stored)
            except Exception:  # pragma: no cover - subscriber bugs must not break transitions
                logger.exception(
                    "event subscriber failed type=%s",
                    stored.type,
                    extra={"lease_id": stored.lease_id},
                )
        return stored

    async def emit(
        self, event_type: str, lease_id: int, data: Mapping[str, Any] | None = None
    ) -> LeaseEvent:
        return await self.publish(new_event(event_type, lease_id, data))

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register callback for every lease event and return an unsubscribe handle."""
        self._subscribers.add(callback)

        def _unsubscribe() -> None:
            self._subscribers.discard(callback)

        return _unsubscribe


class LoggingNotifier:
    """Logs every lease event; stands in for a real delivery channel."""

    def __init__(self, bus: EventBus):
        self._unsubscribe = bus.subscribe(self._on_event)

    async def _on_event(self, event: LeaseEvent) -> None:
        logger.info(
            "lease event type=%s data=%s",
            event.type,
            json.dumps(event.data, ensure_ascii=False, default=str),
            extra={"lease_id": event.lease_id},
        )

    def close(self) -> None:
        self._unsubscribe()

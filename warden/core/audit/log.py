from __future__ import annotations

import json
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from warden.core.audit.models import Actor, AuditAction, AuditQuery, SecurityEvent, SecurityEventDraft
from warden.core.redaction import redact
from warden.core.store import SecurityStore


DEFAULT_CAPACITY = 1000


class AuditLog:
    """
    Bounded, append-only security event buffer.

    Store namespace:
    - events: [SecurityEvent...] in insertion order (only written for durable backends)

    Append and eviction happen under the `events` lock, so insertion order holds
    under concurrent callers and the buffer never exceeds `capacity` once append returns.
    """

    def __init__(
        self,
        store: SecurityStore,
        *,
        capacity: int = DEFAULT_CAPACITY,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ):
        if int(capacity) < 1:
            raise ValueError("Audit capacity must be at least 1.")
        self.store = store
        self.capacity = int(capacity)
        self.logger = logger or logging.getLogger("warden.audit")
        self._now = now or time.time
        self._events: Deque[SecurityEvent] = deque()
        with self.store.locked("events"):
            for raw in self.store.read("events", default=[]) or []:
                self._events.append(SecurityEvent.model_validate(raw))
            while len(self._events) > self.capacity:
                self._events.popleft()

    def __len__(self) -> int:
        with self.store.locked("events"):
            return len(self._events)

    def append(self, event: Union[SecurityEventDraft, Dict[str, Any]]) -> SecurityEvent:
        draft = event if isinstance(event, SecurityEventDraft) else SecurityEventDraft.model_validate(event)
        with self.store.locked("events"):
            stored = SecurityEvent(**draft.model_dump(), timestamp=float(self._now()))
            self._events.append(stored)
            while len(self._events) > self.capacity:
                self._events.popleft()
            self._persist_locked()
        self._mirror(stored)
        return stored

    def record(
        self,
        action: AuditAction,
        *,
        resource: str,
        success: bool,
        actor: Optional[Actor] = None,
        origin: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> SecurityEvent:
        actor = actor or Actor()
        return self.append(
            SecurityEventDraft(
                actor_id=actor.actor_id,
                actor_email=actor.actor_email,
                action=action,
                resource=resource,
                origin=origin,
                success=success,
                details=details,
            )
        )

    def query(self, filters: Optional[Union[AuditQuery, Dict[str, Any]]] = None) -> List[SecurityEvent]:
        q = filters if isinstance(filters, AuditQuery) else AuditQuery.model_validate(filters or {})
        with self.store.locked("events"):
            # newest first; reversing before the stable sort keeps later appends ahead on ties
            items = [ev for ev in reversed(self._events) if q.matches(ev)]
        items.sort(key=lambda ev: ev.timestamp, reverse=True)
        return items

    def export(self) -> str:
        return json.dumps(self.snapshot(), ensure_ascii=False, indent=2)

    def snapshot(self) -> List[Dict[str, Any]]:
        with self.store.locked("events"):
            return [ev.model_dump(mode="json") for ev in self._events]

    def replace_all(self, events: Iterable[Union[SecurityEvent, Dict[str, Any]]]) -> None:
        """Swap the whole buffer. Validates every entry before touching live state."""
        parsed = [ev if isinstance(ev, SecurityEvent) else SecurityEvent.model_validate(ev) for ev in events]
        parsed = parsed[-self.capacity :]
        with self.store.locked("events"):
            self._events = deque(parsed)
            self._persist_locked()

    def summary(self, *, window_seconds: float = 24 * 60 * 60) -> Dict[str, Any]:
        cutoff = float(self._now()) - float(window_seconds)
        with self.store.locked("events"):
            total = len(self._events)
            recent_failures = sum(1 for ev in self._events if ev.timestamp >= cutoff and not ev.success)
        return {"total_events": total, "recent_failures": recent_failures, "capacity": self.capacity}

    # ---- internals ----
    def _persist_locked(self) -> None:
        if self.store.durable:
            self.store.write("events", [ev.model_dump(mode="json") for ev in self._events])

    def _mirror(self, ev: SecurityEvent) -> None:
        level = logging.INFO if ev.success else logging.WARNING
        self.logger.log(
            level,
            "security_event action=%s resource=%s actor=%s origin=%s success=%s details=%s",
            ev.action.value,
            ev.resource,
            ev.actor_id,
            ev.origin,
            ev.success,
            json.dumps(redact(ev.details or {}), ensure_ascii=False, sort_keys=True),
        )

"""
Interruption Event Store — the ledger of reclamation notices for this node.

Updated by: Ingestion pipeline consumers (add / cancel)
Queried by: Node drain loop (active event, mark drained) + cancellation consumer (uncordon)

Behavioral Contract:
- Events are keyed by event ID. Re-adding a known ID is a no-op, so a notice
  that keeps being polled keeps its drained flag.
- An event is active when it is not ignored, not yet drained, and its drain
  time (start time minus the grace period) has arrived.
- The node should be uncordoned only when at least one event has been seen and
  no tracked event remains. Drained events stay tracked until cancelled.
- Every public method holds the store lock for its whole body, so each call is
  atomic with respect to the others.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from jenkins_spot_terminator.models.events import InterruptionEvent


class InterruptionEventStore:
    """In-memory, internally synchronized interruption event ledger."""

    def __init__(
        self,
        drain_grace_seconds: int = 300,
        logger: Optional[logging.Logger] = None,
    ):
        self.drain_grace = timedelta(seconds=drain_grace_seconds)
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._events: Dict[str, InterruptionEvent] = {}
        self._ignored: Set[str] = set()
        self._at_least_one_event = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    @property
    def events(self) -> List[InterruptionEvent]:
        """Snapshot of the tracked events."""
        with self._lock:
            return [e.model_copy() for e in self._events.values()]

    def add(self, event: InterruptionEvent) -> bool:
        """Track a new event. Returns False if the ID is already tracked."""
        with self._lock:
            if event.event_id in self._events:
                return False
            self._log.info(
                "Adding new event to the event store: %s (%s) %s",
                event.event_id, event.kind.value, event.description,
            )
            self._events[event.event_id] = event
            if event.event_id not in self._ignored:
                self._at_least_one_event = True
            return True

    def cancel(self, event_id: str) -> bool:
        """Stop tracking an event. Returns whether it was tracked."""
        with self._lock:
            removed = self._events.pop(event_id, None)
            if removed is not None:
                self._log.info("Cancelled event %s", event_id)
            return removed is not None

    def ignore(self, event_id: str) -> None:
        """Never treat this event ID as active."""
        if not event_id:
            return
        with self._lock:
            self._ignored.add(event_id)

    def time_until_drain(
        self, event: InterruptionEvent, now: Optional[datetime] = None
    ) -> timedelta:
        """Time left before the agent must be offline for this event."""
        if now is None:
            now = datetime.now(timezone.utc)
        return (event.start_time - self.drain_grace) - now

    def get_active_event(
        self, now: Optional[datetime] = None
    ) -> Optional[InterruptionEvent]:
        """Return an event that requires draining, if any."""
        if now is None:
            now = datetime.now(timezone.utc)
        with self._lock:
            for event in self._events.values():
                if self._should_drain(event, now):
                    return event
        return None

    def has_active(self, now: Optional[datetime] = None) -> bool:
        """Whether at least one event requires draining."""
        return self.get_active_event(now) is not None

    def should_uncordon(self) -> bool:
        """Whether the agent can go back online: events were seen, none remain."""
        with self._lock:
            if not self._at_least_one_event:
                return False
            return len(self._events) == 0

    def mark_all_drained(self) -> None:
        """Flag every tracked event as handled by a successful drain."""
        with self._lock:
            for event in self._events.values():
                event.drained = True

    def _should_drain(self, event: InterruptionEvent, now: datetime) -> bool:
        if event.event_id in self._ignored or event.drained:
            return False
        return self.time_until_drain(event, now) <= timedelta(0)

"""
Interruption Monitors — turn instance metadata into interruption events.

One monitor per event kind. Each poll returns the interruptions it saw and the
interruptions it saw being withdrawn; the ingestion pipeline routes the two
lists to their queues.
"""

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from jenkins_spot_terminator.metadata.service import InstanceMetadataService, MetadataError
from jenkins_spot_terminator.models.events import EventKind, InterruptionEvent

SCHEDULED_EVENT_DATE_FORMAT = "%d %b %Y %H:%M:%S GMT"
SCHEDULED_EVENT_STATE_COMPLETED = "completed"
SCHEDULED_EVENT_STATE_CANCELED = "canceled"


class DetectorError(Exception):
    """Raised when a monitor cannot produce events for this poll."""
    pass


class PollResult(BaseModel):
    """Outcome of a single monitor poll."""

    interruptions: List[InterruptionEvent] = []
    cancellations: List[InterruptionEvent] = []


class InterruptionMonitor(ABC):
    """Base class for the per-kind monitors."""

    kind: EventKind

    def __init__(self, imds: InstanceMetadataService):
        self.imds = imds

    @property
    def name(self) -> str:
        return self.kind.value

    @abstractmethod
    async def poll(self) -> PollResult:
        """Check instance metadata once. Raises DetectorError on failure."""


class SpotInterruptionMonitor(InterruptionMonitor):
    """Watches spot/instance-action for a spot interruption notice."""

    kind = EventKind.SPOT_ITN

    async def poll(self) -> PollResult:
        try:
            instance_action = await self.imds.get_spot_instance_action()
        except MetadataError as e:
            raise DetectorError(f"unable to check for spot interruption notice: {e}")
        if instance_action is None:
            return PollResult()
        return PollResult(interruptions=[self.to_event(instance_action)])

    @staticmethod
    def to_event(instance_action: dict) -> InterruptionEvent:
        if not isinstance(instance_action, dict):
            raise DetectorError(f"unexpected spot instance action: {instance_action!r}")
        action = str(instance_action.get("action") or "")
        action_time = instance_action.get("time")
        if not action_time:
            raise DetectorError(f"spot instance action without a time: {instance_action}")
        try:
            start_time = _parse_rfc3339(action_time)
        except (TypeError, ValueError) as e:
            raise DetectorError(f"unable to parse spot interruption time {action_time!r}: {e}")

        digest = hashlib.sha256(f"{action}{action_time}".encode()).hexdigest()
        return InterruptionEvent(
            event_id=f"spot-itn-{digest}",
            kind=EventKind.SPOT_ITN,
            description=f"Spot ITN received. Instance will be interrupted at {action_time}",
            start_time=start_time,
        )


class ScheduledMaintenanceMonitor(InterruptionMonitor):
    """Watches events/maintenance/scheduled for maintenance windows."""

    kind = EventKind.SCHEDULED_EVENT

    async def poll(self) -> PollResult:
        try:
            scheduled_events = await self.imds.get_scheduled_events()
        except MetadataError as e:
            raise DetectorError(f"unable to check for scheduled maintenance events: {e}")

        result = PollResult()
        for scheduled_event in scheduled_events:
            event = self.to_event(scheduled_event)
            if event.state in (SCHEDULED_EVENT_STATE_CANCELED, SCHEDULED_EVENT_STATE_COMPLETED):
                result.cancellations.append(event)
            else:
                result.interruptions.append(event)
        return result

    @staticmethod
    def to_event(scheduled_event: dict) -> InterruptionEvent:
        if not isinstance(scheduled_event, dict) or not scheduled_event.get("EventId"):
            raise DetectorError(f"scheduled event without an EventId: {scheduled_event}")

        not_before = scheduled_event.get("NotBefore", "")
        try:
            start_time = _parse_scheduled_date(not_before)
        except (TypeError, ValueError) as e:
            raise DetectorError(f"unable to parse scheduled event start time {not_before!r}: {e}")

        not_after = scheduled_event.get("NotAfter", "")
        try:
            end_time = _parse_scheduled_date(not_after)
        except (TypeError, ValueError):
            end_time = start_time

        code = scheduled_event.get("Code") or ""
        try:
            return InterruptionEvent(
                event_id=str(scheduled_event["EventId"]),
                kind=EventKind.SCHEDULED_EVENT,
                description=(
                    f"{code} will occur between {not_before} and {not_after} "
                    f"because {scheduled_event.get('Description') or ''}"
                ),
                state=str(scheduled_event.get("State") or "").lower(),
                start_time=start_time,
                end_time=end_time,
            )
        except ValidationError as e:
            raise DetectorError(f"invalid scheduled event {scheduled_event}: {e}")


def build_monitors(imds: InstanceMetadataService) -> List[InterruptionMonitor]:
    """The fixed set of monitors, one per event kind."""
    return [SpotInterruptionMonitor(imds), ScheduledMaintenanceMonitor(imds)]


def _parse_rfc3339(value: str) -> datetime:
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_scheduled_date(value: Optional[str]) -> datetime:
    if not value:
        raise ValueError("empty date")
    return datetime.strptime(value, SCHEDULED_EVENT_DATE_FORMAT).replace(tzinfo=timezone.utc)

"""Interruption Event — one detected reclamation notice for this instance."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class EventKind(str, Enum):
    SPOT_ITN = "SPOT_ITN"                   # Spot interruption notice
    SCHEDULED_EVENT = "SCHEDULED_EVENT"     # Scheduled maintenance


class InterruptionEvent(BaseModel):
    """A notification that the instance is going to be reclaimed."""

    event_id: str                           # Unique per detected occurrence
    kind: EventKind
    description: str = ""
    state: str = ""                         # Scheduled event state, empty for spot
    start_time: datetime                    # When the instance goes away
    end_time: Optional[datetime] = None
    drained: bool = False                   # Agent already taken offline for it

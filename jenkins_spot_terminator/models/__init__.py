"""Jenkins spot terminator data models."""

from jenkins_spot_terminator.models.config import DEFAULT_METADATA_URL, TerminatorConfig
from jenkins_spot_terminator.models.events import EventKind, InterruptionEvent
from jenkins_spot_terminator.models.node import AgentStatus, NodeMetadata

__all__ = [
    "AgentStatus",
    "DEFAULT_METADATA_URL",
    "EventKind",
    "InterruptionEvent",
    "NodeMetadata",
    "TerminatorConfig",
]

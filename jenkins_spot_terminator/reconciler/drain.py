"""
Node Drain Loop — keeps the agent's online state in line with the event store.

States:
  SERVING → DRAIN_REQUESTED → DRAINED → (cancellation) → SERVING

Every tick asks the event store for an active event. If there is one the agent
is taken offline and every tracked event is marked drained, so later ticks
have nothing new to do. Failing to take a doomed agent offline is fatal:
NodeDrainError propagates and the daemon exits without retrying.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from jenkins_spot_terminator.event_store.store import InterruptionEventStore
from jenkins_spot_terminator.jenkins.client import JenkinsError, JenkinsMaster
from jenkins_spot_terminator.models.node import NodeMetadata


class NodeDrainError(Exception):
    """Raised when the agent could not be taken offline."""
    pass


class NodeDrainState(str, Enum):
    SERVING = "serving"
    DRAIN_REQUESTED = "drain_requested"
    DRAINED = "drained"


class NodeDrainLoop:
    """Periodic control loop driving the agent offline on interruption."""

    def __init__(
        self,
        store: InterruptionEventStore,
        jenkins: JenkinsMaster,
        node: NodeMetadata,
        interval_seconds: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.jenkins = jenkins
        self.node = node
        self.interval_seconds = interval_seconds
        self._log = logger or logging.getLogger(__name__)
        self._state = NodeDrainState.SERVING
        self._running = False

    @property
    def status(self) -> str:
        """Current loop status."""
        return "running" if self._running else "stopped"

    @property
    def state(self) -> NodeDrainState:
        return self._state

    async def tick(self) -> bool:
        """
        Run a single drain cycle.
        Returns True when the agent was taken offline during this tick.
        """
        event = self.store.get_active_event()
        if event is None:
            if self._state == NodeDrainState.DRAINED and self.store.should_uncordon():
                self._state = NodeDrainState.SERVING
            return False

        self._state = NodeDrainState.DRAIN_REQUESTED
        try:
            await self.jenkins.mark_offline()
        except JenkinsError as e:
            self._log.critical(
                "There was a problem while trying to mark agent %s as offline for event %s: %s",
                self.node.instance_id, event.event_id, e,
            )
            raise NodeDrainError(
                f"unable to mark agent {self.node.instance_id} as offline: {e}"
            ) from e

        self._log.info(
            "Current agent %s successfully marked as offline (%s)",
            self.node.instance_id, event.description,
        )
        self.store.mark_all_drained()
        self._state = NodeDrainState.DRAINED
        return True

    async def run_async(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Tick every interval until the stop event is set."""
        self._running = True
        if stop_event is None:
            stop_event = asyncio.Event()

        try:
            while not stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(
                        stop_event.wait(),
                        timeout=self.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._running = False

"""
Event Ingestion Pipeline — from monitors into the interruption event store.

  monitor tasks (one per kind) → interruption queue → interruption consumer → store.add
                               → cancellation queue → cancellation consumer → store.cancel
                                                                             → mark agent online

Behavioral Contract:
- Monitor failures are logged and the next poll happens on schedule.
- Each queue has a single consumer, so events on one queue are handled in
  arrival order. Nothing orders the two queues against each other.
- The agent is only brought online when a tracked event is cancelled and the
  store reports that no tracked event remains. Cancellations of untracked
  events are ignored. A failed online call is logged and not retried.
- Unexpected errors in any task are logged; no task ends on its own.
- On stop, producers are cancelled before consumers, and consumers get a
  bounded chance to empty their queues first.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from jenkins_spot_terminator.event_store.store import InterruptionEventStore
from jenkins_spot_terminator.jenkins.client import JenkinsError, JenkinsMaster
from jenkins_spot_terminator.metadata.service import MetadataError
from jenkins_spot_terminator.models.events import InterruptionEvent
from jenkins_spot_terminator.models.node import NodeMetadata
from jenkins_spot_terminator.monitors.detectors import DetectorError, InterruptionMonitor


class EventIngestionPipeline:
    """Runs the monitor and consumer tasks around two hand-off queues."""

    def __init__(
        self,
        monitors: Sequence[InterruptionMonitor],
        store: InterruptionEventStore,
        jenkins: JenkinsMaster,
        node: NodeMetadata,
        poll_interval_seconds: float = 2.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.monitors = list(monitors)
        self.store = store
        self.jenkins = jenkins
        self.node = node
        self.poll_interval_seconds = poll_interval_seconds
        self._log = logger or logging.getLogger(__name__)

        self.interruption_queue: "asyncio.Queue[InterruptionEvent]" = asyncio.Queue(maxsize=1)
        self.cancellation_queue: "asyncio.Queue[InterruptionEvent]" = asyncio.Queue(maxsize=1)
        self._producers: List[asyncio.Task] = []
        self._consumers: List[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._producers + self._consumers)

    def start(self, stop_event: asyncio.Event) -> List[asyncio.Task]:
        """Spawn one task per monitor plus the two consumers."""
        for monitor in self.monitors:
            self._producers.append(asyncio.create_task(
                self._monitor_loop(monitor, stop_event),
                name=f"monitor-{monitor.name}",
            ))
        self._consumers.append(asyncio.create_task(
            self._watch_interruptions(), name="interruption-consumer",
        ))
        self._consumers.append(asyncio.create_task(
            self._watch_cancellations(), name="cancellation-consumer",
        ))
        self._log.info("Started watching for interruption events")
        self._log.info("Started watching for event cancellations")
        return self._producers + self._consumers

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop producers, let consumers empty the queues, then stop consumers."""
        await self._cancel(self._producers)
        self._producers = []

        if any(not t.done() for t in self._consumers):
            try:
                await asyncio.wait_for(
                    asyncio.gather(
                        self.interruption_queue.join(),
                        self.cancellation_queue.join(),
                    ),
                    timeout=drain_timeout,
                )
            except asyncio.TimeoutError:
                self._log.warning(
                    "Queues not drained within %.1fs, dropping pending events", drain_timeout
                )

        await self._cancel(self._consumers)
        self._consumers = []

    # --- Single steps ---

    async def poll_once(self, monitor: InterruptionMonitor) -> None:
        """Poll one monitor and hand its events to the queues."""
        try:
            result = await monitor.poll()
        except (DetectorError, MetadataError) as e:
            self._log.warning(
                "There was a problem monitoring for %s events on %s: %s",
                monitor.name, self.node.instance_id, e,
            )
            return
        for event in result.interruptions:
            await self.interruption_queue.put(event)
        for event in result.cancellations:
            await self.cancellation_queue.put(event)

    def handle_interruption(self, event: InterruptionEvent) -> None:
        self._log.info(
            "Got interruption event from queue for %s: %s (%s)",
            self.node.instance_id, event.event_id, event.description,
        )
        self.store.add(event)

    async def handle_cancellation(self, event: InterruptionEvent) -> None:
        self._log.info(
            "Got cancel event from queue for %s: %s (%s)",
            self.node.instance_id, event.event_id, event.description,
        )
        if not self.store.cancel(event.event_id):
            # IMDS keeps reporting a canceled event; act on the first sighting only.
            self._log.debug("Event %s is not tracked, nothing to do", event.event_id)
            return
        if not self.store.should_uncordon():
            self._log.info(
                "Another interruption event is active, not marking agent %s as online",
                self.node.instance_id,
            )
            return

        self._log.info(
            "Marking agent %s as online due to cancellation of %s",
            self.node.instance_id, event.event_id,
        )
        try:
            await self.jenkins.mark_online()
        except JenkinsError as e:
            self._log.error(
                "Marking agent %s as online after cancellation of %s failed: %s",
                self.node.instance_id, event.event_id, e,
            )

    # --- Tasks ---

    async def _monitor_loop(
        self, monitor: InterruptionMonitor, stop_event: asyncio.Event
    ) -> None:
        self._log.info("Started monitoring for %s events", monitor.name)
        while not stop_event.is_set():
            try:
                await self.poll_once(monitor)
            except Exception:
                self._log.exception(
                    "Unexpected error monitoring for %s events on %s",
                    monitor.name, self.node.instance_id,
                )
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _watch_interruptions(self) -> None:
        while True:
            event = await self.interruption_queue.get()
            try:
                self.handle_interruption(event)
            except Exception:
                self._log.exception("Unexpected error handling interruption %s", event.event_id)
            finally:
                self.interruption_queue.task_done()

    async def _watch_cancellations(self) -> None:
        while True:
            event = await self.cancellation_queue.get()
            try:
                await self.handle_cancellation(event)
            except Exception:
                self._log.exception("Unexpected error handling cancellation %s", event.event_id)
            finally:
                self.cancellation_queue.task_done()

    @staticmethod
    async def _cancel(tasks: List[asyncio.Task]) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

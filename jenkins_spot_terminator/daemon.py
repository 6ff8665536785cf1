"""
Terminator Daemon — wires the components together and owns their lifetime.

Startup: shutdown signals → node identity → store, monitors, pipeline → drain loop.
Shutdown: stop the drain loop, stop the pipeline, close the HTTP clients.
"""

import logging
from typing import Optional

from jenkins_spot_terminator.event_store.store import InterruptionEventStore
from jenkins_spot_terminator.jenkins.client import JenkinsMaster
from jenkins_spot_terminator.metadata.service import InstanceMetadataService, MetadataError
from jenkins_spot_terminator.models.config import TerminatorConfig
from jenkins_spot_terminator.models.node import NodeMetadata
from jenkins_spot_terminator.monitors.detectors import build_monitors
from jenkins_spot_terminator.pipeline.ingestion import EventIngestionPipeline
from jenkins_spot_terminator.reconciler.drain import NodeDrainError, NodeDrainLoop
from jenkins_spot_terminator.shutdown.coordinator import ShutdownCoordinator

EXIT_OK = 0
EXIT_FATAL = 1


class TerminatorDaemon:
    """Runs the terminator until shutdown or a fatal error."""

    def __init__(
        self,
        config: TerminatorConfig,
        logger: Optional[logging.Logger] = None,
        metadata: Optional[InstanceMetadataService] = None,
        jenkins: Optional[JenkinsMaster] = None,
        shutdown: Optional[ShutdownCoordinator] = None,
    ):
        self.config = config
        self._log = logger or logging.getLogger(__name__)
        self.metadata = metadata or InstanceMetadataService(
            base_url=config.metadata_url,
            tries=config.metadata_tries,
            retry_delay_seconds=config.metadata_retry_delay_seconds,
            timeout_seconds=config.request_timeout_seconds,
            logger=self._log.getChild("metadata"),
        )
        self.jenkins = jenkins
        self.shutdown = shutdown or ShutdownCoordinator(logger=self._log.getChild("shutdown"))

        self.node: Optional[NodeMetadata] = None
        self.store: Optional[InterruptionEventStore] = None
        self.pipeline: Optional[EventIngestionPipeline] = None
        self.drain_loop: Optional[NodeDrainLoop] = None

    async def run_async(self) -> int:
        """Run until shutdown. Returns the process exit code."""
        self.shutdown.install()
        try:
            return await self._run()
        finally:
            await self._close()
            self.shutdown.uninstall()

    async def _run(self) -> int:
        try:
            self.node = await self.metadata.get_node_metadata()
        except MetadataError as e:
            self._log.critical("Unable to determine the node identity: %s", e)
            return EXIT_FATAL

        if self.jenkins is None:
            self.jenkins = JenkinsMaster(
                self.config.jenkins_master_url,
                self.config.jenkins_master_api_user,
                self.config.jenkins_master_api_token,
                self.node,
                timeout_seconds=self.config.request_timeout_seconds,
                logger=self._log.getChild("jenkins"),
            )

        self.store = InterruptionEventStore(
            drain_grace_seconds=self.config.node_termination_grace_period,
            logger=self._log.getChild("event_store"),
        )
        self.pipeline = EventIngestionPipeline(
            monitors=build_monitors(self.metadata),
            store=self.store,
            jenkins=self.jenkins,
            node=self.node,
            poll_interval_seconds=self.config.poll_interval_seconds,
            logger=self._log.getChild("pipeline"),
        )
        self.drain_loop = NodeDrainLoop(
            store=self.store,
            jenkins=self.jenkins,
            node=self.node,
            interval_seconds=self.config.drain_interval_seconds,
            logger=self._log.getChild("drain"),
        )

        self.pipeline.start(self.shutdown.stop_event)
        try:
            await self.drain_loop.run_async(self.shutdown.stop_event)
        except NodeDrainError as e:
            self._log.critical("Exiting, agent %s could not be drained: %s", self.node.instance_id, e)
            return EXIT_FATAL
        finally:
            await self.pipeline.stop(self.config.shutdown_drain_timeout_seconds)

        self._log.info("Jenkins spot terminator is shutting down")
        return EXIT_OK

    async def _close(self) -> None:
        if self.jenkins is not None:
            await self.jenkins.close()
        await self.metadata.close()

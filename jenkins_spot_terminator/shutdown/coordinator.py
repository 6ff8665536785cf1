"""Shutdown Coordinator — turns termination signals into a stop event."""

import asyncio
import logging
import signal
from typing import List, Optional, Sequence

DEFAULT_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class ShutdownCoordinator:
    """
    Owns the stop event every loop checks before its next iteration.
    Signal handlers only set the event; the loops themselves wind down.
    """

    def __init__(
        self,
        signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
        logger: Optional[logging.Logger] = None,
    ):
        self.signals = tuple(signals)
        self.stop_event = asyncio.Event()
        self._log = logger or logging.getLogger(__name__)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._installed: List[signal.Signals] = []

    @property
    def is_shutting_down(self) -> bool:
        return self.stop_event.is_set()

    def install(self) -> None:
        """Register the signal handlers on the running loop."""
        self._loop = asyncio.get_running_loop()
        for sig in self.signals:
            try:
                self._loop.add_signal_handler(sig, self.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError) as e:
                # add_signal_handler only works on the main thread of a Unix loop.
                self._log.warning("Unable to handle %s: %s", sig.name, e)
                continue
            self._installed.append(sig)

    def uninstall(self) -> None:
        """Remove the signal handlers registered by install()."""
        if self._loop is not None and not self._loop.is_closed():
            for sig in self._installed:
                self._loop.remove_signal_handler(sig)
        self._installed = []
        self._loop = None

    def request_shutdown(self, reason: str = "requested") -> None:
        """Set the stop event. Safe to call more than once."""
        if self.stop_event.is_set():
            return
        self._log.info("Received %s, shutting down", reason)
        self.stop_event.set()

"""
Operator-triggered restart.

The process does not re-exec itself. A restart stops accepting connections,
lets in-flight events finish (bounded by a timeout), closes every connection,
and then asks the entry point to exit so the process supervisor starts a fresh
instance.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .broadcast import ConnectionHub
from .config_manager import ConfigManager

# Exit status the entry point uses after an operator restart
RESTART_EXIT_CODE = 3

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Runs the delayed drain-and-exit sequence for a restart."""

    def __init__(
        self,
        hub: ConnectionHub,
        config_manager: ConfigManager,
        on_exit: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            hub: ConnectionHub whose connections are closed
            config_manager: Supplies restart_delay_seconds and drain_timeout_seconds
            on_exit: Called once everything is closed (tells the server to exit)
        """
        self.hub = hub
        self.on_exit = on_exit
        self.delay = config_manager.get_float("restart_delay_seconds", 2.0)
        self.drain_timeout = config_manager.get_float("drain_timeout_seconds", 5.0)
        self.restart_requested = False
        self._task: Optional[asyncio.Task] = None

    @property
    def in_progress(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, drain: Callable[[float], Awaitable[None]]) -> bool:
        """
        Schedule the restart sequence on the running loop.

        Args:
            drain: Coroutine function waiting for in-flight work, given a timeout

        Returns:
            False if a restart is already in progress
        """
        if self.in_progress:
            return False
        self.restart_requested = True
        self._task = asyncio.get_running_loop().create_task(self._run(drain))
        logger.info("Restart scheduled in %s seconds", self.delay)
        return True

    async def wait(self) -> None:
        """Wait for a scheduled restart sequence to finish."""
        if self._task is not None:
            await self._task

    async def _run(self, drain: Callable[[float], Awaitable[None]]) -> None:
        await asyncio.sleep(self.delay)
        self.hub.stop_accepting()
        try:
            await drain(self.drain_timeout)
        except Exception as e:
            logger.error("Error draining in-flight events: %s", e, exc_info=True)
        await self.hub.close_all()
        logger.info("All connections closed, exiting for restart")
        if self.on_exit:
            self.on_exit()

"""Asynchronous systemd job handles."""

import logging
from typing import Optional

from machineutil.errors import BusError
from machineutil.models.config import WaitConfig
from machineutil.utils.logging import ContextAdapter
from machineutil.utils.systemd import SystemdDBus
from machineutil.utils.wait import poll_until


logger = logging.getLogger(__name__)


class Job:
    """A queued start or stop job on the service manager.

    systemd drops the job object once it finishes, so the job counts as
    complete as soon as reading its state fails.
    """

    def __init__(self, path: str, bus: SystemdDBus, wait: WaitConfig):
        self.path = path
        self.bus = bus
        self.wait_config = wait
        self.done = False

    async def _vanished(self) -> bool:
        try:
            state = await self.bus.get_job_state(self.path)
        except BusError as e:
            logger.debug(f"Job {self.path} gone ({e.kind.value})")
            return True
        logger.debug(f"Job {self.path} is {state}")
        return False

    async def wait(self, log: Optional[ContextAdapter] = None) -> None:
        """Wait until the job object disappears."""
        if self.done:
            return
        if log is not None:
            log.debug("Waiting for job", extra={"job": self.path})
        await poll_until(
            self._vanished,
            f"job {self.path}",
            self.wait_config.job_timeout_seconds,
            self.wait_config,
        )
        self.done = True

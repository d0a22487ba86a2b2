"""Mount coordination for machine bind mounts."""

import asyncio
import logging
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from machineutil.errors import BusError, BusErrorKind
from machineutil.models.machine import MachineSpec
from machineutil.models.mount import MountSpec
from machineutil.utils.logging import ContextAdapter
from machineutil.utils.units import ensure_unit

if TYPE_CHECKING:
    from machineutil.providers.manager import MachineManager

logger = logging.getLogger(__name__)


class MountCoordinator:
    """Creates, stops and removes the host mount units of a machine."""

    def __init__(self, manager: "MachineManager"):
        self.manager = manager

    def unit_path(self, mount: MountSpec) -> Path:
        return Path(self.manager.systemd_config.system_dir) / mount.unit_name

    async def create_mount(self, mount: MountSpec, log: Optional[ContextAdapter] = None) -> bool:
        """Reconcile the mount unit file for ``mount``."""
        return await asyncio.to_thread(
            ensure_unit, self.unit_path(mount), mount.unit_options(), log
        )

    async def remove_mount(self, mount: MountSpec, log: Optional[ContextAdapter] = None) -> bool:
        """Delete the mount unit file for ``mount``."""
        return await asyncio.to_thread(ensure_unit, self.unit_path(mount), [], log)

    async def ensure_mounts(self, spec: MachineSpec, log: Optional[ContextAdapter] = None) -> bool:
        changed = False
        for mount in spec.mounts:
            changed = await self.create_mount(mount, log) or changed
        return changed

    async def remove_mounts(self, spec: MachineSpec, log: Optional[ContextAdapter] = None) -> bool:
        changed = False
        for mount in spec.mounts:
            changed = await self.remove_mount(mount, log) or changed
        return changed

    async def unmount(self, spec: MachineSpec, log: Optional[ContextAdapter] = None) -> None:
        """Stop every mount unit of ``spec`` and wait for each stop job."""
        for mount in spec.mounts:
            try:
                job = await self.manager.stop(mount.unit_name)
            except BusError as e:
                if e.kind is not BusErrorKind.NO_SUCH_UNIT:
                    raise
                logger.debug(f"Mount unit {mount.unit_name} not loaded")
                continue
            if log is not None:
                log.debug("Unmounting", extra={"unit": mount.unit_name})
            await job.wait(log)

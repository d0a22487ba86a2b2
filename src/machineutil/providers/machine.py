"""Runtime handles for machines managed by systemd-machined."""

import asyncio
import ipaddress
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union, TYPE_CHECKING

from machineutil.errors import BusError, BusErrorKind
from machineutil.models.unit import UnitOption
from machineutil.utils.logging import ContextAdapter, get_logger
from machineutil.utils.units import ensure_unit
from machineutil.utils.wait import poll_until

if TYPE_CHECKING:
    from machineutil.providers.manager import MachineManager

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

OVERRIDE_FILE = "machineutil.conf"

_NOT_REGISTERED = (BusErrorKind.NO_SUCH_MACHINE, BusErrorKind.NO_SUCH_OBJECT)


def usable_addresses(addresses: Iterable[IPAddress]) -> List[IPAddress]:
    """Drop unspecified, loopback, link-local and multicast addresses."""
    return [
        addr for addr in addresses
        if not (
            addr.is_unspecified
            or addr.is_loopback
            or addr.is_link_local
            or addr.is_multicast
        )
    ]


class Machine:
    """Handle to one machine.

    The authoritative state lives in systemd-machined; this object only
    carries the name, the bus object path, and the manager used to act on it.
    """

    def __init__(self, name: str, object_path: str, manager: "MachineManager"):
        self.name = name
        self.object_path = object_path
        self.manager = manager

    def __repr__(self) -> str:
        return f"Machine({self.name!r})"

    @property
    def service_unit(self) -> str:
        return f"systemd-nspawn@{self.name}.service"

    @property
    def options_path(self) -> Path:
        return Path(self.manager.systemd_config.nspawn_dir) / f"{self.name}.nspawn"

    @property
    def override_path(self) -> Path:
        return (
            Path(self.manager.systemd_config.system_dir)
            / f"{self.service_unit}.d"
            / OVERRIDE_FILE
        )

    def _log(self, log: Optional[ContextAdapter]) -> ContextAdapter:
        return log if log is not None else get_logger(__name__, machine=self.name)

    async def status(self) -> str:
        """Return the machine state reported by systemd-machined."""
        return await self.manager.bus.get_machine_state(self.object_path)

    async def is_running(self) -> bool:
        try:
            return await self.status() == "running"
        except BusError:
            return False

    async def addresses(self) -> List[IPAddress]:
        """Return all addresses currently assigned to the machine."""
        result = []
        for family, raw in await self.manager.bus.get_machine_addresses(self.object_path):
            try:
                result.append(ipaddress.ip_address(raw))
            except ValueError as e:
                raise BusError.malformed(f"Got invalid ip {family} {raw.hex()}") from e
        return result

    async def wait_for_address(self, log: Optional[ContextAdapter] = None) -> List[IPAddress]:
        """Wait until the machine has at least one routable address."""
        log = self._log(log)
        wait = self.manager.wait_config

        async def probe() -> List[IPAddress]:
            return usable_addresses(await self.addresses())

        addresses = await poll_until(
            probe, f"an address on {self.name}", wait.address_timeout_seconds, wait
        )
        log.debug("Found addresses", extra={"addresses": ",".join(map(str, addresses))})
        return addresses

    async def _reached_running(self) -> bool:
        try:
            return await self.status() == "running"
        except BusError as e:
            if e.kind in _NOT_REGISTERED:
                return False
            raise

    async def _left_running(self) -> bool:
        return not await self.is_running()

    async def start(self, log: Optional[ContextAdapter] = None) -> None:
        """Start the machine and wait until it reports running."""
        if await self.is_running():
            return
        log = self._log(log)
        wait = self.manager.wait_config
        log.debug("Starting machine job")
        job = await self.manager.start(self.service_unit)
        await job.wait(log)
        log.debug("Job completed, waiting for unit")
        await poll_until(
            self._reached_running, f"{self.name} to run", wait.state_timeout_seconds, wait
        )

    async def stop(self, log: Optional[ContextAdapter] = None) -> None:
        """Stop the machine and wait until it no longer runs."""
        if not await self.is_running():
            return
        log = self._log(log)
        wait = self.manager.wait_config
        log.info("Stopping machine")
        job = await self.manager.stop(self.service_unit)
        await job.wait(log)
        await poll_until(
            self._left_running, f"{self.name} to stop", wait.state_timeout_seconds, wait
        )

    async def remove(self) -> None:
        """Remove the backing image."""
        await self.manager.remove(self.name)

    async def ensure_options(
        self, options: Iterable[UnitOption], log: Optional[ContextAdapter] = None
    ) -> bool:
        """Reconcile the machine's .nspawn file."""
        return await asyncio.to_thread(ensure_unit, self.options_path, list(options), log)

    async def ensure_override(
        self, overrides: Iterable[UnitOption], log: Optional[ContextAdapter] = None
    ) -> bool:
        """Reconcile the machine's service drop-in."""
        return await asyncio.to_thread(ensure_unit, self.override_path, list(overrides), log)

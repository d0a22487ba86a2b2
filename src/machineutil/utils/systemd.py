"""Systemd utilities and DBus integration."""

import asyncio
import logging
import subprocess
from typing import Optional, List, Any, Tuple
from dataclasses import dataclass

from dbus_next.aio import MessageBus
from dbus_next import BusType, Message, MessageType
from dbus_next.errors import DBusError

from machineutil.errors import BusError, CommandFailed


logger = logging.getLogger(__name__)

SYSTEMD_SERVICE = "org.freedesktop.systemd1"
SYSTEMD_PATH = "/org/freedesktop/systemd1"
SYSTEMD_MANAGER_INTERFACE = "org.freedesktop.systemd1.Manager"
SYSTEMD_JOB_INTERFACE = "org.freedesktop.systemd1.Job"
MACHINED_SERVICE = "org.freedesktop.machine1"
MACHINED_PATH = "/org/freedesktop/machine1"
MACHINED_MANAGER_INTERFACE = "org.freedesktop.machine1.Manager"
MACHINED_MACHINE_INTERFACE = "org.freedesktop.machine1.Machine"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"


@dataclass
class CommandResult:
    """Result from running a command."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


async def run_command(
    cmd: List[str],
    check: bool = True,
    capture_output: bool = True,
    timeout: Optional[float] = None,
    input: Optional[bytes] = None,
    **kwargs
) -> CommandResult:
    """Run a command asynchronously.

    ``stdin``/``stdout``/``stderr`` passed in ``kwargs`` take precedence
    over ``capture_output`` and ``input``.
    """
    logger.debug(f"Running command: {' '.join(cmd)}")

    if capture_output:
        kwargs.setdefault("stdout", asyncio.subprocess.PIPE)
        kwargs.setdefault("stderr", asyncio.subprocess.PIPE)
    if input is not None:
        kwargs.setdefault("stdin", asyncio.subprocess.PIPE)

    process = await asyncio.create_subprocess_exec(*cmd, **kwargs)

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise subprocess.TimeoutExpired(cmd, timeout)

    result = CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )

    if check and process.returncode != 0:
        raise CommandFailed(
            process.returncode, cmd, output=result.stdout, stderr=result.stderr
        )

    return result


class SystemdDBus:
    """DBus interface to systemd and systemd-machined.

    Every failure surfaces as BusError with a structured kind.
    """

    def __init__(self):
        """Initialize DBus connection."""
        self.bus: Optional[MessageBus] = None
        self.systemd = None
        self.machined = None

    async def connect(self):
        """Connect to system DBus."""
        try:
            self.bus = await MessageBus(bus_type=BusType.SYSTEM).connect()

            # Get systemd manager interface
            introspection = await self.bus.introspect(SYSTEMD_SERVICE, SYSTEMD_PATH)
            self.systemd = self.bus.get_proxy_object(
                SYSTEMD_SERVICE,
                SYSTEMD_PATH,
                introspection
            ).get_interface(SYSTEMD_MANAGER_INTERFACE)

            # Get machine manager interface
            introspection = await self.bus.introspect(MACHINED_SERVICE, MACHINED_PATH)
            self.machined = self.bus.get_proxy_object(
                MACHINED_SERVICE,
                MACHINED_PATH,
                introspection
            ).get_interface(MACHINED_MANAGER_INTERFACE)

            logger.debug("Connected to systemd DBus")

        except DBusError as e:
            logger.error(f"Failed to connect to DBus: {e}")
            raise BusError.from_name(e.type, e.text) from e
        except Exception as e:
            logger.error(f"Failed to connect to DBus: {e}")
            raise

    async def disconnect(self):
        """Disconnect from DBus."""
        if self.bus:
            self.bus.disconnect()
            self.bus = None

    async def _call_manager(self, interface, method_name: str, *args: Any) -> Any:
        """Call a method on a manager proxy, translating DBus errors."""
        if interface is None:
            raise BusError.malformed(f"Not connected, cannot call {method_name}")
        try:
            return await getattr(interface, method_name)(*args)
        except DBusError as e:
            raise BusError.from_name(e.type, e.text) from e

    async def _call_object(
        self,
        destination: str,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: Optional[List[Any]] = None,
    ) -> List[Any]:
        """Call a method on an arbitrary object path without introspection."""
        if self.bus is None:
            raise BusError.malformed(f"Not connected, cannot call {member} on {path}")
        reply = await self.bus.call(Message(
            destination=destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        ))
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body and isinstance(reply.body[0], str) else ""
            raise BusError.from_name(reply.error_name, text)
        return reply.body

    async def _get_property(self, destination: str, path: str, interface: str, name: str) -> Any:
        body = await self._call_object(
            destination, path, PROPERTIES_INTERFACE, "Get", "ss", [interface, name]
        )
        if not body or not hasattr(body[0], "value"):
            raise BusError.malformed(f"Unexpected reply reading {interface}.{name} on {path}")
        return body[0].value

    async def reload_daemon(self):
        """Reload systemd daemon configuration."""
        await self._call_manager(self.systemd, "call_reload")
        logger.debug("Reloaded systemd daemon")

    async def start_unit(self, unit_name: str, mode: str = "fail") -> str:
        """Start a systemd unit, returning the job object path."""
        job_path = await self._call_manager(self.systemd, "call_start_unit", unit_name, mode)
        logger.debug(f"Queued start of unit {unit_name}: {job_path}")
        return job_path

    async def stop_unit(self, unit_name: str, mode: str = "fail") -> str:
        """Stop a systemd unit, returning the job object path."""
        job_path = await self._call_manager(self.systemd, "call_stop_unit", unit_name, mode)
        logger.debug(f"Queued stop of unit {unit_name}: {job_path}")
        return job_path

    async def get_job_state(self, job_path: str) -> str:
        """Read the State property of a queued job."""
        return await self._get_property(
            SYSTEMD_SERVICE, job_path, SYSTEMD_JOB_INTERFACE, "State"
        )

    async def list_images(self) -> List[Tuple[str, str]]:
        """List all images as (name, object path) pairs."""
        images = await self._call_manager(self.machined, "call_list_images")
        result = []
        for image in images:
            if len(image) < 7:
                raise BusError.malformed(f"Invalid number of image fields: {len(image)}")
            name, path = image[0], image[6]
            if not isinstance(name, str) or not isinstance(path, str):
                raise BusError.malformed(f"Invalid image entry: {image!r}")
            result.append((name, path))
        return result

    async def get_image(self, name: str) -> str:
        """Get the object path of an image."""
        return await self._call_manager(self.machined, "call_get_image", name)

    async def clone_image(self, source: str, target: str, read_only: bool = False):
        """Clone an image under a new name."""
        await self._call_manager(self.machined, "call_clone_image", source, target, read_only)
        logger.debug(f"Cloned image {source} to {target}")

    async def remove_image(self, name: str):
        """Remove an image."""
        await self._call_manager(self.machined, "call_remove_image", name)
        logger.debug(f"Removed image {name}")

    async def get_machine_state(self, machine_path: str) -> str:
        """Read the State property of a registered machine."""
        return await self._get_property(
            MACHINED_SERVICE, machine_path, MACHINED_MACHINE_INTERFACE, "State"
        )

    async def get_machine_addresses(self, machine_path: str) -> List[Tuple[int, bytes]]:
        """Get (address family, raw address) pairs of a running machine."""
        body = await self._call_object(
            MACHINED_SERVICE, machine_path, MACHINED_MACHINE_INTERFACE, "GetAddresses"
        )
        if not body:
            raise BusError.malformed(f"Empty GetAddresses reply for {machine_path}")
        result = []
        for entry in body[0]:
            if len(entry) != 2:
                raise BusError.malformed(f"Invalid address entry: {entry!r}")
            result.append((entry[0], bytes(entry[1])))
        return result

"""Machine manager exposing container and service manager capabilities."""

import logging
from dataclasses import dataclass
from typing import Optional

from machineutil.errors import ImageAlreadyExists, NoSuchImage
from machineutil.models.config import SystemdConfig, WaitConfig
from machineutil.providers.job import Job
from machineutil.providers.machine import Machine
from machineutil.providers.templates import TemplateCatalog
from machineutil.utils.systemd import SystemdDBus


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Image:
    """An image known to systemd-machined."""
    name: str
    path: str

    @property
    def machine_path(self) -> str:
        """Object path of the machine registered from this image."""
        return self.path.replace("/image/", "/machine/", 1)


class MachineManager:
    """Capabilities of systemd and systemd-machined used during a run."""

    def __init__(
        self,
        bus: SystemdDBus,
        systemd_config: Optional[SystemdConfig] = None,
        wait_config: Optional[WaitConfig] = None,
    ):
        self.bus = bus
        self.systemd_config = systemd_config or SystemdConfig()
        self.wait_config = wait_config or WaitConfig()

    async def close(self) -> None:
        await self.bus.disconnect()

    async def list_templates(self, default_template: str) -> TemplateCatalog:
        """Build the template catalog from the current image listing."""
        images = await self.bus.list_images()
        catalog = TemplateCatalog.from_images(default_template, (name for name, _ in images), self)
        logger.debug(f"Found {len(catalog)} template(s)")
        return catalog

    async def get_image(self, name: str) -> Image:
        """Look up an image by name, raising NoSuchImage when absent."""
        path = await self.bus.get_image(name)
        return Image(name, path)

    async def get_machine(self, fqdn: str) -> Machine:
        """Get a handle for the machine backed by the image ``fqdn``."""
        image = await self.get_image(fqdn)
        return Machine(image.name, image.machine_path, self)

    async def clone(self, source: str, target: str) -> Machine:
        """Clone ``source`` to ``target``.

        Raises ImageAlreadyExists, carrying the existing machine, when
        ``target`` is already present.
        """
        try:
            existing = await self.get_machine(target)
        except NoSuchImage:
            pass
        else:
            raise ImageAlreadyExists(target, existing)
        logger.info(f"Cloning image {source} to {target}")
        await self.bus.clone_image(source, target, False)
        return await self.get_machine(target)

    async def remove(self, image: str) -> None:
        await self.bus.remove_image(image)

    async def start(self, unit: str) -> Job:
        return Job(await self.bus.start_unit(unit), self.bus, self.wait_config)

    async def stop(self, unit: str) -> Job:
        return Job(await self.bus.stop_unit(unit), self.bus, self.wait_config)

    async def daemon_reload(self) -> None:
        logger.info("Reloading systemd daemon")
        await self.bus.reload_daemon()

"""Per-run reconciliation state and machine convergence."""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from machineutil.errors import ImageAlreadyExists, MissingTemplate, NoSuchImage
from machineutil.models.config import RunConfig
from machineutil.models.machine import MachineSpec
from machineutil.providers.machine import Machine
from machineutil.providers.manager import MachineManager
from machineutil.providers.mount import MountCoordinator
from machineutil.providers.templates import Template, TemplateCatalog
from machineutil.utils.logging import ContextAdapter, get_logger
from machineutil.utils.systemd import SystemdDBus


logger = logging.getLogger(__name__)


@dataclass
class EnsureResult:
    """Outcome of converging one machine."""
    machine: Machine
    changed: bool = False
    reload: bool = False
    created: bool = False


class ReconciliationState:
    """Registry of machines resolved during one run, plus the template catalog."""

    def __init__(self, manager: MachineManager, templates: TemplateCatalog):
        """Initialize reconciliation state."""
        self.manager = manager
        self.templates = templates
        self.mounts = MountCoordinator(manager)
        self.machines: Dict[str, Machine] = {}

    @classmethod
    async def create(
        cls, config: RunConfig, bus: Optional[SystemdDBus] = None
    ) -> "ReconciliationState":
        """Connect to the system bus and list templates."""
        if bus is None:
            bus = SystemdDBus()
            await bus.connect()
        manager = MachineManager(bus, config.systemd, config.wait)
        try:
            templates = await manager.list_templates(config.default_template)
        except Exception:
            await manager.close()
            raise
        return cls(manager, templates)

    async def close(self) -> None:
        await self.manager.close()

    def discover_template(self, spec: MachineSpec) -> Template:
        """Resolve the template a machine should be cloned from."""
        template = self.templates.resolve(spec.template, spec.template_version)
        if template is None:
            raise MissingTemplate(spec.fqdn, spec.template, spec.template_version)
        return template

    async def ensure_machine(
        self,
        spec: MachineSpec,
        template: Optional[Template] = None,
        log: Optional[ContextAdapter] = None,
    ) -> EnsureResult:
        """Find the machine, creating and configuring it when a template is given.

        Raises NoSuchImage if the machine does not exist and no template
        was given.
        """
        log = log if log is not None else get_logger(__name__, machine=spec.fqdn)

        machine = self.machines.get(spec.fqdn)
        if machine is not None:
            log.debug("Already found")
            return EnsureResult(machine)

        log.debug("Fetching machine")
        try:
            result = EnsureResult(await self.manager.get_machine(spec.fqdn))
        except NoSuchImage:
            if template is None:
                raise
            log.info("Creating machine", extra={"template": template.image})
            try:
                result = EnsureResult(await template.create(spec.fqdn), changed=True, created=True)
            except ImageAlreadyExists as e:
                log.warning("Image already exists, skipping creation steps")
                result = EnsureResult(e.machine)

        machine = result.machine
        self.machines[spec.fqdn] = machine
        if template is None:
            return result

        log.info("Checking machine config")
        options_changed = await machine.ensure_options(spec.options, log)
        override_changed = await machine.ensure_override(spec.overrides, log)
        mounts_changed = await self.mounts.ensure_mounts(spec, log)

        result.changed = result.changed or options_changed or override_changed or mounts_changed
        result.reload = override_changed or mounts_changed
        if result.changed:
            await machine.stop(log)
        if mounts_changed:
            await self.mounts.unmount(spec, log)
        return result

    async def remove_machine(self, spec: MachineSpec, log: Optional[ContextAdapter] = None) -> None:
        """Remove a machine with its mounts and unit fragments.

        A machine that does not exist is already removed.
        """
        log = log if log is not None else get_logger(__name__, machine=spec.fqdn)
        try:
            result = await self.ensure_machine(spec, None, log)
        except NoSuchImage:
            log.info("Already absent")
            return

        machine = result.machine
        await machine.stop(log)
        await self.mounts.unmount(spec, log)
        reload = await self.mounts.remove_mounts(spec, log)
        await machine.ensure_options([], log)
        reload = await machine.ensure_override([], log) or reload
        await machine.remove()
        del self.machines[spec.fqdn]
        log.info("Removed machine")

        if reload:
            await self.manager.daemon_reload()

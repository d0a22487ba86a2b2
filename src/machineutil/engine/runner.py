"""Per-mode reconciliation loop over the configured machines."""

import logging
from enum import Enum
from typing import Optional

from machineutil.errors import NoSuchImage
from machineutil.engine.state import ReconciliationState
from machineutil.models.config import RunConfig
from machineutil.models.machine import MachineSpec
from machineutil.providers.commands import run_pipeline
from machineutil.utils.logging import ContextAdapter, get_logger
from machineutil.utils.systemd import SystemdDBus


logger = logging.getLogger(__name__)


class Mode(str, Enum):
    """What a run should do with every configured machine."""
    CREATE = "create"
    START = "start"
    STOP = "stop"
    DESTROY = "destroy"


async def reconcile_machine(
    state: ReconciliationState,
    spec: MachineSpec,
    mode: Mode,
    log: ContextAdapter,
) -> None:
    """Drive one machine according to ``mode``."""
    if mode is Mode.DESTROY:
        log.info("Removing")
        await state.remove_machine(spec, log)
        return

    template = state.discover_template(spec) if mode is Mode.CREATE else None

    log.info("Detecting machine")
    try:
        result = await state.ensure_machine(spec, template, log)
    except NoSuchImage:
        if mode is Mode.STOP:
            log.warning("Missing")
            return
        raise
    machine = result.machine
    log.info("Found")

    if mode is Mode.STOP:
        log.info("Stopping")
        await machine.stop(log)
        await state.mounts.unmount(spec, log)
        return

    if result.reload:
        await state.manager.daemon_reload()

    started = False
    if not await machine.is_running():
        log.info("Starting")
        await machine.start(log)
        started = True

    log.info("Waiting for address")
    addresses = await machine.wait_for_address(log)
    await run_pipeline(spec, addresses, created=result.created, started=started, log=log)


async def run(config: RunConfig, mode: Mode, bus: Optional[SystemdDBus] = None) -> None:
    """Reconcile every machine in document order.

    The first failure is logged with its machine and re-raised.
    """
    base_log = get_logger(__name__, mode=mode.value)
    state = await ReconciliationState.create(config, bus)
    try:
        base_log.info("Starting execution")
        for spec in config.machines:
            log = base_log.bind(machine=spec.fqdn)
            try:
                spec.normalize(config.systemd.machines_dir)
                await reconcile_machine(state, spec, mode, log)
            except Exception as e:
                log.error(f"Failed: {e}")
                raise
        base_log.info("Done.")
    finally:
        await state.close()

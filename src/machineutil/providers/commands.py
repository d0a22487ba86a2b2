"""Provisioning command pipeline."""

import asyncio
import logging
import os
import shlex
from contextlib import ExitStack
from typing import IO, Any, Dict, List, Optional, Sequence

from machineutil.models.machine import CommandSpec, MachineSpec
from machineutil.utils.logging import ContextAdapter, get_logger
from machineutil.utils.systemd import run_command


logger = logging.getLogger(__name__)


def assemble_pipeline(spec: MachineSpec, created: bool, started: bool) -> List[CommandSpec]:
    """Order the commands to run for this invocation.

    Pre-commands, creation (if created), startup (if started),
    post-creation (if created), then steady-state commands.
    """
    commands = list(spec.commands_pre)
    if created:
        commands.extend(spec.creation)
    if started:
        commands.extend(spec.startup)
    if created:
        commands.extend(spec.creation_post)
    commands.extend(spec.commands)
    return commands


def build_argv(command: CommandSpec, fqdn: str, addresses: Sequence[Any] = ()) -> List[str]:
    """Build the argument vector, wrapping remote commands in systemd-run."""
    if command.local:
        argv = list(command.command)
    else:
        argv = ["systemd-run", "-M", fqdn, "-P", *command.wrapper_parameters, "--", *command.command]
    if command.append_fqdn:
        argv.append(fqdn)
    if command.append_addr:
        argv.extend(str(addr) for addr in addresses)
    return argv


def _open_output(path: str, append: bool, mode: int) -> IO[bytes]:
    flags = os.O_WRONLY | os.O_CREAT | (os.O_APPEND if append else os.O_TRUNC)
    return os.fdopen(os.open(path, flags, mode), "wb")


async def run_provisioning_command(
    command: CommandSpec,
    fqdn: str,
    addresses: Sequence[Any] = (),
    log: Optional[ContextAdapter] = None,
) -> None:
    """Run one command with its stdio wiring.

    Raises subprocess.CalledProcessError on a non-zero exit.
    """
    log = log if log is not None else get_logger(__name__, machine=fqdn)
    argv = build_argv(command, fqdn, addresses)
    log.debug("Running command", extra={"command": shlex.join(argv)})

    with ExitStack() as stack:
        kwargs: Dict[str, Any] = {}
        stdin_data: Optional[bytes] = None

        if command.stdin_file:
            log.debug("Using stdin", extra={"file": command.stdin_file})
            kwargs["stdin"] = stack.enter_context(open(command.stdin_file, "rb"))
        elif command.stdin:
            log.debug("Using stdin", extra={"static": command.stdin})
            stdin_data = command.stdin.encode()
        else:
            kwargs["stdin"] = asyncio.subprocess.DEVNULL

        if command.stdout_file:
            log.debug("Using stdout", extra={"file": command.stdout_file, "append": command.stdout_append})
            kwargs["stdout"] = stack.enter_context(
                _open_output(command.stdout_file, command.stdout_append, command.mode)
            )
        if command.stderr_file:
            log.debug("Using stderr", extra={"file": command.stderr_file, "append": command.stderr_append})
            kwargs["stderr"] = stack.enter_context(
                _open_output(command.stderr_file, command.stderr_append, command.mode)
            )

        result = await run_command(
            argv,
            check=True,
            capture_output=True,
            timeout=command.timeout_seconds,
            input=stdin_data,
            **kwargs
        )

    if result.stdout:
        log.debug("Command output", extra={"stdout": result.stdout.rstrip()})
    if result.stderr:
        log.debug("Command errors", extra={"stderr": result.stderr.rstrip()})


async def run_pipeline(
    spec: MachineSpec,
    addresses: Sequence[Any],
    created: bool = False,
    started: bool = False,
    log: Optional[ContextAdapter] = None,
) -> None:
    """Run the assembled pipeline, stopping at the first failing command."""
    for command in assemble_pipeline(spec, created, started):
        await run_provisioning_command(command, spec.fqdn, addresses, log)

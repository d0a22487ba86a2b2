"""Pydantic models for the desired-state document."""

from machineutil.models.config import RunConfig, SystemdConfig, WaitConfig
from machineutil.models.machine import CommandSpec, MachineSpec
from machineutil.models.mount import MountSpec
from machineutil.models.unit import UnitOption

__all__ = [
    "RunConfig",
    "SystemdConfig",
    "WaitConfig",
    "CommandSpec",
    "MachineSpec",
    "MountSpec",
    "UnitOption",
]

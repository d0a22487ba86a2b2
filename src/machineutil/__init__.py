"""
machineutil - declarative reconciliation of systemd-nspawn machines.

Clones machines from versioned templates, converges their nspawn options,
service overrides and mount units, and runs provisioning commands.
"""

__version__ = "1.0.0"

# Re-export key components for easier access
from machineutil.models.config import RunConfig
from machineutil.models.machine import CommandSpec, MachineSpec
from machineutil.models.mount import MountSpec
from machineutil.models.unit import UnitOption

__all__ = [
    "RunConfig",
    "CommandSpec",
    "MachineSpec",
    "MountSpec",
    "UnitOption",
]

"""Configuration models."""

from typing import List
from pydantic import BaseModel, Field, field_validator

from machineutil.models.machine import MachineSpec


class SystemdConfig(BaseModel):
    """Systemd paths configuration."""
    machines_dir: str = Field(default="/var/lib/machines")
    nspawn_dir: str = Field(default="/etc/systemd/nspawn")
    system_dir: str = Field(default="/etc/systemd/system")


class WaitConfig(BaseModel):
    """Polling cadence and bounds for every wait on the system bus."""
    poll_interval_seconds: float = Field(default=1.0, gt=0)
    backoff_factor: float = Field(default=1.0, ge=1.0)
    max_poll_interval_seconds: float = Field(default=10.0, gt=0)
    job_timeout_seconds: float = Field(default=300.0, gt=0)
    state_timeout_seconds: float = Field(default=300.0, gt=0)
    address_timeout_seconds: float = Field(default=300.0, gt=0)


class RunConfig(BaseModel):
    """Desired-state document."""
    default_template: str = Field(default="", alias="defaulttemplate")
    machines: List[MachineSpec] = Field(default_factory=list)
    systemd: SystemdConfig = Field(default_factory=SystemdConfig)
    wait: WaitConfig = Field(default_factory=WaitConfig)

    class Config:
        """Pydantic config."""
        extra = "ignore"
        populate_by_name = True

    @field_validator("machines")
    @classmethod
    def validate_unique_fqdn(cls, v: List[MachineSpec]) -> List[MachineSpec]:
        """Reject machines sharing a fully qualified name."""
        seen = set()
        for machine in v:
            if machine.fqdn in seen:
                raise ValueError(f"Duplicate machine fqdn: {machine.fqdn}")
            seen.add(machine.fqdn)
        return v

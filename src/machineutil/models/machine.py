"""Machine and provisioning command specification models."""

from typing import List, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from machineutil.models.mount import MountSpec
from machineutil.models.unit import UnitOption


DEFAULT_FILE_MODE = 0o600
MAX_FILE_MODE = 0o777


class CommandSpec(BaseModel):
    """One provisioning command."""
    command: List[str] = Field(..., min_length=1, description="Program and arguments")
    wrapper_parameters: List[str] = Field(
        default_factory=list,
        alias="wrapperparameters",
        description="Extra systemd-run arguments for remote commands",
    )
    append_fqdn: bool = Field(default=False, alias="appendfqdn")
    append_addr: bool = Field(default=False, alias="appendaddr")
    local: bool = Field(default=False, description="Run on the host instead of inside the machine")
    stdin: Optional[str] = Field(None, description="Inline standard input")
    stdin_file: Optional[str] = Field(None, alias="stdinfile")
    stdout_file: Optional[str] = Field(None, alias="stdoutfile")
    stdout_append: bool = Field(default=False, alias="stdoutappend")
    stderr_file: Optional[str] = Field(None, alias="stderrfile")
    stderr_append: bool = Field(default=False, alias="stderrappend")
    mode: int = Field(default=DEFAULT_FILE_MODE, description="Permission bits for created output files")
    timeout_seconds: Optional[float] = Field(None, alias="timeout", gt=0)

    class Config:
        """Pydantic config."""
        extra = "forbid"
        populate_by_name = True

    @field_validator("mode", mode="before")
    @classmethod
    def parse_mode(cls, v: Union[int, str, None]) -> int:
        """Accept octal strings such as ``"0600"`` and map 0 to the default.

        Integers are taken as-is, so a decimal 600 lands above 0o777 and is
        rejected rather than setting special bits.
        """
        if v is None:
            return DEFAULT_FILE_MODE
        if isinstance(v, str):
            text = v.strip().lower()
            if text.startswith("0o"):
                text = text[2:]
            v = int(text, 8)
        if v < 0 or v > MAX_FILE_MODE:
            raise ValueError(
                f"Invalid file mode {v} ({v:#o}), permission bits must be at most 0o777; "
                'write octal modes as "0600" or 0o600'
            )
        return v or DEFAULT_FILE_MODE


class MachineSpec(BaseModel):
    """Desired state for one machine."""
    fqdn: str = Field(..., min_length=1, description="Fully qualified machine name")
    template: str = Field(default="", description="Template name, empty for the default")
    template_version: Optional[int] = Field(None, alias="templateversion", ge=0)
    options: List[UnitOption] = Field(default_factory=list, description="nspawn options")
    overrides: List[UnitOption] = Field(default_factory=list, description="Service overrides")
    mounts: List[MountSpec] = Field(default_factory=list)
    commands_pre: List[CommandSpec] = Field(default_factory=list, alias="commandspre")
    creation: List[CommandSpec] = Field(default_factory=list)
    creation_post: List[CommandSpec] = Field(default_factory=list, alias="creationpost")
    startup: List[CommandSpec] = Field(default_factory=list)
    commands: List[CommandSpec] = Field(default_factory=list)

    _normalized: bool = PrivateAttr(default=False)

    class Config:
        """Pydantic config."""
        extra = "ignore"
        populate_by_name = True

    def normalize(self, machines_dir: str = "/var/lib/machines") -> "MachineSpec":
        """Normalize mounts and add their binds and overrides.

        Only the first call has an effect.
        """
        if self._normalized:
            return self
        for mount in self.mounts:
            mount.normalize(machines_dir)
            self.options.append(mount.bind_option())
            self.overrides.append(mount.override_option())
        self._normalized = True
        return self

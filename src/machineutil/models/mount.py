"""Mount specification models."""

from pathlib import PurePosixPath
from typing import List, Optional

from pydantic import BaseModel, Field, PrivateAttr

from machineutil.models.unit import UnitOption, escape_path


AUTO_FS_OPTIONS = "x-systemd.makefs,x-systemd.growfs"


class MountSpec(BaseModel):
    """Host block device bind-mounted into a machine."""
    name: str = Field(..., description="Logical mount name")
    device: str = Field(..., description="Backing device path")
    target: str = Field(..., description="Bind target inside the machine")
    mount_point: Optional[str] = Field(None, alias="mountpoint", description="Host mount point")
    fs: Optional[str] = Field(None, description="Filesystem type")
    auto_fs: bool = Field(default=False, alias="autofs", description="Create and grow the filesystem")
    options: str = Field(default="", description="Comma separated mount options")
    mount_options: List[UnitOption] = Field(default_factory=list, alias="mountoptions")

    _normalized: bool = PrivateAttr(default=False)

    class Config:
        """Pydantic config."""
        extra = "forbid"
        populate_by_name = True

    def normalize(self, machines_dir: str = "/var/lib/machines") -> "MountSpec":
        """Fill in defaults and fold options into the mount unit options.

        Only the first call has an effect.
        """
        if self._normalized:
            return self
        if not self.mount_point:
            self.mount_point = str(PurePosixPath(machines_dir) / self.name)

        extra: List[UnitOption] = []
        if self.fs:
            extra.append(UnitOption("Mount", "Type", self.fs))

        options = self.options
        if self.auto_fs:
            options = f"{options},{AUTO_FS_OPTIONS}" if options else AUTO_FS_OPTIONS

        merged = list(self.mount_options) + extra
        if options:
            for i, opt in enumerate(merged):
                if opt.section == "Mount" and opt.name == "Options":
                    merged[i] = UnitOption("Mount", "Options", f"{opt.value},{options}")
                    break
            else:
                merged.append(UnitOption("Mount", "Options", options))

        self.options = options
        self.mount_options = merged
        self._normalized = True
        return self

    @property
    def unit_name(self) -> str:
        """Mount unit name derived from the host mount point."""
        return escape_path(self._require_mount_point()) + ".mount"

    def unit_options(self) -> List[UnitOption]:
        """Options of the host mount unit."""
        mount_point = self._require_mount_point()
        return [
            UnitOption("Unit", "Description", f"Machine mount point {self.name}"),
            UnitOption("Unit", "After", f"blockdev@{escape_path(self.device)}.target"),
            UnitOption("Mount", "What", self.device),
            UnitOption("Mount", "Where", mount_point),
            *self.mount_options,
        ]

    def bind_option(self) -> UnitOption:
        """Container bind of the host mount point with idmapped ownership."""
        return UnitOption("Files", "Bind", f"{self._require_mount_point()}:{self.target}:idmap")

    def override_option(self) -> UnitOption:
        """Service override making the container unit require the mount."""
        return UnitOption("Unit", "RequiresMountsFor", self._require_mount_point())

    def _require_mount_point(self) -> str:
        if not self.mount_point:
            raise ValueError(f"Mount {self.name} has not been normalized")
        return self.mount_point

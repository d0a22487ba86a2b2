"""Error taxonomy for machine reconciliation."""

import subprocess
from enum import Enum
from typing import Any, Optional


class MachineUtilError(Exception):
    """Base class for all machineutil errors."""


class BusErrorKind(Enum):
    """Structured classification of system bus failures."""
    NO_SUCH_IMAGE = "no-such-image"
    NO_SUCH_MACHINE = "no-such-machine"
    NO_SUCH_UNIT = "no-such-unit"
    NO_SUCH_OBJECT = "no-such-object"
    MALFORMED_REPLY = "malformed-reply"
    FAILED = "failed"


_ERROR_KINDS = {
    "org.freedesktop.machine1.NoSuchImage": BusErrorKind.NO_SUCH_IMAGE,
    "org.freedesktop.machine1.NoSuchMachine": BusErrorKind.NO_SUCH_MACHINE,
    "org.freedesktop.systemd1.NoSuchUnit": BusErrorKind.NO_SUCH_UNIT,
    "org.freedesktop.systemd1.NoSuchJob": BusErrorKind.NO_SUCH_OBJECT,
    "org.freedesktop.DBus.Error.UnknownObject": BusErrorKind.NO_SUCH_OBJECT,
    "org.freedesktop.DBus.Error.UnknownInterface": BusErrorKind.NO_SUCH_OBJECT,
    "org.freedesktop.DBus.Error.UnknownMethod": BusErrorKind.NO_SUCH_OBJECT,
}


def classify_error_name(error_name: str) -> BusErrorKind:
    """Map a D-Bus error name onto a BusErrorKind."""
    return _ERROR_KINDS.get(error_name, BusErrorKind.FAILED)


class BusError(MachineUtilError):
    """A call into the service or container manager failed."""

    def __init__(self, kind: BusErrorKind, error_name: str = "", text: str = ""):
        self.kind = kind
        self.error_name = error_name
        self.text = text
        super().__init__(f"{error_name or kind.value}: {text}" if text else (error_name or kind.value))

    @classmethod
    def from_name(cls, error_name: str, text: str = "") -> "BusError":
        kind = classify_error_name(error_name)
        if kind is BusErrorKind.NO_SUCH_IMAGE:
            return NoSuchImage(error_name=error_name, text=text)
        return cls(kind, error_name, text)

    @classmethod
    def malformed(cls, text: str) -> "BusError":
        return cls(BusErrorKind.MALFORMED_REPLY, text=text)


class NoSuchImage(BusError):
    """The container manager has no image under the requested name."""

    def __init__(self, error_name: str = "org.freedesktop.machine1.NoSuchImage", text: str = ""):
        super().__init__(BusErrorKind.NO_SUCH_IMAGE, error_name, text)


class ImageAlreadyExists(MachineUtilError):
    """A clone was requested for an image name that already exists."""

    def __init__(self, name: str, machine: Any):
        self.name = name
        self.machine = machine
        super().__init__(f"Image {name} already exists")


class MissingTemplate(MachineUtilError):
    """No template matched the requested name and version."""

    def __init__(self, fqdn: str, name: str = "", version: Optional[int] = None):
        self.fqdn = fqdn
        self.name = name
        self.version = version
        wanted = name or "<default>"
        if version is not None:
            wanted = f"{wanted} version {version}"
        super().__init__(f"Missing template ({wanted}) creating {fqdn}")


class OperationTimedOut(MachineUtilError):
    """A bounded wait expired before its condition was met."""

    def __init__(self, what: str, timeout: float):
        self.what = what
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for {what}")


class UnitParseError(MachineUtilError):
    """A persisted unit fragment could not be parsed."""


class CommandFailed(subprocess.CalledProcessError, MachineUtilError):
    """A command exited non-zero. The message carries its captured stderr."""

    def __str__(self) -> str:
        message = super().__str__()
        detail = (self.stderr or "").strip()
        return f"{message} stderr: {detail}" if detail else message

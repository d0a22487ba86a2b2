"""Unit option model and unit name escaping."""

import posixpath
from dataclasses import dataclass


@dataclass(frozen=True, order=True)
class UnitOption:
    """One ``Name=Value`` entry inside a ``[Section]`` of a unit fragment.

    Ordering is by section, then name, then value. Surrounding whitespace
    is stripped, as it is when a fragment is parsed back.
    """
    section: str
    name: str
    value: str

    def __post_init__(self):
        for attr in ("section", "name", "value"):
            object.__setattr__(self, attr, getattr(self, attr).strip())

    def __str__(self) -> str:
        return f"[{self.section}] {self.name}={self.value}"


def _is_plain(byte: int, first: bool) -> bool:
    char = chr(byte)
    if char == "." and not first:
        return True
    return char.isascii() and (char.isalnum() or char in ":_")


def escape_path(path: str) -> str:
    """Escape a filesystem path into a unit name the way systemd-escape --path does.

    ``.`` and ``..`` components are resolved first.
    """
    if path:
        path = posixpath.normpath(path)
    escaped = []
    first = True
    in_slashes = False
    for byte in path.encode():
        if byte == ord("/"):
            in_slashes = True
            continue
        if in_slashes:
            if not first:
                escaped.append("-")
            in_slashes = False
        if _is_plain(byte, first):
            escaped.append(chr(byte))
        else:
            escaped.append(f"\\x{byte:02x}")
        first = False
    return "".join(escaped) or "-"

"""Unit fragment parsing, serialization and reconciliation."""

from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from machineutil.errors import UnitParseError
from machineutil.models.unit import UnitOption
from machineutil.utils.logging import ContextAdapter


PathLike = Union[str, Path]


def parse_unit(text: str, source: str = "<unit>") -> List[UnitOption]:
    """Parse unit file text into options, keeping file order."""
    options: List[UnitOption] = []
    section: Optional[str] = None
    pending = ""

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if pending:
            line = pending + line
            pending = ""
        elif not line or line[0] in "#;":
            continue

        if line.endswith("\\"):
            pending = line[:-1] + " "
            continue

        if line.startswith("["):
            if not line.endswith("]"):
                raise UnitParseError(f"{source}:{lineno}: unterminated section header")
            section = line[1:-1].strip()
            if not section:
                raise UnitParseError(f"{source}:{lineno}: empty section name")
            continue

        if section is None:
            raise UnitParseError(f"{source}:{lineno}: option outside of a section")
        name, sep, value = line.partition("=")
        if not sep or not name.strip():
            raise UnitParseError(f"{source}:{lineno}: expected Name=Value")
        options.append(UnitOption(section, name.strip(), value.strip()))

    if pending:
        raise UnitParseError(f"{source}: line continuation at end of file")
    return options


def serialize_unit(options: Sequence[UnitOption]) -> str:
    """Serialize options, grouping them by section in first-seen order."""
    sections: dict = {}
    for opt in options:
        sections.setdefault(opt.section, []).append(opt)

    blocks = []
    for section, section_options in sections.items():
        lines = [f"[{section}]"]
        lines.extend(f"{opt.name}={opt.value}" for opt in section_options)
        blocks.append("\n".join(lines) + "\n")
    return "\n".join(blocks)


def read_unit(file_path: PathLike, sort: bool = False) -> List[UnitOption]:
    """Read a unit fragment. A missing file reads as no options."""
    path = Path(file_path)
    try:
        text = path.read_text()
    except FileNotFoundError:
        return []
    options = parse_unit(text, source=str(path))
    if sort:
        options.sort()
    return options


def write_unit(file_path: PathLike, options: Sequence[UnitOption]) -> None:
    """Overwrite a unit fragment, deleting it when there are no options."""
    path = Path(file_path)
    if not options:
        path.unlink(missing_ok=True)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(serialize_unit(options))


def diff_options(
    desired: Sequence[UnitOption],
    current: Sequence[UnitOption],
) -> Tuple[List[UnitOption], List[UnitOption], List[UnitOption]]:
    """Merge two sorted option lists into (add, keep, remove)."""
    add: List[UnitOption] = []
    keep: List[UnitOption] = []
    remove: List[UnitOption] = []
    i = j = 0
    while i < len(desired) and j < len(current):
        if desired[i] < current[j]:
            add.append(desired[i])
            i += 1
        elif current[j] < desired[i]:
            remove.append(current[j])
            j += 1
        else:
            keep.append(current[j])
            i += 1
            j += 1
    add.extend(desired[i:])
    remove.extend(current[j:])
    return add, keep, remove


def ensure_unit(
    file_path: PathLike,
    options: Iterable[UnitOption],
    log: Optional[ContextAdapter] = None,
) -> bool:
    """Make the fragment at ``file_path`` hold exactly ``options``.

    Returns True when the file was rewritten or deleted.
    """
    current = read_unit(file_path, sort=True)
    desired = sorted(options)
    add, keep, remove = diff_options(desired, current)

    if log is not None:
        unit_log = log.bind(unit=str(file_path))
        for opt in add:
            unit_log.info("Add", extra=_option_fields(opt))
        for opt in keep:
            unit_log.debug("Keep", extra=_option_fields(opt))
        for opt in remove:
            unit_log.info("Remove", extra=_option_fields(opt))

    if not add and not remove:
        return False
    write_unit(file_path, desired)
    return True


def _option_fields(opt: UnitOption) -> dict:
    return {"section": opt.section, "option": opt.name, "value": opt.value}

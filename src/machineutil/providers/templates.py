"""Template catalog for cloning new machines."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from machineutil.providers.machine import Machine
    from machineutil.providers.manager import MachineManager

logger = logging.getLogger(__name__)

TEMPLATE_SEPARATOR = "-template_"

_VERSION = re.compile(r"[0-9]+")


def parse_template_image(image_name: str) -> Optional[Tuple[str, int]]:
    """Split ``<name>-template_<version>`` into name and version."""
    name, sep, version = image_name.partition(TEMPLATE_SEPARATOR)
    if not sep or not _VERSION.fullmatch(version):
        return None
    return name, int(version)


class TemplateCollection(ABC):
    """Anything that can hand out a template."""

    @abstractmethod
    def template(self) -> Optional["Template"]:
        """Return the preferred template."""

    @abstractmethod
    def get(self, name: str, version: Optional[int] = None) -> Optional["Template"]:
        """Return the newest template called ``name``, or the exact ``version``."""


@dataclass(frozen=True, order=True)
class Template(TemplateCollection):
    """One immutable, versioned template image."""
    name: str
    version: int
    manager: Optional["MachineManager"] = field(default=None, compare=False, repr=False)

    @property
    def image(self) -> str:
        return f"{self.name}{TEMPLATE_SEPARATOR}{self.version}"

    def template(self) -> "Template":
        return self

    def get(self, name: str, version: Optional[int] = None) -> Optional["Template"]:
        if name != self.name:
            return None
        if version is not None and version != self.version:
            return None
        return self

    async def create(self, fqdn: str) -> "Machine":
        """Clone this template into a machine called ``fqdn``."""
        if self.manager is None:
            raise RuntimeError(f"Template {self.image} is not bound to a manager")
        return await self.manager.clone(self.image, fqdn)


class TemplateVersions(TemplateCollection):
    """Versions of templates, ordered by (name, version)."""

    def __init__(self, templates: Iterable[Template] = ()):
        self._templates: List[Template] = sorted(templates)

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self) -> Iterator[Template]:
        return iter(self._templates)

    def template(self) -> Optional[Template]:
        return self._templates[-1] if self._templates else None

    def get(self, name: str, version: Optional[int] = None) -> Optional[Template]:
        for candidate in reversed(self._templates):
            found = candidate.get(name, version)
            if found is not None:
                return found
        return None


class TemplateCatalog(TemplateCollection):
    """All templates grouped by name, with a configured default name."""

    def __init__(self, default: str, groups: Dict[str, TemplateVersions]):
        self.default = default
        self.groups = groups

    def __len__(self) -> int:
        return sum(len(group) for group in self.groups.values())

    @classmethod
    def from_images(
        cls,
        default: str,
        image_names: Iterable[str],
        manager: Optional["MachineManager"] = None,
    ) -> "TemplateCatalog":
        """Build a catalog from image names, skipping non-template images."""
        grouped: Dict[str, List[Template]] = {}
        for image_name in image_names:
            parsed = parse_template_image(image_name)
            if parsed is None:
                continue
            name, version = parsed
            grouped.setdefault(name, []).append(Template(name, version, manager))
        return cls(default, {name: TemplateVersions(t) for name, t in grouped.items()})

    def template(self) -> Optional[Template]:
        group = self.groups.get(self.default)
        return group.template() if group else None

    def get(self, name: str, version: Optional[int] = None) -> Optional[Template]:
        name = name or self.default
        group = self.groups.get(name)
        return group.get(name, version) if group else None

    def resolve(self, name: str = "", version: Optional[int] = None) -> Optional[Template]:
        """Resolve a template reference; an empty name means the default."""
        if not name and version is None:
            return self.template()
        return self.get(name, version)

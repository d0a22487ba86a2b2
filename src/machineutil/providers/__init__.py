"""Providers acting on machines, templates, mounts and commands."""

from machineutil.providers.job import Job
from machineutil.providers.machine import Machine
from machineutil.providers.manager import Image, MachineManager
from machineutil.providers.mount import MountCoordinator
from machineutil.providers.templates import (
    Template,
    TemplateCatalog,
    TemplateCollection,
    TemplateVersions,
)

__all__ = [
    "Job",
    "Machine",
    "Image",
    "MachineManager",
    "MountCoordinator",
    "Template",
    "TemplateCatalog",
    "TemplateCollection",
    "TemplateVersions",
]

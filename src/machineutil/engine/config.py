"""Desired-state document loading."""

import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import Any, Optional, TextIO

from ruamel.yaml import YAML
from ruamel.yaml.constructor import SafeConstructor
from pydantic import ValidationError

from machineutil.models.config import RunConfig


logger = logging.getLogger(__name__)

STDIN = "-"

_LEADING_ZERO_OCTAL = re.compile(r"[-+]?0[0-7]+")


class DocumentConstructor(SafeConstructor):
    """Safe constructor reading leading-zero integers such as ``0600`` as octal."""

    def construct_yaml_int(self, node):
        text = self.construct_scalar(node).replace("_", "")
        if _LEADING_ZERO_OCTAL.fullmatch(text):
            return int(text, 8)
        return super().construct_yaml_int(node)


DocumentConstructor.add_constructor(
    "tag:yaml.org,2002:int", DocumentConstructor.construct_yaml_int
)


class ConfigManager:
    """Reads and validates the desired-state document."""

    def __init__(self, source: str = STDIN, stdin: Optional[TextIO] = None):
        """Initialize configuration manager."""
        self.source = source
        self.stdin = stdin
        self.yaml = YAML(typ="safe")
        self.yaml.Constructor = DocumentConstructor
        self.config: Optional[RunConfig] = None

    async def load(self) -> RunConfig:
        """Load the document from a file or standard input."""
        text = await asyncio.to_thread(self._read)
        data = self._decode(text)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")

        try:
            self.config = RunConfig(**data)
        except ValidationError as e:
            logger.error(f"Invalid config: {e}")
            raise

        logger.info(f"Loaded {len(self.config.machines)} machine(s)")
        return self.config

    def _read(self) -> str:
        if self.source == STDIN:
            logger.info("Reading config from stdin")
            return (self.stdin or sys.stdin).read()
        logger.info(f"Reading config from {self.source}")
        return Path(self.source).read_text()

    def _decode(self, text: str) -> Any:
        if Path(self.source).suffix == ".json":
            logger.info("Using json decoder")
            return json.loads(text)
        logger.info("Using yaml decoder")
        return self.yaml.load(text)

"""Logging utilities."""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple


def setup_logging(level: str = "INFO"):
    """Setup logging configuration."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stderr)
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("dbus_next").setLevel(logging.WARNING)


class ContextAdapter(logging.LoggerAdapter):
    """Logger adapter rendering bound and per-call context as key=value pairs."""

    def __init__(self, logger: logging.Logger, context: Optional[dict] = None):
        super().__init__(logger, dict(context or {}))

    def bind(self, **context: Any) -> "ContextAdapter":
        """Return a child adapter with additional context."""
        return ContextAdapter(self.logger, {**self.extra, **context})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        fields = {**self.extra, **(kwargs.get("extra") or {})}
        kwargs["extra"] = fields
        if fields:
            rendered = " ".join(f"{key}={value}" for key, value in fields.items())
            msg = f"{msg} {rendered}"
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextAdapter:
    """Get a context adapter for the named logger."""
    return ContextAdapter(logging.getLogger(name), context)

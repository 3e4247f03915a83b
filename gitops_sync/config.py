"""Configuration objects for gitops-sync.

Configuration is read from an optional YAML file. Every section and field is
optional and falls back to its default, e.g.:

```yaml
source:
  freshness_seconds: 30
reconciler:
  resync_seconds: 60
  degraded_threshold: 5
  sync:
    timeout_seconds: 10
history_limit: 50
```
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import cast

import aiofiles

from .exceptions import InputException
from .manifest import BaseManifest
from .reconciler import ReconcilerConfig
from .registry.in_memory import DEFAULT_HISTORY_LIMIT
from .source import SourceConfig

__all__ = [
    "Config",
    "load_config",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class Config(BaseManifest):
    """Top level configuration."""

    source: SourceConfig = field(default_factory=SourceConfig)
    reconciler: ReconcilerConfig = field(default_factory=ReconcilerConfig)

    history_limit: int = DEFAULT_HISTORY_LIMIT
    """Number of sync results retained per Application."""


async def load_config(path: Path | None) -> Config:
    """Load the configuration file, or the defaults when no path is given."""
    if path is None:
        return Config()
    _LOGGER.debug("Loading configuration from %s", path)
    try:
        async with aiofiles.open(str(path)) as config_file:
            content = await config_file.read()
    except FileNotFoundError as err:
        raise InputException(f"Configuration file {path} not found") from err
    if not content.strip():
        return Config()
    try:
        return cast(Config, Config.parse_yaml(content))
    except (ValueError, TypeError, LookupError) as err:
        raise InputException(f"Invalid configuration file {path}: {err}") from err

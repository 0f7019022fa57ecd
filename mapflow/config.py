"""Configuration for the walkthrough and the CLI.

Defaults live in :data:`DEFAULTS`. A YAML file and/or a dict of overrides are
merged over them with strict rules: unknown keys and type changes are errors,
except int/float interchange and ``None`` on either side. Lists replace the
default instead of merging.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from mapflow.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "data": {
        "collisions": None,
        "neighbourhoods": None,
    },
    "crs": {
        "source": "EPSG:4326",
        # NAD83 / UTM zone 17N, metres
        "target": "EPSG:26917",
    },
    "analysis": {
        "ksi_classes": ["Fatal", "Non-Fatal Injury"],
        "buffer_distance": 500.0,
        "point_of_interest": {
            "name": "Toronto City Hall",
            "lon": -79.3841,
            "lat": 43.6534,
        },
    },
    "maps": {
        "dpi": 300,
        "figsize": [8, 8],
        "cmap": "OrRd",
        "scheme": "quantiles",
        "k": 5,
        "formats": ["png", "pdf"],
    },
    "output": {
        "dir": "outputs",
        "provenance": True,
    },
}


def deep_merge(base: Any, override: Any, path: str = "") -> Any:
    """Merge ``override`` into a copy of ``base``.

    Raises:
        ConfigError: For keys missing from ``base`` or incompatible types.
    """
    if isinstance(base, dict) and isinstance(override, dict):
        result = copy.deepcopy(base)
        for key, value in override.items():
            key_path = f"{path}.{key}" if path else key
            if key not in base:
                raise ConfigError(f"Unknown configuration key '{key_path}'")
            result[key] = deep_merge(base[key], value, path=key_path)
        return result

    if base is None or override is None:
        return override
    if isinstance(base, bool) != isinstance(override, bool):
        raise ConfigError(
            f"Type mismatch at '{path}': expected {type(base).__name__}, "
            f"got {type(override).__name__}"
        )
    if isinstance(base, (int, float)) and isinstance(override, (int, float)):
        return override
    if not isinstance(override, type(base)):
        raise ConfigError(
            f"Type mismatch at '{path}': expected {type(base).__name__}, "
            f"got {type(override).__name__}"
        )
    return override


@dataclass
class MapflowConfig:
    data: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULTS["data"]))
    crs: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULTS["crs"]))
    analysis: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULTS["analysis"]))
    maps: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULTS["maps"]))
    output: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULTS["output"]))

    @classmethod
    def from_dict(cls, values: dict[str, Any]) -> "MapflowConfig":
        merged = deep_merge(DEFAULTS, values)
        return cls(**merged)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": copy.deepcopy(self.data),
            "crs": copy.deepcopy(self.crs),
            "analysis": copy.deepcopy(self.analysis),
            "maps": copy.deepcopy(self.maps),
            "output": copy.deepcopy(self.output),
        }

    def get(self, *keys: str, default: Any = None) -> Any:
        """Nested lookup, e.g. ``config.get("maps", "dpi")``."""
        value: Any = self.to_dict()
        for key in keys:
            if not isinstance(value, dict) or key not in value:
                return default
            value = value[key]
        return value


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> MapflowConfig:
    """Defaults, then the YAML file at ``path``, then ``overrides``."""
    values = copy.deepcopy(DEFAULTS)

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                from_file = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Cannot parse {path}: {exc}") from exc
        if not isinstance(from_file, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
        values = deep_merge(values, from_file)
        logger.info("Loaded configuration from %s", path)

    if overrides:
        values = deep_merge(values, overrides)

    return MapflowConfig(**values)

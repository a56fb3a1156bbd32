"""Configuration loading utilities for SCnorm runs."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path
from typing import Any, Mapping

from scnorm.core.types import SCnormConfig
from scnorm.errors import ConfigurationError

# Camel-case parameter names accepted for compatibility with SCnorm scripts.
LEGACY_KEYS: dict[str, str] = {
    "FilterCellNum": "filter_cell_num",
    "FilterExpression": "filter_expression",
    "Thresh": "thresh",
    "K": "k",
    "PropToUse": "prop_to_use",
    "Tau": "tau",
    "ditherCounts": "dither_counts",
    "useSpikes": "use_spikes",
    "useZerosToScale": "use_zeros_to_scale",
    "reportSF": "report_sf",
}


def load_json_config(path: str | Path) -> dict[str, Any]:
    """Load and validate a run config from a JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")
    if config_path.suffix.lower() != ".json":
        raise ValueError(
            f"Unsupported config format for '{config_path}'. Use a .json config file."
        )

    try:
        with open(config_path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except json.JSONDecodeError as exc:
        raise ValueError(
            f"Invalid JSON in config '{config_path}' at line {exc.lineno}, "
            f"column {exc.colno}: {exc.msg}"
        ) from exc

    if not isinstance(data, dict):
        raise ValueError(
            f"Invalid config root in '{config_path}': expected JSON object, got {type(data).__name__}."
        )
    return data


def config_from_dict(mapping: Mapping[str, Any], base: SCnormConfig | None = None) -> SCnormConfig:
    """Build an `SCnormConfig` from snake_case or camel-case parameter names."""
    fields = {f.name for f in dataclasses.fields(SCnormConfig)}
    updates: dict[str, Any] = {}
    for key, value in mapping.items():
        name = LEGACY_KEYS.get(key, key)
        if name not in fields:
            raise ConfigurationError(
                f"Unknown configuration key '{key}'. Known keys: {sorted(fields)}."
            )
        if name in updates:
            raise ConfigurationError(f"Configuration key '{name}' given more than once.")
        if name == "k" and isinstance(value, list):
            value = tuple(value)
        updates[name] = value
    return dataclasses.replace(base or SCnormConfig(), **updates)


def load_config(path: str | Path) -> SCnormConfig:
    return config_from_dict(load_json_config(path))

"""Run configuration: YAML case files overlaid on built-in defaults."""
from __future__ import annotations

import copy
import os
from typing import Any, Optional

import yaml

DEFAULT_CONFIG = {
    "app": {"name": "magnetostatic-fem", "version": "0.1.0"},
    "solver": {"type": "los_lu", "tolerance": 1.0e-14, "max_iterations": 10000},
    "nonlinear": {"eps": 1.0e-12, "max_iter": 30, "relaxation": 0.5, "time_limit_s": None},
    "logging": {"dir": "data/logs", "level": "INFO"},
    "grid": {
        "r0": 0.0,
        "z0": 0.0,
        "width": 0.1,
        "first_layer_height": 0.05,
        "second_layer_height": 0.05,
        "horizontal_start_step": 0.005,
        "horizontal_coefficient": 1.1,
        "vertical_start_step": 0.005,
        "vertical_coefficient": 1.1,
        "split_point": None,
        "materials": [
            {"name": "Steel 1010", "current_density": 0.0},
            {"name": "Copper", "current_density": 1.0e5},
        ],
        "conditions": {
            "left": {"type": "first", "value": 0.0},
            "right": {"type": "first", "value": 0.0},
            "bottom": {"type": "first", "value": 0.0},
            "top": {"type": "second"},
        },
    },
}


def _merge(base: dict, override: dict, prefix: str = "") -> None:
    """Overlay ``override`` onto ``base`` in place; mapping sections stay mappings."""
    for key, value in override.items():
        dotted = f"{prefix}{key}"
        current = base.get(key)
        if isinstance(current, dict):
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ValueError(f"Configuration section '{dotted}' must be a mapping")
            _merge(current, value, dotted + ".")
        else:
            base[key] = value


def _load_case_file(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Case file {path} must contain a mapping at the top level")
    return data


class AppConfig:
    """Run settings: ``DEFAULT_CONFIG`` overlaid with an optional YAML case file.

    A missing case file leaves the defaults in place.

    Raises
    ------
    ValueError
        If the case file is not valid YAML, or replaces a section such as
        ``solver`` or ``grid`` with a non-mapping value.
    """

    def __init__(self, config_path: Optional[str] = None):
        self._source: Optional[str] = None
        self._data: dict = copy.deepcopy(DEFAULT_CONFIG)
        if config_path and os.path.exists(config_path):
            _merge(self._data, _load_case_file(config_path))
            self._source = config_path

    def get(self, dotted_key: str, default: Any = None) -> Any:
        node: Any = self._data
        for k in dotted_key.split("."):
            if not isinstance(node, dict) or k not in node:
                return default
            node = node[k]
        return node

    def set(self, dotted_key: str, value: Any) -> None:
        *parents, leaf = dotted_key.split(".")
        node = self._data
        for k in parents:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[leaf] = value

    def section(self, name: str) -> dict:
        """Deep copy of a top-level section, ``{}`` when absent."""
        value = self._data.get(name)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def save(self, path: str) -> None:
        """Write the merged configuration back out as YAML."""
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self._data, f, sort_keys=False)

    @property
    def source(self) -> Optional[str]:
        """Case file the settings were read from, if any."""
        return self._source

    @property
    def data(self) -> dict:
        return self._data

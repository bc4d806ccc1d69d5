"""
Configuration Loader (``ppe_config.loader``).

Responsibility
--------------
Loads a YAML policy file, applies ``PPE_*`` environment overrides and
parses the result into a frozen kernel ``StockPolicy``.  The public entry
point is ``ppe_config.get_policy_defaults()``.

Invariants enforced
-------------------
* Unknown policy keys and unparseable values raise ``ValueError``; there
  are no silent defaults for malformed input.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective policy for the config trace.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad value in file or environment  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from ppe_kernel.domain.policy import StockPolicy

ENV_PREFIX = "PPE_"

POLICY_KEYS = tuple(f.name for f in fields(StockPolicy))

_BOOL_KEYS = frozenset({"allow_negative_stock", "allow_forced_adjustments"})

_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"{key}: expected a boolean, got {value!r}")


def parse_hours(key: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a whole number of hours, got {value!r}")
    try:
        hours = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{key}: expected a whole number of hours, got {value!r}") from None
    if hours < 0:
        raise ValueError(f"{key}: must be >= 0, got {hours}")
    return hours


def env_overrides(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """``PPE_<KEY>`` variables for every policy key, keyed by policy key."""
    environ = os.environ if environ is None else environ
    return {
        key: environ[ENV_PREFIX + key.upper()]
        for key in POLICY_KEYS
        if ENV_PREFIX + key.upper() in environ
    }


def parse_policy(data: Mapping[str, Any]) -> StockPolicy:
    """
    Parse a ``StockPolicy`` from the ``policy`` mapping of a config file.

    Missing keys keep the ``StockPolicy`` defaults.

    Raises:
        ValueError: on an unknown key or an invalid value.
    """
    unknown = sorted(set(data) - set(POLICY_KEYS))
    if unknown:
        raise ValueError(f"Unknown policy keys: {', '.join(unknown)}")

    values = {
        key: parse_bool(key, raw) if key in _BOOL_KEYS else parse_hours(key, raw)
        for key, raw in data.items()
    }
    return StockPolicy(**values)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

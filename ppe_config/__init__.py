"""
ppe_config -- single public entrypoint for stock policy defaults.

Responsibility:
    ``get_policy_defaults()`` loads the YAML policy file, applies ``PPE_*``
    environment overrides and returns a frozen ``StockPolicy``.  The
    boundary layer overlays runtime_settings rows on top of it at the start
    of every operation.

Architecture position:
    Configuration -- sits above ``ppe_kernel`` and below ``ppe_services``.
    The kernel MUST NEVER import from ``ppe_config``.

Failure modes:
    - ``FileNotFoundError`` -- the policy file does not exist.
    - ``ValueError`` -- unknown key or invalid value in the file or the
      environment.

Audit relevance:
    Every call emits a ``PPE_CONFIG_TRACE`` log entry with the source
    path, config id, version and the checksum of the effective policy.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict
from pathlib import Path

from ppe_config.loader import compute_checksum, env_overrides, load_yaml_file, parse_policy
from ppe_kernel.domain.policy import StockPolicy

_logger = logging.getLogger("ppe_kernel.config")

DEFAULT_POLICY_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_policy_defaults(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> StockPolicy:
    """
    Effective policy defaults: file values overlaid with environment values.

    Args:
        path: Policy file.  Defaults to ppe_config/sets/default.yaml.
        environ: Environment mapping.  Defaults to ``os.environ``.

    Raises:
        FileNotFoundError: If the policy file does not exist.
        ValueError: If a key is unknown or a value does not parse.
    """
    source = Path(path) if path is not None else DEFAULT_POLICY_FILE
    document = load_yaml_file(source)

    data = dict(document.get("policy") or {})
    overrides = env_overrides(environ)
    data.update(overrides)
    policy = parse_policy(data)

    _logger.info(
        "PPE_CONFIG_TRACE",
        extra={
            "trace_type": "PPE_CONFIG_TRACE",
            "source_path": str(source),
            "config_id": document.get("config_id"),
            "config_version": document.get("version"),
            "env_override_keys": sorted(overrides),
            "checksum": compute_checksum(asdict(policy)),
        },
    )
    return policy


__all__ = ["DEFAULT_POLICY_FILE", "get_policy_defaults"]

"""
restaurant_config -- single public entrypoint for restaurant settings.

Responsibility:
    Provides ``get_active_settings()``, which loads, validates and returns
    the restaurant's ``RestaurantSettings``.  Services receive settings
    through ``RestaurantState``; only bootstrapping code calls this.

Architecture position:
    Configuration -- YAML-driven.  Sits above ``restaurant_kernel`` and
    below ``restaurant_services``.  The kernel and engines never import
    from this package.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- the file has no ``settings`` section, or a value
      fails validation.

Audit relevance:
    Every successful call emits a ``RESTAURANT_CONFIG_TRACE`` log entry with
    the file path, checksum and the stock deduction policy in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from restaurant_config.loader import compute_checksum, load_yaml_file, parse_settings
from restaurant_config.schema import RestaurantSettings

__all__ = ["RestaurantSettings", "get_active_settings"]

_logger = logging.getLogger("restaurant_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(config_path: Path | None = None) -> RestaurantSettings:
    """
    Load the active restaurant settings.

    Args:
        config_path: Override path to a settings YAML file.  Defaults to
            ``restaurant_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file has no ``settings`` mapping or a value is
            invalid.
    """
    path = config_path or _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)

    section = data.get("settings")
    if not isinstance(section, dict):
        raise ValueError(f"Settings file {path} has no 'settings' mapping")

    settings = parse_settings(section)

    _logger.info(
        "RESTAURANT_CONFIG_TRACE",
        extra={
            "trace_type": "RESTAURANT_CONFIG_TRACE",
            "config_path": str(path),
            "config_version": data.get("version"),
            "checksum": compute_checksum(data),
            "stock_deduction_policy": settings.stock_deduction_policy.value,
            "loyalty_enabled": settings.loyalty.enabled,
        },
    )
    return settings

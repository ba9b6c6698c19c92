"""
Engine Configuration (``stock_kernel.config``).

Responsibility
--------------
Defines the typed ``EngineConfig`` and loads it from a YAML file, with
``STOCK_KERNEL_*`` environment variables taking precedence over file
values.  Services receive an ``EngineConfig`` by constructor injection and
never read files or environment variables themselves.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from stock_kernel.logging_config import get_logger

logger = get_logger("config")

ENV_PREFIX = "STOCK_KERNEL_"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class EngineConfig:
    """
    Runtime settings for the stock kernel.

    Field defaults are suitable for local development against SQLite.
    """

    database_url: str = "sqlite:///stock_kernel.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    sqlite_busy_timeout: float = 30.0

    # Fulfillment
    max_fulfillment_attempts: int = 3
    reject_multi_warehouse_orders: bool = False

    # Reporting
    low_stock_threshold: int = 10

    log_level: str = "INFO"

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        if self.max_overflow < 0:
            raise ValueError("max_overflow cannot be negative")
        if self.sqlite_busy_timeout <= 0:
            raise ValueError("sqlite_busy_timeout must be positive")
        if self.max_fulfillment_attempts < 1:
            raise ValueError("max_fulfillment_attempts must be at least 1")
        if self.low_stock_threshold < 0:
            raise ValueError("low_stock_threshold cannot be negative")
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _coerce(name: str, raw: str, default: Any) -> Any:
    """Convert an environment string to the type of the field default."""
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


def load_config(
    path: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """
    Build an ``EngineConfig`` from defaults, an optional YAML file and the
    environment.

    The YAML file may either hold the keys at top level or nest them under
    a ``stock_kernel:`` mapping.

    Args:
        path: YAML file to read. ``None`` skips the file layer.
        env: Environment mapping; defaults to ``os.environ``.

    Returns:
        A validated, frozen ``EngineConfig``.
    """
    env = os.environ if env is None else env
    known = {f.name: f.default for f in fields(EngineConfig)}
    values: dict[str, Any] = {}

    if path is not None:
        data = load_yaml_file(Path(path))
        if "stock_kernel" in data:
            data = data["stock_kernel"] or {}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        values.update(data)

    for name, default in known.items():
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _coerce(name, raw, default)

    config = EngineConfig(**values)
    logger.info(
        "config_loaded",
        extra={
            "source": str(path) if path is not None else None,
            "max_fulfillment_attempts": config.max_fulfillment_attempts,
            "reject_multi_warehouse_orders": config.reject_multi_warehouse_orders,
            "low_stock_threshold": config.low_stock_threshold,
        },
    )
    return config

"""
Engine settings loader (``journal_config.settings``).

Responsibility
--------------
Builds the frozen ``EngineSettings`` the calling layer hands to the kernel
and batch services.  Three layers, later ones winning:

1. the packaged ``defaults.yaml``;
2. an optional user YAML file;
3. the environment (``JOURNAL_DATABASE_URL``, ``JOURNAL_LOG_LEVEL``).

Invariants enforced
-------------------
* Every parsed value is validated; nothing falls back silently once a key
  is present with a bad value.
* Amounts are ``Decimal`` (parsed through ``str``), never float.
* Batch limits are positive integers keyed by ``BatchOperation``.

Failure modes
-------------
* Missing user file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ConfigurationError`` naming the setting.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from journal_batch.domain.types import DEFAULT_BATCH_LIMITS, BatchOperation
from journal_kernel.exceptions import ConfigurationError
from journal_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_DATABASE_URL = "JOURNAL_DATABASE_URL"
ENV_LOG_LEVEL = "JOURNAL_LOG_LEVEL"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


@dataclass(frozen=True)
class EngineSettings:
    """Resolved engine settings."""

    database_url: str = "sqlite:///journal.db"
    balance_tolerance: Decimal = Decimal("0.01")
    batch_limits: Mapping[BatchOperation, int] = field(
        default_factory=lambda: dict(DEFAULT_BATCH_LIMITS),
    )
    large_amount_warning: Decimal = Decimal("1000000")
    reference_prefix: str = "JE"
    log_level: str = "INFO"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML mapping; an empty file yields ``{}``."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _parse_decimal(name: str, value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(name, f"not a number: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise ConfigurationError(name, f"must be a positive amount, got {value!r}")
    return amount


def _parse_limits(value: Any) -> dict[BatchOperation, int]:
    if not isinstance(value, dict):
        raise ConfigurationError("batch_limits", "must be a mapping of operation to size")
    limits = dict(DEFAULT_BATCH_LIMITS)
    for key, size in value.items():
        try:
            operation = BatchOperation(str(key).lower())
        except ValueError:
            raise ConfigurationError("batch_limits", f"unknown operation {key!r}")
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ConfigurationError(
                f"batch_limits.{operation.value}", f"must be a positive integer, got {size!r}",
            )
        limits[operation] = size
    return limits


def _parse_log_level(value: Any) -> str:
    level = str(value).upper()
    if level not in _LOG_LEVELS:
        raise ConfigurationError("log_level", f"unknown level {value!r}")
    return level


def _parse_prefix(value: Any) -> str:
    prefix = str(value).strip()
    if not prefix or "-" in prefix or "%" in prefix:
        raise ConfigurationError("reference_prefix", f"invalid prefix {value!r}")
    return prefix


def settings_from_dict(data: dict[str, Any]) -> EngineSettings:
    """Validate a merged settings mapping into ``EngineSettings``."""
    defaults = EngineSettings()
    database_url = data.get("database_url", defaults.database_url)
    if not database_url or not isinstance(database_url, str):
        raise ConfigurationError("database_url", "must be a non-empty string")

    return EngineSettings(
        database_url=database_url,
        balance_tolerance=_parse_decimal(
            "balance_tolerance", data.get("balance_tolerance", defaults.balance_tolerance),
        ),
        batch_limits=_parse_limits(data.get("batch_limits", {})),
        large_amount_warning=_parse_decimal(
            "large_amount_warning", data.get("large_amount_warning", defaults.large_amount_warning),
        ),
        reference_prefix=_parse_prefix(data.get("reference_prefix", defaults.reference_prefix)),
        log_level=_parse_log_level(data.get("log_level", defaults.log_level)),
    )


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Load packaged defaults, overlay ``path`` and then the environment."""
    environ = os.environ if environ is None else environ

    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]
    if path is not None:
        data = _merge(data, load_yaml_file(Path(path)))
        sources.append(str(path))

    if environ.get(ENV_DATABASE_URL):
        data["database_url"] = environ[ENV_DATABASE_URL]
        sources.append(ENV_DATABASE_URL)
    if environ.get(ENV_LOG_LEVEL):
        data["log_level"] = environ[ENV_LOG_LEVEL]
        sources.append(ENV_LOG_LEVEL)

    settings = settings_from_dict(data)
    logger.debug(
        "settings_loaded",
        extra={
            "sources": sources,
            "reference_prefix": settings.reference_prefix,
            "balance_tolerance": settings.balance_tolerance,
        },
    )
    return settings

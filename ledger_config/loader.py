"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Reads YAML files, merges an optional override file over the shipped
defaults, and parses the result into ``ledger_config.schema`` dataclasses.
Runtime callers use ``ledger_config.get_active_config()`` instead of this
module.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass.
* Values are validated on parse; invalid values raise ``ValueError`` with the
  offending key in the message, never a silent default.
* ``compute_checksum`` is deterministic for identical effective values.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AuditConfig,
    DatabaseConfig,
    LedgerEngineConfig,
    LoggingConfig,
    MatchingConfig,
    SplitConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML file and return its contents as a dict (empty for an empty file).

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def _positive_int(section: dict[str, Any], key: str, default: int, minimum: int = 1) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{key} must be an integer >= {minimum}, got {value!r}")
    return value


def parse_split(data: dict[str, Any]) -> SplitConfig:
    raw = data.get("fallback_creator_percent", 80)
    try:
        percent = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"fallback_creator_percent must be a number, got {raw!r}")
    if percent < 0 or percent > 100:
        raise ValueError(f"fallback_creator_percent must be within 0..100, got {raw!r}")
    return SplitConfig(fallback_creator_percent=percent)


def parse_matching(data: dict[str, Any]) -> MatchingConfig:
    page = _positive_int(data, "list_page_size", 100)
    max_page = _positive_int(data, "max_page_size", 500)
    if page > max_page:
        raise ValueError(f"list_page_size ({page}) exceeds max_page_size ({max_page})")
    return MatchingConfig(
        date_tolerance_days=_positive_int(data, "date_tolerance_days", 2, minimum=0),
        list_page_size=page,
        max_page_size=max_page,
    )


def parse_audit(data: dict[str, Any]) -> AuditConfig:
    return AuditConfig(
        enabled=bool(data.get("enabled", True)),
        worker_count=_positive_int(data, "worker_count", 2),
    )


_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {level!r}")
    return LoggingConfig(level=level)


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    url = data.get("url")
    if not url or not isinstance(url, str):
        raise ValueError("database.url is required")
    return DatabaseConfig(
        url=url,
        pool_size=_positive_int(data, "pool_size", 20),
        max_overflow=_positive_int(data, "max_overflow", 10, minimum=0),
        echo=bool(data.get("echo", False)),
    )


def parse_config(data: dict[str, Any], source: str) -> LedgerEngineConfig:
    """Parse a merged configuration dict into a LedgerEngineConfig."""
    ledger = data.get("ledger", {}) or {}
    currency = str(ledger.get("default_currency", "USD")).upper()
    return LedgerEngineConfig(
        default_currency=currency,
        split=parse_split(data.get("split", {}) or {}),
        matching=parse_matching(data.get("matching", {}) or {}),
        audit=parse_audit(data.get("audit", {}) or {}),
        database=parse_database(data.get("database", {}) or {}),
        logging=parse_logging(data.get("logging", {}) or {}),
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

"""
ledger_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It loads the shipped ``defaults.yaml``, merges an optional
    override file, applies the ``DATABASE_URL`` environment override, and
    returns a frozen ``LedgerEngineConfig``.

Architecture position:
    Configuration sits above ``ledger_kernel`` and below ``ledger_services``.
    The kernel never imports from this package; the API facade reads the
    config and passes plain values (fallback percent, tolerance, page size)
    into kernel services.

Failure modes:
    - ``FileNotFoundError`` for a missing override file.
    - ``ValueError`` for invalid values.

Audit relevance:
    Every call logs ``config_loaded`` with the source and checksum of the
    effective configuration, tying behaviour such as the fallback creator
    percent to an exact configuration.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ledger_config.loader import load_yaml_file, merge_config, parse_config
from ledger_config.schema import (
    AuditConfig,
    DatabaseConfig,
    LedgerEngineConfig,
    LoggingConfig,
    MatchingConfig,
    SplitConfig,
)

_logger = logging.getLogger("ledger_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> LedgerEngineConfig:
    """
    The public configuration entrypoint.

    Args:
        config_path: Override file merged over the defaults.  Falls back to
            ``$LEDGER_CONFIG_PATH`` when not given.

    Returns:
        Frozen LedgerEngineConfig.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    source = "defaults"

    override_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    if override_path:
        data = merge_config(data, load_yaml_file(Path(override_path)))
        source = str(override_path)

    database_url = os.environ.get(DATABASE_URL_ENV)
    if database_url:
        data = merge_config(data, {"database": {"url": database_url}})

    config = parse_config(data, source=source)

    _logger.info(
        "config_loaded",
        extra={
            "config_source": config.source,
            "checksum": config.checksum,
            "fallback_creator_percent": str(config.split.fallback_creator_percent),
            "date_tolerance_days": config.matching.date_tolerance_days,
        },
    )
    return config


__all__ = [
    "AuditConfig",
    "DatabaseConfig",
    "LedgerEngineConfig",
    "LoggingConfig",
    "MatchingConfig",
    "SplitConfig",
    "get_active_config",
]

"""
Configuration schema (``ledger_config.schema``).

Frozen dataclasses for every configuration section.  Instances are built by
``ledger_config.loader`` and never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class SplitConfig:
    fallback_creator_percent: Decimal = Decimal("80")


@dataclass(frozen=True)
class MatchingConfig:
    date_tolerance_days: int = 2
    list_page_size: int = 100
    max_page_size: int = 500


@dataclass(frozen=True)
class AuditConfig:
    enabled: bool = True
    worker_count: int = 2


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///ledger.db"
    pool_size: int = 20
    max_overflow: int = 10
    echo: bool = False


@dataclass(frozen=True)
class LedgerEngineConfig:
    """
    Effective configuration for one process.

    ``checksum`` identifies the effective values (after overrides) and is
    logged with every load.
    """

    default_currency: str = "USD"
    split: SplitConfig = field(default_factory=SplitConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str = "defaults"
    checksum: str = ""

"""
Stock Kernel Configuration Schema.

Defines the structure and sensible defaults for engine settings.
Values may be overridden from a YAML file and from environment variables:

    config = load_config("stock_kernel.yaml")
    init_engine_from_config(config)
"""

import os
from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from stock_kernel.logging_config import get_logger

logger = get_logger("config")

ENV_DATABASE_URL = "STOCK_KERNEL_DATABASE_URL"
ENV_LOG_LEVEL = "STOCK_KERNEL_LOG_LEVEL"

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
VALID_PAYMENT_METHODS = {"cash", "transfer", "card", "credit", "installment", "cod"}

DEFAULT_TRANSACTION_PREFIXES = {
    "import": "PNK",
    "export": "PXK",
    "transfer": "PCK",
    "disposal": "PXH",
    "stocktake": "PKK",
}


@dataclass
class EngineConfig:
    """
    Configuration schema for the stock kernel.

    Field defaults match a single-node development setup against SQLite.
    Override at instantiation or through ``from_dict``/``load_config``.
    """

    # Persistence
    database_url: str = "sqlite:///stock_kernel.db"
    echo_sql: bool = False
    pool_size: int = 20
    max_overflow: int = 10

    # Logging
    log_level: str = "INFO"

    # Orders
    deferred_payment_methods: tuple[str, ...] = ("credit", "installment")

    # Document code prefixes
    transaction_code_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_TRANSACTION_PREFIXES)
    )
    order_code_prefix: str = "DH"
    delivery_code_prefix: str = "GH"
    receipt_code_prefix: str = "PT"
    transfer_code_prefix: str = "ST"

    # Low-stock alert buckets, as percent of product.min_stock_level
    low_stock_critical_percent: Decimal = Decimal("25")
    low_stock_warning_percent: Decimal = Decimal("50")

    def __post_init__(self):
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {VALID_LOG_LEVELS}, got '{self.log_level}'"
            )

        if self.pool_size <= 0:
            raise ValueError("pool_size must be positive")
        if self.max_overflow < 0:
            raise ValueError("max_overflow cannot be negative")

        self.deferred_payment_methods = tuple(self.deferred_payment_methods)
        unknown = set(self.deferred_payment_methods) - VALID_PAYMENT_METHODS
        if unknown:
            raise ValueError(
                f"deferred_payment_methods contains unknown methods: {sorted(unknown)}"
            )

        missing = set(DEFAULT_TRANSACTION_PREFIXES) - set(self.transaction_code_prefixes)
        if missing:
            raise ValueError(
                f"transaction_code_prefixes missing types: {sorted(missing)}"
            )

        self.low_stock_critical_percent = Decimal(str(self.low_stock_critical_percent))
        self.low_stock_warning_percent = Decimal(str(self.low_stock_warning_percent))
        if not (
            Decimal("0")
            < self.low_stock_critical_percent
            < self.low_stock_warning_percent
            < Decimal("100")
        ):
            raise ValueError(
                "low stock thresholds must satisfy 0 < critical < warning < 100"
            )

        logger.debug(
            "engine_config_initialized",
            extra={
                "dialect": self.database_url.split(":", 1)[0],
                "log_level": self.log_level,
                "deferred_payment_methods": list(self.deferred_payment_methods),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with development defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g., parsed YAML)."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")
        logger.info(
            "engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_config(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> EngineConfig:
    """
    Build an EngineConfig from an optional YAML file plus environment overrides.

    Environment variables win over file values:
        STOCK_KERNEL_DATABASE_URL -> database_url
        STOCK_KERNEL_LOG_LEVEL    -> log_level
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    if path is not None:
        data = load_yaml_file(Path(path))
        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

    if env.get(ENV_DATABASE_URL):
        data["database_url"] = env[ENV_DATABASE_URL]
    if env.get(ENV_LOG_LEVEL):
        data["log_level"] = env[ENV_LOG_LEVEL]

    return EngineConfig.from_dict(data)

"""
Tests for EngineConfig and load_config.

Covers:
- Defaults and validation
- Loading from YAML
- Environment variable overrides
- Start-up wiring and session_scope
"""

import logging
from decimal import Decimal
from uuid import uuid4

import pytest
import yaml

import stock_kernel.db.engine as engine_module
from stock_kernel.config import (
    ENV_DATABASE_URL,
    ENV_LOG_LEVEL,
    EngineConfig,
    load_config,
    load_yaml_file,
)
from stock_kernel.exceptions import WarehouseNotFoundError
from stock_kernel.logging_config import configure_logging, reset_logging
from stock_kernel.services.reference_data_service import ReferenceDataService


class TestEngineConfigDefaults:

    def test_defaults(self):
        config = EngineConfig.with_defaults()

        assert config.log_level == "INFO"
        assert config.deferred_payment_methods == ("credit", "installment")
        assert config.transaction_code_prefixes["import"] == "PNK"
        assert config.transaction_code_prefixes["export"] == "PXK"
        assert config.order_code_prefix == "DH"
        assert config.transfer_code_prefix == "ST"
        assert config.low_stock_critical_percent == Decimal("25")
        assert config.low_stock_warning_percent == Decimal("50")

    def test_log_level_normalized(self):
        assert EngineConfig(log_level="debug").log_level == "DEBUG"


class TestEngineConfigValidation:

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValueError, match="log_level"):
            EngineConfig(log_level="CHATTY")

    def test_non_positive_pool_rejected(self):
        with pytest.raises(ValueError, match="pool_size"):
            EngineConfig(pool_size=0)

    def test_unknown_payment_method_rejected(self):
        with pytest.raises(ValueError, match="deferred_payment_methods"):
            EngineConfig(deferred_payment_methods=("credit", "barter"))

    def test_missing_transaction_prefix_rejected(self):
        with pytest.raises(ValueError, match="stocktake"):
            EngineConfig(
                transaction_code_prefixes={
                    "import": "PNK",
                    "export": "PXK",
                    "transfer": "PCK",
                    "disposal": "PXH",
                }
            )

    @pytest.mark.parametrize(
        "critical, warning",
        [("0", "50"), ("50", "50"), ("60", "50"), ("25", "100")],
    )
    def test_threshold_ordering_enforced(self, critical, warning):
        with pytest.raises(ValueError, match="critical < warning"):
            EngineConfig(
                low_stock_critical_percent=Decimal(critical),
                low_stock_warning_percent=Decimal(warning),
            )

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            EngineConfig.from_dict({"database_url": "sqlite://", "flux_capacitor": True})


class TestLoadConfig:

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "stock_kernel.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "database_url": "sqlite:///warehouse.db",
                    "log_level": "warning",
                    "deferred_payment_methods": ["credit", "cod"],
                    "low_stock_critical_percent": 10,
                    "low_stock_warning_percent": 30,
                }
            )
        )

        config = load_config(path, environ={})

        assert config.database_url == "sqlite:///warehouse.db"
        assert config.log_level == "WARNING"
        assert config.deferred_payment_methods == ("credit", "cod")
        assert config.low_stock_critical_percent == Decimal("10")
        assert config.low_stock_warning_percent == Decimal("30")

    def test_environment_overrides_file(self, tmp_path):
        path = tmp_path / "stock_kernel.yaml"
        path.write_text("database_url: sqlite:///from_file.db\nlog_level: INFO\n")

        config = load_config(
            path,
            environ={
                ENV_DATABASE_URL: "postgresql://stock@localhost/stock",
                ENV_LOG_LEVEL: "ERROR",
            },
        )

        assert config.database_url == "postgresql://stock@localhost/stock"
        assert config.log_level == "ERROR"

    def test_environment_only(self):
        config = load_config(environ={ENV_DATABASE_URL: "sqlite://"})

        assert config.database_url == "sqlite://"
        assert config.log_level == "INFO"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_yaml_file(path) == {}
        assert load_config(path, environ={}).pool_size == EngineConfig().pool_size

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            load_config(path, environ={})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", environ={})


class TestStartup:

    @pytest.fixture
    def isolated_engine(self, monkeypatch):
        """Swap out the module engine and logging; restore both afterwards."""
        monkeypatch.setattr(engine_module, "_engine", None)
        monkeypatch.setattr(engine_module, "_SessionFactory", None)
        reset_logging()
        yield
        if engine_module._engine is not None:
            engine_module._engine.dispose()
        reset_logging()
        configure_logging(level=logging.DEBUG)

    def test_init_engine_from_config(self, isolated_engine):
        config = EngineConfig(database_url="sqlite://", log_level="warning")

        engine = engine_module.init_engine_from_config(config)

        assert engine_module.get_engine() is engine
        assert engine.dialect.name == "sqlite"
        assert logging.getLogger("stock_kernel").level == logging.WARNING

    def test_session_scope_commits_and_rolls_back(self, isolated_engine):
        engine_module.init_engine_from_config(EngineConfig(database_url="sqlite://"))
        engine_module.create_tables()
        actor_id = uuid4()

        with engine_module.session_scope() as session:
            ReferenceDataService(session).create_warehouse("WH-KEEP", "Kept", actor_id)

        with pytest.raises(WarehouseNotFoundError):
            with engine_module.session_scope() as session:
                ReferenceDataService(session).create_warehouse("WH-LOST", "Lost", actor_id)
                ReferenceDataService(session).require_active_warehouse(uuid4())

        with engine_module.session_scope() as session:
            codes = [w.warehouse_code for w in ReferenceDataService(session).list_warehouses()]
        assert codes == ["WH-KEEP"]
        assert engine_module.is_postgres() is False

    def test_accessors_require_initialization(self, isolated_engine):
        with pytest.raises(RuntimeError, match="init_engine_from_config"):
            engine_module.get_session()

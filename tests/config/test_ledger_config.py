"""
Tests for treasury configuration loading.

Covers:
- LedgerConfig validation and defaults -- pure, no files
- YAML loading with and without the ``treasury:`` section
- get_active_config resolution order and environment overrides
"""

from __future__ import annotations

import dataclasses
import logging

import pytest
import yaml

from treasury_config import (
    CONFIG_ENV_VAR,
    DATABASE_URL_ENV_VAR,
    LedgerConfig,
    get_active_config,
    load_config,
    load_yaml_file,
)


# =========================================================================
# 1. Schema
# =========================================================================


class TestLedgerConfigSchema:

    def test_defaults(self):
        config = LedgerConfig()
        assert config.base_currency == "LYD"
        assert config.money_decimal_places == 3
        assert config.allow_overdraft is True
        assert config.max_conflict_retries == 3
        assert config.log_level == "INFO"
        assert config.default_payment_method == "CASH"

    def test_decimal_places_follow_base_currency(self):
        assert LedgerConfig(base_currency="USD").money_decimal_places == 2
        assert LedgerConfig(base_currency="JPY").money_decimal_places == 0

    def test_explicit_decimal_places_kept(self):
        assert LedgerConfig(money_decimal_places=6).money_decimal_places == 6

    def test_currency_normalized(self):
        assert LedgerConfig(base_currency="eur").base_currency == "EUR"

    def test_unsupported_currency_rejected(self):
        with pytest.raises(ValueError, match="base_currency"):
            LedgerConfig(base_currency="XXX")

    @pytest.mark.parametrize("places", [-1, 10])
    def test_decimal_places_out_of_range(self, places):
        with pytest.raises(ValueError, match="money_decimal_places"):
            LedgerConfig(money_decimal_places=places)

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError, match="max_conflict_retries"):
            LedgerConfig(max_conflict_retries=-1)

    def test_empty_database_url_rejected(self):
        with pytest.raises(ValueError, match="database_url"):
            LedgerConfig(database_url="")

    def test_log_level_normalized(self):
        config = LedgerConfig(log_level="debug")
        assert config.log_level == "DEBUG"
        assert config.log_level_number == logging.DEBUG

    def test_bad_log_level_rejected(self):
        with pytest.raises(ValueError, match="log_level"):
            LedgerConfig(log_level="chatty")

    def test_frozen(self):
        config = LedgerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.allow_overdraft = False  # type: ignore[misc]

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown configuration keys: colour"):
            LedgerConfig.from_dict({"base_currency": "LYD", "colour": "blue"})

    def test_to_dict_round_trips(self):
        config = LedgerConfig(allow_overdraft=False, max_conflict_retries=5)
        assert LedgerConfig.from_dict(config.to_dict()) == config


# =========================================================================
# 2. Loader
# =========================================================================


class TestLoader:

    def test_treasury_section(self, tmp_path):
        path = tmp_path / "treasury.yaml"
        path.write_text(yaml.safe_dump({"treasury": {"allow_overdraft": False}}))
        assert load_config(path).allow_overdraft is False

    def test_top_level_settings(self, tmp_path):
        path = tmp_path / "flat.yaml"
        path.write_text("base_currency: USD\nmax_conflict_retries: 0\n")
        config = load_config(path)
        assert config.base_currency == "USD"
        assert config.max_conflict_retries == 0

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == LedgerConfig()

    def test_non_mapping_document_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_yaml_file(path)

    def test_non_mapping_section_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("treasury: [1, 2]\n")
        with pytest.raises(ValueError, match="'treasury' section"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("treasury: {base_currency: [\n")
        with pytest.raises(yaml.YAMLError):
            load_config(path)


# =========================================================================
# 3. get_active_config
# =========================================================================


class TestGetActiveConfig:

    @pytest.fixture(autouse=True)
    def _clean_env(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        monkeypatch.delenv(DATABASE_URL_ENV_VAR, raising=False)

    def test_packaged_default(self):
        config = get_active_config()
        assert config.base_currency == "LYD"
        assert config.allow_overdraft is True

    def test_explicit_path_wins(self, tmp_path, monkeypatch):
        env_file = tmp_path / "env.yaml"
        env_file.write_text("treasury: {base_currency: USD}\n")
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text("treasury: {base_currency: EUR}\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_file))

        assert get_active_config(explicit).base_currency == "EUR"

    def test_env_file(self, tmp_path, monkeypatch):
        env_file = tmp_path / "env.yaml"
        env_file.write_text("treasury: {base_currency: USD}\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(env_file))

        assert get_active_config().base_currency == "USD"

    def test_database_url_override(self, monkeypatch):
        monkeypatch.setenv(DATABASE_URL_ENV_VAR, "sqlite+pysqlite:///override.db")
        assert get_active_config().database_url == "sqlite+pysqlite:///override.db"

    def test_load_is_logged(self, captured_logs):
        get_active_config()
        loaded = [r for r in captured_logs() if r["message"] == "treasury_config_loaded"]
        assert len(loaded) == 1
        assert loaded[0]["base_currency"] == "LYD"
        assert loaded[0]["database_url_overridden"] is False

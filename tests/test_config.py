"""
Tests for engine configuration loading and validation
"""

from dataclasses import replace

import pytest

from config import EngineConfig
from core.errors import ConfigurationError


class TestLoading:
    """TOML and environment sources."""

    def test_from_file(self, tmp_path):
        path = tmp_path / "helix.toml"
        path.write_text(
            'mailbox_url = "http://mailbox"\n'
            'oracle_url = "http://oracle"\n'
            'escrow_url = "http://escrow"\n'
            'compute_url = "http://compute"\n'
            'btc_network = "BTCTEST"\n'
            "satoshis_per_byte = 5\n"
        )

        config = EngineConfig.from_file(path)

        assert config.btc_network == "BTCTEST"
        assert config.fees.satoshis_per_byte == 5
        assert config.fees.input_size == 148

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(tmp_path / "missing.toml")

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "helix.toml"
        path.write_text('mailbox_url = "x"\nsatoshis_per_kb = 1\n')
        with pytest.raises(ConfigurationError, match="satoshis_per_kb"):
            EngineConfig.from_file(path)

    def test_missing_required_key(self, tmp_path):
        path = tmp_path / "helix.toml"
        path.write_text('mailbox_url = "x"\n')
        with pytest.raises(ConfigurationError):
            EngineConfig.from_file(path)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MAILBOX_URL", "http://relay")
        monkeypatch.setenv("ESCROW_LOCK_DAYS", "3.5")
        monkeypatch.setenv("API_PORT", "9000")

        config = EngineConfig.from_env()

        assert config.mailbox_url == "http://relay"
        assert config.escrow_lock_days == 3.5
        assert config.api_port == 9000

    def test_bad_number_in_env(self, monkeypatch):
        monkeypatch.setenv("SATOSHIS_PER_BYTE", "lots")
        with pytest.raises(ConfigurationError):
            EngineConfig.from_env()


class TestValidation:
    """Range and presence checks."""

    def test_defaults_are_valid(self, engine_config):
        engine_config.validate()

    def test_zero_fee_rate_allowed(self, engine_config):
        replace(engine_config, satoshis_per_byte=0).validate()

    @pytest.mark.parametrize("changes", [
        {"mailbox_url": ""},
        {"btc_network": "DOGE"},
        {"satoshis_per_byte": -1},
        {"input_size": 0},
        {"block_time_secs": 0},
        {"freshness_timeout_hours": 0},
        {"escrow_lock_days": -1},
    ])
    def test_rejects(self, engine_config, changes):
        with pytest.raises(ConfigurationError):
            replace(engine_config, **changes).validate()

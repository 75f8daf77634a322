"""
Unit Tests for Configuration
"""
import pytest

from campaign_engine.core.config import ConfigManager


class TestConfigManager:

    def test_defaults_without_files(self, tmp_path):
        config = ConfigManager(env="test", config_dir=tmp_path)

        assert config.get("campaigns.run_batch_size") == 50
        assert config.get("store.name") == "Mint Vision Optique"
        assert config.get("campaigns.missing", "fallback") == "fallback"
        assert config.get("nope.deeper") is None

    def test_environment_file_overrides_default(self, tmp_path):
        (tmp_path / "default.yaml").write_text("campaigns:\n  run_batch_size: 25\nstore:\n  name: Default Optical\n")
        (tmp_path / "staging.yaml").write_text("campaigns:\n  run_batch_size: 5\n")

        config = ConfigManager(env="staging", config_dir=tmp_path)

        assert config.get("campaigns.run_batch_size") == 5
        assert config.get("campaigns.preview_sample_size") == 10
        assert config.get("store.name") == "Default Optical"

    def test_defaults_not_mutated(self, tmp_path):
        (tmp_path / "default.yaml").write_text("campaigns:\n  run_batch_size: 1\n")
        ConfigManager(env="test", config_dir=tmp_path)

        assert ConfigManager.DEFAULTS["campaigns"]["run_batch_size"] == 50

    def test_env_var_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STORE_PHONE", "(905) 555-0199")
        (tmp_path / "default.yaml").write_text('store:\n  phone: "${STORE_PHONE}"\n')

        config = ConfigManager(env="test", config_dir=tmp_path)

        assert config.get("store.phone") == "(905) 555-0199"

    def test_get_int(self, tmp_path, monkeypatch):
        monkeypatch.setenv("BATCH", "75")
        (tmp_path / "default.yaml").write_text(
            'campaigns:\n  run_batch_size: "${BATCH}"\n  recent_runs_limit: lots\n'
        )
        config = ConfigManager(env="test", config_dir=tmp_path)

        assert config.get_int("campaigns.run_batch_size") == 75
        with pytest.raises(ValueError, match="not an integer"):
            config.get_int("campaigns.recent_runs_limit")

    def test_repository_defaults_load(self, config):
        assert config.get_int("worker.poll_interval_seconds") == 60

"""Tests for clinical_dictionary.config."""

import json

from loguru import logger

from clinical_dictionary.config import ClinicalDictionaryConfig, ConfigManager, init_logging


class TestClinicalDictionaryConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CLINICAL_DICTIONARY_MIGRATION_BATCH_SIZE", raising=False)
        config = ClinicalDictionaryConfig()

        assert config.env == "dev"
        assert config.dictionary_name == "ARGO Clinical Submission"
        assert config.migration_batch_size == 20
        assert config.http_retries == 5
        assert config.analysis_cache_size == 32
        assert config.is_test_env is False

    def test_environment_variables_override_defaults(self, monkeypatch):
        monkeypatch.setenv("CLINICAL_DICTIONARY_MIGRATION_BATCH_SIZE", "5")
        monkeypatch.setenv("CLINICAL_DICTIONARY_ENV", "test")

        config = ClinicalDictionaryConfig()

        assert config.migration_batch_size == 5
        assert config.is_test_env is True

    def test_log_level_is_upper_cased(self):
        assert ClinicalDictionaryConfig(log_level="debug").log_level == "DEBUG"

    def test_worker_count_uses_configured_value(self):
        assert ClinicalDictionaryConfig(validation_workers=3).worker_count == 3

    def test_worker_count_falls_back_to_cpu_count(self, monkeypatch):
        monkeypatch.setattr("clinical_dictionary.config.os.cpu_count", lambda: 6)
        assert ClinicalDictionaryConfig(validation_workers=None).worker_count == 6

    def test_worker_count_never_below_one(self, monkeypatch):
        monkeypatch.setattr("clinical_dictionary.config.os.cpu_count", lambda: None)
        assert ClinicalDictionaryConfig().worker_count == 1


class TestConfigManager:
    def test_missing_file_gives_defaults(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        assert manager.config.migration_batch_size == 20

    def test_file_values_are_loaded(self, tmp_path):
        (tmp_path / "config.json").write_text(
            json.dumps({"migration_batch_size": 7, "dictionary_name": "Test Dictionary"})
        )

        config = ConfigManager(config_dir=tmp_path).load_config()

        assert config.migration_batch_size == 7
        assert config.dictionary_name == "Test Dictionary"

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        (tmp_path / "config.json").write_text(json.dumps({"migration_batch_size": 7}))
        monkeypatch.setenv("CLINICAL_DICTIONARY_MIGRATION_BATCH_SIZE", "9")

        config = ConfigManager(config_dir=tmp_path).load_config()

        assert config.migration_batch_size == 9

    def test_unreadable_file_is_ignored(self, tmp_path):
        (tmp_path / "config.json").write_text("{not json")
        config = ConfigManager(config_dir=tmp_path).load_config()
        assert config.migration_batch_size == 20

    def test_save_config_round_trips(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path / "nested")
        manager.save_config(ClinicalDictionaryConfig(migration_batch_size=11))

        reloaded = ConfigManager(config_dir=tmp_path / "nested").load_config()
        assert reloaded.migration_batch_size == 11


def test_init_logging_writes_to_log_file(tmp_path):
    log_file = tmp_path / "service.log"
    init_logging(ClinicalDictionaryConfig(env="test", log_level="info", log_file=log_file))

    logger.info("migration service started")
    logger.complete()
    logger.remove()

    assert "migration service started" in log_file.read_text()

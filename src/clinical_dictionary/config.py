"""Configuration management for clinical-dictionary.

Settings are read from (highest priority first):
  1. CLINICAL_DICTIONARY_* environment variables
  2. An optional JSON config file (~/.clinical-dictionary/config.json)
  3. Field defaults
"""

import json
import os
import sys
from pathlib import Path
from typing import Any, Literal, Optional

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_DIR = Path.home() / ".clinical-dictionary"
CONFIG_FILE_NAME = "config.json"


class ClinicalDictionaryConfig(BaseSettings):
    """Runtime settings for the dictionary migration service."""

    env: Literal["dev", "test", "prod"] = Field(
        default="dev", description="Runtime environment"
    )

    # --- Remote dictionary source ---
    dictionary_service_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the dictionary service, or a file:// path to a JSON stub",
    )
    dictionary_name: str = Field(default="ARGO Clinical Submission")
    initial_dictionary_version: str = Field(default="1.0")
    http_timeout: float = Field(default=5.0, description="Per-request timeout in seconds")
    http_retries: int = Field(default=5, ge=1)
    http_retry_interval: float = Field(default=1.0, ge=0)

    # --- Storage ---
    database_path: Path = Field(
        default_factory=lambda: DEFAULT_CONFIG_DIR / "clinical-dictionary.db"
    )

    # --- Migration ---
    migration_batch_size: int = Field(default=20, gt=0)
    submission_settle_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Delay after disabling submissions so trailing writes can finish",
    )
    validation_workers: Optional[int] = Field(
        default=None,
        description="Size of the validation worker pool (defaults to the CPU count)",
    )
    analysis_cache_size: int = Field(default=32, gt=0)

    # --- Logging ---
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="CLINICAL_DICTIONARY_",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def is_test_env(self) -> bool:
        return self.env == "test"

    @property
    def worker_count(self) -> int:
        """Resolved validation pool size; never below one."""
        if self.validation_workers:
            return max(1, self.validation_workers)
        return os.cpu_count() or 1


class ConfigManager:
    """Loads configuration from the JSON file merged with the environment."""

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.config_dir = config_dir or Path(
            os.environ.get("CLINICAL_DICTIONARY_CONFIG_DIR", DEFAULT_CONFIG_DIR)
        )
        self.config_file = self.config_dir / CONFIG_FILE_NAME
        self._config: Optional[ClinicalDictionaryConfig] = None

    @property
    def config(self) -> ClinicalDictionaryConfig:
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def load_config(self) -> ClinicalDictionaryConfig:
        """Build settings from the config file; environment variables still win."""
        file_values: dict[str, Any] = {}
        if self.config_file.exists():
            try:
                file_values = json.loads(self.config_file.read_text())
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring unreadable config file {self.config_file}: {e}")
                file_values = {}

        # Environment overrides file values, so drop keys the environment sets
        env_keys = {
            key[len("CLINICAL_DICTIONARY_") :].lower()
            for key in os.environ
            if key.startswith("CLINICAL_DICTIONARY_")
        }
        overrides = {k: v for k, v in file_values.items() if k not in env_keys}
        return ClinicalDictionaryConfig(**overrides)

    def save_config(self, config: ClinicalDictionaryConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(config.model_dump_json(indent=2))
        self._config = config


def init_logging(config: ClinicalDictionaryConfig) -> None:
    """Configure loguru sinks for the process."""
    logger.remove()
    logger.add(sys.stderr, level=config.log_level, colorize=not config.is_test_env)
    if config.log_file:
        logger.add(
            str(config.log_file),
            level=config.log_level,
            rotation="10 MB",
            retention="10 days",
            enqueue=True,
        )
    logger.debug(f"Logging initialized: level={config.log_level}, file={config.log_file}")

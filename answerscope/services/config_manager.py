import os
from pathlib import Path
from string import Template
from typing import Optional

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from answerscope.models.config import AppConfig
from answerscope.utils.exceptions import ConfigValidationError

logger = structlog.get_logger()

DEFAULT_CONFIG_PATH = "config/collection_config.yaml"


class ConfigManager:
    """Loads the YAML configuration into a validated AppConfig"""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, load_env: bool = True):
        self.config_path = Path(config_path)
        self.load_env = load_env
        self.env_loaded = False
        self._config: Optional[AppConfig] = None

    def load_config(self, reload: bool = False) -> AppConfig:
        """Load and validate configuration.

        Args:
            reload: Re-read the file even if a config was already loaded

        Raises:
            FileNotFoundError: The config file does not exist
            ConfigValidationError: The file cannot be parsed or validated
        """
        if self._config is not None and not reload:
            return self._config

        # 1. Load environment
        if self.load_env and not self.env_loaded:
            load_dotenv()
            self.env_loaded = True

        # 2. Check file existence
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        # 3. Read YAML
        try:
            raw_content = self.config_path.read_text()
        except OSError as e:
            raise ConfigValidationError(f"Failed to read config file: {e}") from e

        # 4. Substitute env vars
        try:
            substituted = Template(raw_content).safe_substitute(os.environ)
            config_data = yaml.safe_load(substituted) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(
                f"Failed to parse YAML or substitute variables: {e}"
            ) from e

        if not isinstance(config_data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        # 5. Validate with Pydantic
        try:
            self._config = AppConfig(**config_data)
        except ValidationError as e:
            raise ConfigValidationError(f"Invalid configuration: {e}") from e

        unresolved = [
            credential_id
            for credential_id, secret in self._config.credentials.items()
            if secret.get_secret_value().startswith("${")
        ]
        if unresolved:
            logger.warning("credentials_unresolved", credential_ids=unresolved)

        logger.info(
            "config_loaded",
            version=self._config.version,
            collector_types=len(self._config.collector_types),
            providers=len(self._config.providers),
        )
        return self._config


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> AppConfig:
    """Load configuration from ``config_path`` in one call."""
    return ConfigManager(config_path).load_config()

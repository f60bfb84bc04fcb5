import os
import json
import logging
from pathlib import Path
from typing import Any, Optional

from ..memory.exceptions import ConfigurationError

CONFIG_ENV_VAR = "COMPANION_MEMORY_CONFIG"
API_KEY_ENV_VAR = "OPENAI_API_KEY"


class Config:
    """Configuration manager with JSON-based configuration merged over defaults."""

    def __init__(self, config_path: Optional[str] = None, setup_logging: bool = True):
        # Set up paths relative to project root
        self.project_root = Path(__file__).parent.parent.parent.parent

        if config_path:
            self.config_path = config_path
        elif os.environ.get(CONFIG_ENV_VAR):
            self.config_path = os.environ[CONFIG_ENV_VAR]
        else:
            self.config_path = str(self.project_root / "config.json")

        self._config = self._merge_configs(self._get_default_config(), self._load_config())
        self._apply_environment()
        self._validate()
        if setup_logging:
            self._setup_logging()

    def _load_config(self) -> dict:
        """Load configuration from JSON file; a missing file means defaults only"""
        config_file = Path(self.config_path)
        if not config_file.exists():
            logging.info(f"No configuration file at {self.config_path}, using defaults")
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except (OSError, ValueError) as e:
            logging.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(
                f"Cannot read configuration file {self.config_path}: {e}",
                {'config_path': self.config_path}
            ) from e

        if not isinstance(config, dict):
            raise ConfigurationError(
                "Configuration root must be a JSON object",
                {'config_path': self.config_path}
            )
        logging.info(f"Configuration loaded from {self.config_path}")
        return config

    def _get_default_config(self) -> dict:
        """Built-in default configuration"""
        return {
            "database": {
                "persist_directory": "./chroma_db_memory",
                "collection_name": "memory_fragments"
            },
            "embeddings": {
                "model_name": "sentence-transformers/all-MiniLM-L6-v2",
                "dimension": 384,
                "timeout_seconds": 30.0,
                "max_attempts": 3,
                "retry_base_delay_seconds": 1.0,
                "retry_max_delay_seconds": 10.0
            },
            "llm": {
                "base_url": "https://api.openai.com/v1",
                "model": "gpt-4o-mini",
                "timeout_seconds": 30.0,
                "max_attempts": 3,
                "retry_base_delay_seconds": 1.0,
                "retry_max_delay_seconds": 10.0
            },
            "memory": {
                "extraction": {
                    "max_tokens": 800,
                    "default_temperature": 0.3,
                    "batch_size": 5,
                    "batch_pause_seconds": 0.1
                },
                "storage": {
                    "batch_chunk_size": 100
                },
                "retrieval": {
                    "default_limit": 10,
                    "default_threshold": 0.7
                },
                "optimizer": {
                    "approximate_search_max_limit": 50
                },
                "background_drain_timeout_seconds": 10.0
            },
            "server": {
                "host": "127.0.0.1",
                "port": 8080,
                "title": "Companion Memory Service",
                "version": "1.0.0"
            },
            "logging": {
                "level": "INFO",
                "file": "logs/companion_memory.log",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        }

    def _apply_environment(self) -> None:
        llm_config = self._config.setdefault('llm', {})
        if not llm_config.get('api_key') and os.environ.get(API_KEY_ENV_VAR):
            llm_config['api_key'] = os.environ[API_KEY_ENV_VAR]

    def _validate(self) -> None:
        dimension = self.get('embeddings', 'dimension')
        if dimension is not None and (not isinstance(dimension, int) or dimension <= 0):
            raise ConfigurationError(
                "embeddings.dimension must be a positive integer",
                {'dimension': dimension}
            )
        level = self.get('logging', 'level', default='INFO')
        if not isinstance(getattr(logging, str(level).upper(), None), int):
            raise ConfigurationError(f"Unknown logging level: {level}", {'level': level})

    def _setup_logging(self):
        """Setup logging based on configuration"""
        log_config = self._config.get('logging', {})
        log_file = log_config.get('file', 'logs/companion_memory.log')

        # Ensure log directory exists
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            level=getattr(logging, str(log_config.get('level', 'INFO')).upper()),
            format=log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
            handlers=[
                logging.StreamHandler(),
                logging.FileHandler(log_file)
            ]
        )

    def _merge_configs(self, base: dict, overlay: dict) -> dict:
        """Deep merge two configuration dictionaries"""
        result = base.copy()
        for key, value in overlay.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    def get(self, *keys, default=None) -> Any:
        """Get nested configuration value by key path"""
        value = self._config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def as_dict(self) -> dict:
        return self._config

    def get_database_config(self) -> dict:
        return self.get('database', default={})

    def get_embeddings_config(self) -> dict:
        return self.get('embeddings', default={})

    def get_llm_config(self) -> dict:
        return self.get('llm', default={})

    def get_memory_config(self) -> dict:
        return self.get('memory', default={})

    def get_server_config(self) -> dict:
        return self.get('server', default={})

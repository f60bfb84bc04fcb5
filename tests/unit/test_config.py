"""
Unit tests for Config

Tests cover:
- Defaults when no file exists
- Deep merge of a JSON file over defaults
- Environment overrides for config path and API key
- Rejection of unreadable or invalid configuration
"""

import json
import pytest

from companion_memory.config import Config
from companion_memory.memory.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("COMPANION_MEMORY_CONFIG", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def write_config(tmp_path, data) -> str:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestConfig:

    def test_defaults_when_file_missing(self, tmp_path):
        config = Config(str(tmp_path / "missing.json"), setup_logging=False)
        assert config.get('database', 'collection_name') == 'memory_fragments'
        assert config.get('embeddings', 'dimension') == 384
        assert config.get('memory', 'retrieval', 'default_threshold') == 0.7
        assert config.get('no', 'such', 'key', default='fallback') == 'fallback'

    def test_file_merges_over_defaults(self, tmp_path):
        path = write_config(tmp_path, {
            'database': {'persist_directory': '/data/memories'},
            'memory': {'retrieval': {'default_limit': 20}},
        })
        config = Config(path, setup_logging=False)
        assert config.get_database_config() == {
            'persist_directory': '/data/memories',
            'collection_name': 'memory_fragments',
        }
        assert config.get('memory', 'retrieval', 'default_limit') == 20
        assert config.get('memory', 'retrieval', 'default_threshold') == 0.7

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = write_config(tmp_path, {'server': {'port': 9999}})
        monkeypatch.setenv("COMPANION_MEMORY_CONFIG", path)
        config = Config(setup_logging=False)
        assert config.get_server_config()['port'] == 9999

    def test_api_key_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = Config(str(tmp_path / "missing.json"), setup_logging=False)
        assert config.get_llm_config()['api_key'] == "sk-env"

    def test_file_api_key_wins(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        path = write_config(tmp_path, {'llm': {'api_key': 'sk-file'}})
        assert Config(path, setup_logging=False).get_llm_config()['api_key'] == 'sk-file'

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError):
            Config(str(path), setup_logging=False)

    def test_invalid_dimension_raises(self, tmp_path):
        path = write_config(tmp_path, {'embeddings': {'dimension': -1}})
        with pytest.raises(ConfigurationError):
            Config(path, setup_logging=False)

    def test_logging_file_created(self, tmp_path):
        log_file = tmp_path / "logs" / "memory.log"
        path = write_config(tmp_path, {'logging': {'file': str(log_file)}})
        Config(path)
        assert log_file.parent.exists()

"""Tests for webcrawler.utils.config."""

from __future__ import annotations

import pytest

from webcrawler.utils.config import Config, ConfigError, ConfigManager, load_config

BASE_YAML = """
crawler:
  seed_url: https://example.com
  max_pages: 100
  persist_ceiling: 50
  fetcher: http
database:
  type: file
  data_directory: /tmp/pages
redis:
  host: redis.internal
monitoring:
  sample_interval: 30
"""


@pytest.fixture
def config_file(tmp_path):
    def write(text=BASE_YAML):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)
    return write


class TestLoadConfig:
    def test_values_from_file(self, config_file):
        config = load_config(config_file(), environ={})
        assert isinstance(config, Config)
        assert config.crawler.seed_url == "https://example.com"
        assert config.crawler.max_pages == 100
        assert config.crawler.persist_ceiling == 50
        assert config.crawler.fetcher == "http"
        assert config.database.type == "file"
        assert config.redis.host == "redis.internal"
        assert config.monitoring.sample_interval == 30

    def test_defaults_for_missing_sections(self, config_file):
        config = load_config(config_file("crawler:\n  seed_url: https://example.com\n"), environ={})
        assert config.crawler.max_pages == 5000
        assert config.crawler.persist_ceiling == 1000
        assert config.crawler.max_tokens == 25000
        assert config.crawler.max_content_length == 15000
        assert config.database.access is True
        assert config.database.type == "memory"
        assert config.api.port == 8080
        assert config.monitoring.publish_interval == 5

    def test_environment_overrides(self, config_file):
        environ = {
            "SEED_URL": "https://other.org",
            "USER_AGENT": "custombot/2.0",
            "MAX_PAGES": "200",
            "DB_ACCESS": "false",
            "REDIS_HOST": "cache",
        }
        config = load_config(config_file(), environ=environ)
        assert config.crawler.seed_url == "https://other.org"
        assert config.crawler.user_agent == "custombot/2.0"
        assert config.crawler.max_pages == 200
        assert config.database.access is False
        assert config.redis.host == "cache"

    def test_environment_only(self):
        config = load_config(None, environ={"SEED_URL": "https://example.com"})
        assert config.crawler.seed_url == "https://example.com"

    def test_config_property(self, config_file):
        manager = ConfigManager(config_file(), environ={})
        with pytest.raises(ConfigError):
            manager.config
        manager.load_config()
        assert manager.config.crawler.max_pages == 100


class TestConfigErrors:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"), environ={})

    def test_invalid_yaml(self, config_file):
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(config_file("crawler: [unclosed\n"), environ={})

    def test_missing_seed(self, config_file):
        with pytest.raises(ConfigError, match="seed URL"):
            load_config(config_file("crawler:\n  max_pages: 10\n"), environ={})

    def test_unknown_section(self, config_file):
        with pytest.raises(ConfigError, match="sections"):
            load_config(config_file(BASE_YAML + "cassandra:\n  hosts: []\n"), environ={})

    def test_unknown_key(self, config_file):
        with pytest.raises(ConfigError, match="max_depth"):
            load_config(config_file(BASE_YAML.replace("max_pages: 100", "max_depth: 3")), environ={})

    def test_bad_max_pages_env(self, config_file):
        with pytest.raises(ConfigError, match="MAX_PAGES"):
            load_config(config_file(), environ={"MAX_PAGES": "lots"})

    @pytest.mark.parametrize("yaml_text", [
        "crawler:\n  seed_url: https://e.com\n  max_pages: 0\n",
        "crawler:\n  seed_url: https://e.com\n  max_pages: 10\n  persist_ceiling: 11\n",
        "crawler:\n  seed_url: https://e.com\n  persist_ceiling: -1\n",
        "crawler:\n  seed_url: https://e.com\n  max_tokens: 0\n",
        "crawler:\n  seed_url: https://e.com\n  request_timeout: 0\n",
        "crawler:\n  seed_url: https://e.com\n  fetcher: curl\n",
        "crawler:\n  seed_url: https://e.com\ndatabase:\n  type: cassandra\n",
        "crawler:\n  seed_url: https://e.com\nmonitoring:\n  publish_interval: 0\n",
    ])
    def test_validation(self, config_file, yaml_text):
        with pytest.raises(ConfigError):
            load_config(config_file(yaml_text), environ={})

"""
Configuration management for the web crawler system.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from dataclasses import dataclass, field, fields


class ConfigError(ValueError):
    """Raised when the configuration is missing or invalid."""
    pass


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    seed_url: str = ""
    user_agent: str = "webcrawler/1.0"
    max_pages: int = 5000
    persist_ceiling: int = 1000
    max_tokens: int = 25000
    max_content_length: int = 15000
    request_timeout: float = 30
    robots_timeout: float = 10
    respect_robots_txt: bool = True
    check_robots_on_discovery: bool = True
    fetcher: str = "browser"
    count_duplicate_visits: bool = True


@dataclass
class DatabaseConfig:
    """Configuration for page storage."""
    access: bool = True
    type: str = "memory"
    data_directory: str = "data"
    clear_on_start: bool = True


@dataclass
class RedisConfig:
    """Configuration for Redis."""
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = "crawler"


@dataclass
class ApiConfig:
    """Configuration for the stats/search HTTP server."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080
    static_dir: Optional[str] = None
    search_limit: int = 10


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/crawler.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False
    sample_interval: float = 60
    publish_interval: float = 5


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _build_section(cls, data: Optional[Mapping[str, Any]]):
    """Create a section dataclass, rejecting unknown keys."""
    data = data or {}
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} settings: {', '.join(sorted(unknown))}")
    return cls(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    SECTIONS = {
        'crawler': CrawlerConfig,
        'database': DatabaseConfig,
        'redis': RedisConfig,
        'api': ApiConfig,
        'logging': LoggingConfig,
        'monitoring': MonitoringConfig,
    }

    def __init__(self, config_path: Optional[str] = "config.yaml",
                 environ: Optional[Mapping[str, str]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.environ = os.environ if environ is None else environ
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from the YAML file and the environment."""
        config_data: Dict[str, Any] = {}
        if self.config_path is not None:
            if not self.config_path.exists():
                raise ConfigError(f"Configuration file not found: {self.config_path}")
            with open(self.config_path, 'r') as file:
                try:
                    config_data = yaml.safe_load(file) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {self.config_path}: {e}")

        if not isinstance(config_data, dict):
            raise ConfigError("Configuration root must be a mapping")

        unknown = set(config_data) - set(self.SECTIONS)
        if unknown:
            raise ConfigError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        try:
            sections = {
                name: _build_section(cls, config_data.get(name))
                for name, cls in self.SECTIONS.items()
            }
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        self._config = Config(**sections)
        self._apply_environment()
        self._validate_config()
        return self._config

    def _apply_environment(self):
        """Environment variables override values from the file."""
        env = self.environ
        crawler = self._config.crawler

        if env.get('SEED_URL'):
            crawler.seed_url = env['SEED_URL']
        if env.get('USER_AGENT'):
            crawler.user_agent = env['USER_AGENT']
        if env.get('MAX_PAGES'):
            try:
                crawler.max_pages = int(env['MAX_PAGES'])
            except ValueError:
                raise ConfigError(f"MAX_PAGES must be an integer, got {env['MAX_PAGES']!r}")
        if env.get('DB_ACCESS'):
            self._config.database.access = _parse_bool(env['DB_ACCESS'])
        if env.get('REDIS_HOST'):
            self._config.redis.host = env['REDIS_HOST']

    def _validate_config(self):
        """Validate configuration values."""
        crawler = self._config.crawler

        if not crawler.seed_url:
            raise ConfigError("A seed URL must be provided (crawler.seed_url or SEED_URL)")

        if crawler.max_pages < 1:
            raise ConfigError("max_pages must be at least 1")

        if crawler.persist_ceiling < 0 or crawler.persist_ceiling > crawler.max_pages:
            raise ConfigError("persist_ceiling must be between 0 and max_pages")

        if crawler.max_tokens < 1 or crawler.max_content_length < 0:
            raise ConfigError("max_tokens must be positive and max_content_length non-negative")

        if crawler.request_timeout <= 0 or crawler.robots_timeout <= 0:
            raise ConfigError("Timeouts must be positive")

        if crawler.fetcher not in ('http', 'browser'):
            raise ConfigError("fetcher must be 'http' or 'browser'")

        if self._config.database.type not in ('memory', 'file', 'redis'):
            raise ConfigError("Database type must be 'memory', 'file' or 'redis'")

        if self._config.monitoring.sample_interval <= 0 or self._config.monitoring.publish_interval <= 0:
            raise ConfigError("Monitoring intervals must be positive")

        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ConfigError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: Optional[str] = "config.yaml",
                environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load configuration from file and environment."""
    return ConfigManager(config_path, environ).load_config()

"""
Configuration management for the directory crawler.
"""

import os
import threading
from typing import Dict, Any, List, Optional, Union
from dataclasses import dataclass, field, asdict, replace
from pathlib import Path
import json
import logging
from jsonschema import validate, ValidationError

from directory_crawler.utils.errors import ConfigurationError


ENV_PREFIX = "DIRECTORY_CRAWLER_"


def _positive_int(value: Any, default: int) -> int:
    """``value`` as a positive int, else ``default``."""
    if isinstance(value, bool):
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _non_negative_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number >= 0 else default


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CrawlInput:
    """What to crawl and how much of it."""
    speciality: str = "dermatologist"
    city: str = "bangalore"
    locality: Optional[str] = None
    # Plain URLs or {"url": ...} objects
    start_urls: List[Union[str, Dict[str, Any]]] = field(default_factory=list)
    results_wanted: int = 50
    max_pages: int = 10
    max_concurrency: int = 10
    fetch_details: bool = True
    min_experience: float = 0
    min_rating: float = 0

    def normalized(self, hard_max_concurrency: int = 20) -> "CrawlInput":
        """
        Copy with unusable limits replaced by their defaults.

        Non-positive or non-numeric counts fall back to the defaults and
        concurrency is clamped to ``hard_max_concurrency``.
        """
        defaults = CrawlInput()
        concurrency = _positive_int(self.max_concurrency, defaults.max_concurrency)
        return replace(
            self,
            speciality=(self.speciality or defaults.speciality).strip(),
            city=(self.city or defaults.city).strip(),
            start_urls=list(self.start_urls or []),
            results_wanted=_positive_int(self.results_wanted, defaults.results_wanted),
            max_pages=_positive_int(self.max_pages, defaults.max_pages),
            max_concurrency=min(concurrency, hard_max_concurrency),
            fetch_details=bool(self.fetch_details),
            min_experience=_non_negative_float(self.min_experience),
            min_rating=_non_negative_float(self.min_rating),
        )

    def start_url_strings(self) -> List[str]:
        """Start URLs as plain strings, skipping entries without a URL."""
        urls = []
        for entry in self.start_urls or []:
            if isinstance(entry, dict):
                entry = entry.get("url")
            if isinstance(entry, str) and entry.strip():
                urls.append(entry.strip())
        return urls


@dataclass
class CrawlerConfig:
    """Fetching, pacing, retry and merge behaviour."""
    base_url: str = "https://www.practo.com"
    user_agents: List[str] = field(default_factory=lambda: [
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.1 Safari/605.1.15",
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ])
    request_timeout: float = 25.0
    same_domain_delay: float = 0.2
    requests_per_second: float = 5.0
    hard_max_concurrency: int = 20
    min_concurrency: int = 1
    recovery_successes: int = 10
    list_max_retries: int = 3
    retry_detail_on_failure: bool = False
    detail_max_retries: int = 1
    max_consecutive_failures: int = 3
    backoff_base: float = 1.0
    backoff_jitter: float = 0.3
    backoff_min_delay: float = 0.5
    backoff_max_delay: float = 60.0
    # "structured_first" or "rendered_first"
    merge_precedence: str = "structured_first"
    abort_on_budget: bool = True


@dataclass
class ProxySettings:
    """Proxy list and health thresholds, handed to the proxy pool as is."""
    enabled: bool = False
    proxies: List[Dict[str, Any]] = field(default_factory=list)
    health_check_url: str = "https://httpbin.org/ip"
    health_check_timeout: int = 10
    health_check_on_start: bool = False
    max_failure_count: int = 5
    min_success_rate: float = 0.5

    def to_pool_config(self) -> Optional[Dict[str, Any]]:
        """Proxy pool configuration, or None when proxies are off."""
        if not self.enabled or not self.proxies:
            return None
        return {
            "settings": {
                "health_check_url": self.health_check_url,
                "health_check_timeout": self.health_check_timeout,
                "max_failure_count": self.max_failure_count,
                "min_success_rate": self.min_success_rate,
            },
            "proxies": list(self.proxies),
        }


@dataclass
class SystemConfig:
    """Main system configuration."""
    crawl: CrawlInput = field(default_factory=CrawlInput)
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    proxy: ProxySettings = field(default_factory=ProxySettings)
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_retention_days: int = 7


_START_URL_SCHEMA = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "properties": {"url": {"type": "string", "minLength": 1}},
            "required": ["url"]
        }
    ]
}

# Configuration schema for validation
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "crawl": {
            "type": "object",
            "properties": {
                "speciality": {"type": "string", "minLength": 1},
                "city": {"type": "string", "minLength": 1},
                "locality": {"type": ["string", "null"]},
                "start_urls": {"type": "array", "items": _START_URL_SCHEMA},
                "results_wanted": {"type": ["integer", "string"]},
                "max_pages": {"type": ["integer", "string"]},
                "max_concurrency": {"type": ["integer", "string"]},
                "fetch_details": {"type": "boolean"},
                "min_experience": {"type": "number", "minimum": 0},
                "min_rating": {"type": "number", "minimum": 0}
            },
            "additionalProperties": False
        },
        "crawler": {
            "type": "object",
            "properties": {
                "base_url": {"type": "string", "pattern": "^https?://"},
                "user_agents": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 10},
                    "minItems": 1
                },
                "request_timeout": {"type": "number", "minimum": 1, "maximum": 300},
                "same_domain_delay": {"type": "number", "minimum": 0, "maximum": 60},
                "requests_per_second": {"type": "number", "exclusiveMinimum": 0},
                "hard_max_concurrency": {"type": "integer", "minimum": 1, "maximum": 100},
                "min_concurrency": {"type": "integer", "minimum": 1},
                "recovery_successes": {"type": "integer", "minimum": 1},
                "list_max_retries": {"type": "integer", "minimum": 0, "maximum": 10},
                "retry_detail_on_failure": {"type": "boolean"},
                "detail_max_retries": {"type": "integer", "minimum": 0, "maximum": 10},
                "max_consecutive_failures": {"type": "integer", "minimum": 1},
                "backoff_base": {"type": "number", "minimum": 0},
                "backoff_jitter": {"type": "number", "minimum": 0, "maximum": 1},
                "backoff_min_delay": {"type": "number", "minimum": 0},
                "backoff_max_delay": {"type": "number", "minimum": 0},
                "merge_precedence": {"type": "string", "enum": ["structured_first", "rendered_first"]},
                "abort_on_budget": {"type": "boolean"}
            },
            "additionalProperties": False
        },
        "proxy": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "proxies": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "host": {"type": "string", "minLength": 1},
                            "port": {"type": "integer", "minimum": 1, "maximum": 65535},
                            "username": {"type": ["string", "null"]},
                            "password": {"type": ["string", "null"]},
                            "protocol": {"type": "string", "enum": ["http", "https", "socks5"]},
                            "country": {"type": ["string", "null"]}
                        },
                        "required": ["host", "port"]
                    }
                },
                "health_check_url": {"type": "string", "minLength": 1},
                "health_check_timeout": {"type": "integer", "minimum": 1, "maximum": 120},
                "health_check_on_start": {"type": "boolean"},
                "max_failure_count": {"type": "integer", "minimum": 1},
                "min_success_rate": {"type": "number", "minimum": 0, "maximum": 1}
            },
            "additionalProperties": False
        },
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        },
        "log_file": {"type": ["string", "null"]},
        "log_retention_days": {"type": "integer", "minimum": 1, "maximum": 365}
    },
    "additionalProperties": False
}


def load_env_file(env_file: Path = Path('.env')) -> bool:
    """Copy KEY=VALUE lines from ``env_file`` into the environment."""
    if not env_file.exists():
        return False
    try:
        with open(env_file, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    os.environ[key.strip()] = value.strip()
    except OSError as e:
        logging.warning(f"Failed to load .env file: {e}")
        return False
    logging.info("Loaded environment variables from .env file")
    return True


class ConfigManager:
    """Loads, validates and saves the crawler configuration."""

    def __init__(self, config_path: str = "config.json", env_file: str = ".env"):
        self.config_path = Path(config_path)
        self.env_file = Path(env_file)
        self._config: Optional[SystemConfig] = None
        self._last_modified: Optional[float] = None
        self._lock = threading.RLock()

    def validate_config(self, config_data: Dict[str, Any]) -> None:
        """
        Validate configuration data against schema.

        Raises:
            ConfigurationError: If the data does not match the schema
        """
        try:
            validate(instance=config_data, schema=CONFIG_SCHEMA)
        except ValidationError as e:
            path = ".".join(str(p) for p in e.absolute_path) or "<root>"
            raise ConfigurationError(
                f"Configuration validation failed: {e.message}",
                {"path": path}
            )

    def load_config(self) -> SystemConfig:
        """Load configuration from file or environment variables."""
        with self._lock:
            if self.config_path.exists():
                current_modified = self.config_path.stat().st_mtime
                if self._config is None or current_modified != self._last_modified:
                    self._load_from_file()
                    self._last_modified = current_modified
            elif self._config is None:
                self._load_from_env()

            return self._config or SystemConfig()

    def _load_from_file(self) -> None:
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Configuration file {self.config_path} is not valid JSON: {e.msg}",
                {"line": e.lineno}
            )
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {self.config_path}: {e}")

        self.validate_config(config_data)
        config = self.config_from_dict(config_data)

        load_env_file(self.env_file)
        self._override_with_env_vars(config)
        self._config = config

        logging.info(f"Configuration loaded and validated from {self.config_path}")

    def _load_from_env(self) -> None:
        config = SystemConfig()
        load_env_file(self.env_file)
        self._override_with_env_vars(config)
        self._config = config
        logging.info("Configuration loaded from environment variables")

    def _override_with_env_vars(self, config: SystemConfig) -> None:
        """Apply ``DIRECTORY_CRAWLER_*`` variables on top of ``config``."""
        env = {
            key[len(ENV_PREFIX):]: value
            for key, value in os.environ.items()
            if key.startswith(ENV_PREFIX)
        }

        if env.get("SPECIALITY"):
            config.crawl.speciality = env["SPECIALITY"]
        if env.get("CITY"):
            config.crawl.city = env["CITY"]
        if env.get("LOCALITY"):
            config.crawl.locality = env["LOCALITY"]
        if env.get("START_URLS"):
            config.crawl.start_urls = [u.strip() for u in env["START_URLS"].split(',') if u.strip()]

        for name in ("RESULTS_WANTED", "MAX_PAGES", "MAX_CONCURRENCY"):
            if env.get(name):
                try:
                    setattr(config.crawl, name.lower(), int(env[name]))
                except ValueError:
                    raise ConfigurationError(
                        f"{ENV_PREFIX}{name} must be an integer",
                        {"value": env[name]}
                    )

        if env.get("FETCH_DETAILS"):
            config.crawl.fetch_details = _env_flag(env["FETCH_DETAILS"])
        if env.get("MERGE_PRECEDENCE"):
            if env["MERGE_PRECEDENCE"] not in ("structured_first", "rendered_first"):
                raise ConfigurationError(
                    f"{ENV_PREFIX}MERGE_PRECEDENCE must be structured_first or rendered_first",
                    {"value": env["MERGE_PRECEDENCE"]}
                )
            config.crawler.merge_precedence = env["MERGE_PRECEDENCE"]
        if env.get("ABORT_ON_BUDGET"):
            config.crawler.abort_on_budget = _env_flag(env["ABORT_ON_BUDGET"])

        # host:port[,host:port...]
        if env.get("PROXY_URLS"):
            proxies = []
            for entry in env["PROXY_URLS"].split(','):
                host, sep, port = entry.strip().rpartition(':')
                if not sep or not host or not port.isdigit():
                    raise ConfigurationError(
                        f"{ENV_PREFIX}PROXY_URLS entries must be host:port",
                        {"value": entry}
                    )
                proxies.append({"host": host, "port": int(port)})
            config.proxy.enabled = True
            config.proxy.proxies = proxies

        if env.get("LOG_LEVEL"):
            config.log_level = env["LOG_LEVEL"].upper()
        if env.get("LOG_FILE"):
            config.log_file = env["LOG_FILE"]

    @staticmethod
    def config_from_dict(data: Dict[str, Any]) -> SystemConfig:
        """Convert dictionary to SystemConfig object."""
        config = SystemConfig()

        if "crawl" in data:
            config.crawl = CrawlInput(**data["crawl"])

        if "crawler" in data:
            config.crawler = CrawlerConfig(**data["crawler"])

        if "proxy" in data:
            config.proxy = ProxySettings(**data["proxy"])

        config.log_level = data.get("log_level", config.log_level)
        config.log_file = data.get("log_file", config.log_file)
        config.log_retention_days = data.get("log_retention_days", config.log_retention_days)

        return config

    def export_config(self) -> Dict[str, Any]:
        """Export current configuration as dictionary."""
        with self._lock:
            if not self._config:
                return {}

            return {
                "crawl": asdict(self._config.crawl),
                "crawler": asdict(self._config.crawler),
                "proxy": asdict(self._config.proxy),
                "log_level": self._config.log_level,
                "log_file": self._config.log_file,
                "log_retention_days": self._config.log_retention_days
            }

    def save_config(self, config_path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        with self._lock:
            if not self._config:
                raise ConfigurationError("No configuration loaded to save")

            save_path = Path(config_path) if config_path else self.config_path
            config_dict = self.export_config()

            self.validate_config(config_dict)

            with open(save_path, 'w', encoding='utf-8') as f:
                json.dump(config_dict, f, indent=2, ensure_ascii=False)

            logging.info(f"Configuration saved to {save_path}")

    def reset(self) -> None:
        """Forget the loaded configuration so the next load rereads it."""
        with self._lock:
            self._config = None
            self._last_modified = None

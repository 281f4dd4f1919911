"""Service configuration for the crawler.

Every section is a dataclass with crawl defaults; ``from_env`` overlays the
matching environment variables. ``ProductionConfig`` bundles the sections,
validates the combination and owns logger setup.
"""

from __future__ import annotations

import os
import logging
import datetime
import pathlib
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
from enum import Enum

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _env_bool(name: str, fallback: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return fallback


def _env_number(name: str, fallback, kind=int):
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return kind(raw)
    except ValueError:
        logging.getLogger("igcrawler.config").warning(f"Ignoring {name}={raw!r}, keeping {fallback}")
        return fallback


class DeploymentEnvironment(str, Enum):
    """Where the crawler runs."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"

    @classmethod
    def from_env(cls) -> "DeploymentEnvironment":
        try:
            return cls(os.environ.get("DEPLOYMENT_ENVIRONMENT", cls.PRODUCTION.value).lower())
        except ValueError:
            return cls.PRODUCTION


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class FrontierBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


@dataclass
class SystemConfig:
    """Paths and basic settings."""
    log_root: str = "/tmp/igcrawler/logs"
    data_root: str = "./storage/datasets"
    service_port: int = 8004
    log_level: LogLevel = LogLevel.INFO

    @classmethod
    def from_env(cls) -> "SystemConfig":
        base = cls()
        return cls(
            log_root=os.environ.get("LOG_ROOT", base.log_root),
            data_root=os.environ.get("DATA_ROOT", base.data_root),
            service_port=_env_number("SERVICE_PORT", base.service_port),
            log_level=LogLevel(os.environ.get("LOG_LEVEL", base.log_level.value).upper()),
        )


@dataclass
class SecurityConfig:
    api_key_required: bool = False
    api_key: str = ""

    @classmethod
    def from_env(cls) -> "SecurityConfig":
        return cls(
            api_key_required=_env_bool("API_KEY_REQUIRED", False),
            api_key=os.environ.get("BROWSER_API_KEY", ""),
        )


@dataclass
class ScalingConfig:
    """Worker pool and browser pool limits."""
    max_concurrency: int = 100
    max_request_retries: int = 3
    max_open_pages_per_browser: int = 3
    retire_browser_after_pages: int = 30

    @classmethod
    def from_env(cls) -> "ScalingConfig":
        base = cls()
        return cls(
            max_concurrency=_env_number("MAX_CONCURRENCY", base.max_concurrency),
            max_request_retries=_env_number("MAX_REQUEST_RETRIES", base.max_request_retries),
            max_open_pages_per_browser=_env_number("MAX_OPEN_PAGES_PER_BROWSER", base.max_open_pages_per_browser),
            retire_browser_after_pages=_env_number("RETIRE_BROWSER_AFTER_PAGES", base.retire_browser_after_pages),
        )


@dataclass
class TimeoutConfig:
    """Per-page deadlines, in seconds."""
    navigation_timeout_seconds: float = 120
    identity_timeout_seconds: float = 60
    identity_poll_interval_seconds: float = 0.1
    page_timeout_seconds: float = 12 * 60 * 60
    stall_timeout_seconds: float = 20
    max_stalls: int = 3

    @classmethod
    def from_env(cls) -> "TimeoutConfig":
        base = cls()
        return cls(
            navigation_timeout_seconds=_env_number("NAVIGATION_TIMEOUT_SECONDS", base.navigation_timeout_seconds, float),
            identity_timeout_seconds=_env_number("IDENTITY_TIMEOUT_SECONDS", base.identity_timeout_seconds, float),
            page_timeout_seconds=_env_number("PAGE_TIMEOUT_SECONDS", base.page_timeout_seconds, float),
            stall_timeout_seconds=_env_number("STALL_TIMEOUT_SECONDS", base.stall_timeout_seconds, float),
            max_stalls=_env_number("MAX_STALLS", base.max_stalls),
        )


@dataclass
class RedisConfig:
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False

    @classmethod
    def from_env(cls) -> "RedisConfig":
        base = cls()
        return cls(
            host=os.environ.get("REDIS_HOST", base.host),
            port=_env_number("REDIS_PORT", base.port),
            db=_env_number("REDIS_DB", base.db),
            password=os.environ.get("REDIS_PASSWORD") or None,
            ssl=_env_bool("REDIS_SSL", base.ssl),
        )

    @property
    def url(self) -> str:
        scheme = "rediss" if self.ssl else "redis"
        credentials = f":{self.password}@" if self.password else ""
        return f"{scheme}://{credentials}{self.host}:{self.port}/{self.db}"


@dataclass
class BrowserConfig:
    headless: bool = True
    viewport_width: int = 1366
    viewport_height: int = 900

    @classmethod
    def from_env(cls) -> "BrowserConfig":
        return cls(headless=_env_bool("BROWSER_HEADLESS", True))


@dataclass
class MonitoringConfig:
    prometheus_enabled: bool = True

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        return cls(prometheus_enabled=_env_bool("PROMETHEUS_ENABLED", True))


class ProductionConfig:
    """All crawler settings for one deployment environment."""

    def __init__(self, environment: DeploymentEnvironment = DeploymentEnvironment.PRODUCTION):
        self.environment = environment
        self.system = SystemConfig.from_env()
        self.security = SecurityConfig.from_env()
        self.scaling = ScalingConfig.from_env()
        self.timeouts = TimeoutConfig.from_env()
        self.redis = RedisConfig.from_env()
        self.browser = BrowserConfig.from_env()
        self.monitoring = MonitoringConfig.from_env()
        self.frontier_backend = FrontierBackend(
            os.environ.get("FRONTIER_BACKEND", FrontierBackend.MEMORY.value).lower()
        )
        self.validate()

    def validate(self) -> None:
        """Raise ValueError on settings the crawler cannot run with."""
        scaling = self.scaling
        problems = []
        if scaling.max_concurrency < 1:
            problems.append("max_concurrency must be at least 1")
        if scaling.max_request_retries < 0:
            problems.append("max_request_retries cannot be negative")
        if scaling.max_open_pages_per_browser < 1:
            problems.append("max_open_pages_per_browser must be at least 1")
        if scaling.retire_browser_after_pages < scaling.max_open_pages_per_browser:
            problems.append("retire_browser_after_pages should be at least max_open_pages_per_browser")
        if not 0 < self.redis.port < 65536:
            problems.append(f"invalid Redis port {self.redis.port}")
        if self.timeouts.identity_poll_interval_seconds <= 0:
            problems.append("identity_poll_interval_seconds must be positive")
        if self.timeouts.max_stalls < 1:
            problems.append("max_stalls must be at least 1")
        if problems:
            raise ValueError("; ".join(problems))

    def get_redis_url(self) -> str:
        return self.redis.url

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Non-secret settings, for logs and /healthz."""
        return {
            "environment": self.environment.value,
            "scaling": asdict(self.scaling),
            "timeouts": {
                "navigation": self.timeouts.navigation_timeout_seconds,
                "identity": self.timeouts.identity_timeout_seconds,
                "page": self.timeouts.page_timeout_seconds,
                "stall": self.timeouts.stall_timeout_seconds,
            },
            "frontier_backend": self.frontier_backend.value,
            "browser": {"headless": self.browser.headless},
            "monitoring": {"prometheus_enabled": self.monitoring.prometheus_enabled},
        }

    def setup_logging(self) -> logging.Logger:
        """Configure the service logger: console plus a dated file under log_root."""
        logger = logging.getLogger("igcrawler")
        logger.setLevel(self.system.log_level.value)
        while logger.handlers:
            logger.removeHandler(logger.handlers[0])

        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

        log_dir = pathlib.Path(self.system.log_root)
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / f"{datetime.date.today().isoformat()}.log")
        except OSError as e:
            logger.warning(f"File logging disabled, cannot use {log_dir}: {e}")
        else:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        logger.propagate = False
        return logger


_config_instance: Optional[ProductionConfig] = None


def get_config(environment: Optional[DeploymentEnvironment] = None) -> ProductionConfig:
    """Process-wide configuration, rebuilt when a different environment is asked for."""
    global _config_instance
    if _config_instance is None or (environment and environment != _config_instance.environment):
        _config_instance = ProductionConfig(environment or DeploymentEnvironment.from_env())
    return _config_instance


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() rereads the environment."""
    global _config_instance
    _config_instance = None

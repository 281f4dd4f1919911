"""Configuration management for the crawler.

- Environment-based service configuration (production.py)
- Validated run input (input.py)
"""

from .production import (
    ProductionConfig, DeploymentEnvironment, LogLevel, FrontierBackend,
    SystemConfig, SecurityConfig, ScalingConfig, TimeoutConfig,
    RedisConfig, BrowserConfig, MonitoringConfig,
    get_config, reset_config
)
from .input import CrawlInput, ProxyConfig

__all__ = [
    'ProductionConfig', 'DeploymentEnvironment', 'LogLevel', 'FrontierBackend',
    'SystemConfig', 'SecurityConfig', 'ScalingConfig', 'TimeoutConfig',
    'RedisConfig', 'BrowserConfig', 'MonitoringConfig',
    'get_config', 'reset_config',
    'CrawlInput', 'ProxyConfig'
]

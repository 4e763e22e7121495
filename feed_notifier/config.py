"""Server configuration for feed_notifier.

Values come from FEED_NOTIFIER_* environment variables; command line flags
override them.
"""

import os
from dataclasses import dataclass
from typing import Optional


ENV_PREFIX = "FEED_NOTIFIER_"


@dataclass
class ServerConfig:
    """Runtime settings for the server and its scheduled cycles."""

    name: str = "feed_notifier"
    log_level: str = "INFO"
    fetch_timeout: float = 3.0
    default_cache_seconds: int = 21600
    crawl_interval_secs: int = 3600
    notify_interval_secs: int = 300
    send_interval_secs: float = 1.0
    autocomplete_ttl_secs: int = 15
    autocomplete_limit: int = 25
    webhook_url: Optional[str] = None
    webhook_token: Optional[str] = None


def _env(key: str) -> Optional[str]:
    return os.environ.get(ENV_PREFIX + key.upper())


def _env_int(key: str, default: int) -> int:
    value = _env(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    value = _env(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config() -> ServerConfig:
    """Build a ServerConfig from the environment."""
    defaults = ServerConfig()
    return ServerConfig(
        name=_env("name") or defaults.name,
        log_level=(_env("log_level") or defaults.log_level).upper(),
        fetch_timeout=_env_float("fetch_timeout", defaults.fetch_timeout),
        default_cache_seconds=_env_int("default_cache_seconds", defaults.default_cache_seconds),
        crawl_interval_secs=_env_int("crawl_interval_secs", defaults.crawl_interval_secs),
        notify_interval_secs=_env_int("notify_interval_secs", defaults.notify_interval_secs),
        send_interval_secs=_env_float("send_interval_secs", defaults.send_interval_secs),
        autocomplete_ttl_secs=_env_int("autocomplete_ttl_secs", defaults.autocomplete_ttl_secs),
        autocomplete_limit=_env_int("autocomplete_limit", defaults.autocomplete_limit),
        webhook_url=_env("webhook_url") or None,
        webhook_token=_env("webhook_token") or None,
    )


_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config

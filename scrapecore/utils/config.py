"""
Configuration management for scrapecore.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class GeneralConfig(BaseModel):
    """General configuration."""

    log_level: str = "INFO"
    log_format: str = "json"  # json, console
    data_dir: str = "data"
    log_file: str = ""  # Empty: stderr only


class WorkersConfig(BaseModel):
    """Worker pool configuration."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=10, ge=1)
    queue_size: int = Field(default=100, ge=1)
    timeout_seconds: float = 30.0  # Caller wait for a job result
    max_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = 1.0  # Linear: attempt * retry_backoff_seconds
    result_delivery_timeout_seconds: float = 5.0
    default_engine: str = "hybrid"


class RateLimitConfig(BaseModel):
    """Per-domain rate limiter configuration."""

    model_config = ConfigDict(extra="forbid")

    rate_limit: int = Field(default=60, ge=1)  # Requests per window
    rate_window_seconds: float = 60.0
    failure_threshold: int = Field(default=3, ge=1)  # Streak length that starts cooldown
    backoff_base_seconds: float = 5.0
    backoff_max_seconds: float = 300.0
    cleanup_interval_seconds: float = 300.0
    idle_ttl_seconds: float = 600.0


class ViewportConfig(BaseModel):
    """Browser viewport size."""

    width: int = 1920
    height: int = 1080


class BrowserPoolConfig(BaseModel):
    """Shared headless browser pool configuration."""

    model_config = ConfigDict(extra="forbid")

    max_instances: int | None = None  # None: derived from workers.pool_size (2..5)
    min_instances: int = Field(default=1, ge=0)
    max_idle_instances: int | None = None  # None: same as max_instances
    acquire_timeout_seconds: float = 30.0
    max_idle_seconds: float = 300.0
    stuck_timeout_seconds: float = 600.0
    cleanup_interval_seconds: float = 60.0
    close_timeout_seconds: float = 10.0
    shutdown_grace_seconds: float = 30.0
    page_timeout_seconds: float = 15.0
    headless: bool = True
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)


class ScraperConfig(BaseModel):
    """Browser engine configuration."""

    user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    request_timeout_seconds: float = 30.0
    settle_seconds: float = 2.0  # Wait after load before reading the DOM


class CaptchaConfig(BaseModel):
    """CAPTCHA solving configuration."""

    provider: str = "2captcha"
    api_key: str = ""  # Set via CAPTCHA_API_KEY
    api_url: str = "https://2captcha.com"
    timeout_seconds: float = 120.0
    polling_interval_seconds: float = 5.0
    enable_auto_solve: bool = True
    health_cache_seconds: float = 60.0
    post_submit_wait_seconds: float = 5.0
    challenge_settle_seconds: float = 5.0


class FirecrawlConfig(BaseModel):
    """Hosted scraping API configuration."""

    api_key: str = ""  # Set via FIRECRAWL_API_KEY
    api_url: str = "https://api.firecrawl.dev"
    timeout_seconds: float = 60.0
    max_retries: int = Field(default=3, ge=1)
    formats: list[str] = Field(default_factory=lambda: ["markdown"])
    use_extract: bool = False


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    workers: WorkersConfig = Field(default_factory=WorkersConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    browser_pool: BrowserPoolConfig = Field(default_factory=BrowserPoolConfig)
    scraper: ScraperConfig = Field(default_factory=ScraperConfig)
    captcha: CaptchaConfig = Field(default_factory=CaptchaConfig)
    firecrawl: FirecrawlConfig = Field(default_factory=FirecrawlConfig)

    def resolved_max_browsers(self) -> int:
        """Browser pool cap: explicit setting, else pool_size clamped to 2..5."""
        if self.browser_pool.max_instances is not None:
            return max(1, self.browser_pool.max_instances)
        return max(2, min(5, self.workers.pool_size))


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_with_local_override(
    config_dir: Path,
    filename: str,
    section_key: str | None = None,
) -> dict[str, Any]:
    """Load YAML file with local.yaml override support.

    local.yaml holds per-machine overrides keyed by config file stem.

    Example local.yaml:
        settings:
          workers:
            pool_size: 4
          captcha:
            enable_auto_solve: false

    Args:
        config_dir: Configuration directory path.
        filename: YAML filename (e.g., "settings.yaml").
        section_key: Key in local.yaml for overrides.
                     Defaults to filename without extension.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / filename
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            local_overrides = yaml.safe_load(f) or {}
        if section_key is None:
            section_key = Path(filename).stem
        if isinstance(local_overrides.get(section_key), dict):
            config = _deep_merge(config, local_overrides[section_key])

    return config


def _parse_env_value(value: str) -> Any:
    """Parse an environment string as bool, int or float where possible."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


# Conventional secret variables mapped onto their config location
_SECRET_ENV_VARS: dict[str, tuple[str, str]] = {
    "CAPTCHA_API_KEY": ("captcha", "api_key"),
    "FIRECRAWL_API_KEY": ("firecrawl", "api_key"),
    "FIRECRAWL_API_URL": ("firecrawl", "api_url"),
    "DATA_DIR": ("general", "data_dir"),
}


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with SCRAPECORE_ and use
    double underscores for nested keys. A handful of conventional
    secret variables (CAPTCHA_API_KEY, FIRECRAWL_API_KEY, DATA_DIR) are
    honoured as well; prefixed variables win over them.

    Example:
        SCRAPECORE_WORKERS__POOL_SIZE=4

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    for env_name, (section, key) in _SECRET_ENV_VARS.items():
        value = os.environ.get(env_name)
        if value:
            if not isinstance(config.get(section), dict):
                config[section] = {}
            config[section][key] = value

    prefix = "SCRAPECORE_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "SCRAPECORE_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[key_path[-1]] = _parse_env_value(value)

    return config


def load_settings(config_dir: Path | str | None = None) -> Settings:
    """Build settings from defaults, YAML files and the environment.

    Args:
        config_dir: Configuration directory. Defaults to SCRAPECORE_CONFIG_DIR
            or the project's config/ directory.

    Returns:
        Settings instance.
    """
    if config_dir is None:
        config_dir = os.environ.get("SCRAPECORE_CONFIG_DIR") or get_project_root() / "config"

    config = _load_yaml_with_local_override(Path(config_dir), "settings.yaml", "settings")
    config = _apply_env_overrides(config)
    return Settings(**config)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    return load_settings()


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    return Path(__file__).parent.parent.parent


def get_data_dir(settings: Settings | None = None) -> Path:
    """Resolve the data directory (absolute paths are kept, relative ones
    are anchored at the current working directory)."""
    settings = settings or get_settings()
    return Path(settings.general.data_dir)

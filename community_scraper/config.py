"""Configuration handling for the community scraper."""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

import yaml
from dotenv import load_dotenv

from community_scraper.exceptions import ConfigError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SOURCES: Tuple[str, ...] = (
    "PromptEngineering",
    "ChatGPT",
    "OpenAI",
    "StableDiffusion",
    "MachineLearning",
    "artificial",
    "LocalLLaMA",
    "deeplearning",
    "compsci",
)

DEFAULT_USER_AGENTS: Tuple[str, ...] = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:120.0) Gecko/20100101 Firefox/120.0",
)

DEFAULT_PROXY_SOURCES: Tuple[str, ...] = (
    "https://www.proxy-list.download/api/v1/get?type=http",
    "https://api.proxyscrape.com/v2/?request=get&protocol=http&timeout=10000&country=all&ssl=all&anonymity=all",
    "https://raw.githubusercontent.com/TheSpeedX/PROXY-List/master/http.txt",
)


@dataclass(frozen=True)
class RateLimitConfig:
    """Request spacing and retry configuration."""

    min_delay_sec: float = 2.0
    max_delay_sec: float = 8.0
    item_delay_min_sec: float = 1.0
    item_delay_max_sec: float = 3.0
    max_attempts: int = 3
    initial_backoff_sec: float = 5.0
    backoff_factor: float = 2.0
    max_backoff_sec: float = 30.0
    sleep_buffer_sec: float = 2.0
    default_retry_after_sec: float = 60.0


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy pool configuration."""

    enabled: bool = True
    source_urls: Tuple[str, ...] = DEFAULT_PROXY_SOURCES
    endpoints: Tuple[str, ...] = ()
    refresh_interval_sec: float = 1800.0
    fetch_timeout_sec: float = 15.0
    test_url: str = "https://httpbin.org/ip"
    test_timeout_sec: float = 10.0


@dataclass(frozen=True)
class NavigatorConfig:
    """How pages are fetched: plain HTTP client or headless browser."""

    backend: str = "http"
    base_url: str = "https://www.reddit.com"
    headless: bool = True
    timeout_sec: float = 30.0
    user_agents: Tuple[str, ...] = DEFAULT_USER_AGENTS
    blocked_resource_types: Tuple[str, ...] = ("image", "font", "stylesheet", "media")
    viewport_width: int = 1366
    viewport_height: int = 768
    viewport_jitter: int = 100


@dataclass(frozen=True)
class ExtractionConfig:
    """Limits for what a sweep extracts."""

    max_posts_per_source: int = 100
    max_comments_per_post: int = 50
    hot_post_limit: int = 25
    comment_score_threshold: int = 10
    comment_sweep_posts_per_source: int = 10
    hot_upvote_threshold: int = 100
    max_concurrent_sources: int = 1


@dataclass(frozen=True)
class TrendConfig:
    """Trending heuristics. All values are tunable defaults."""

    score_threshold: int = 50
    comments_threshold: int = 10
    max_age_hours: float = 24.0
    window_hours: float = 24.0
    min_mentions: int = 5
    trend_weight: float = 0.1


@dataclass(frozen=True)
class ScheduleConfig:
    """Cadences of the recurring jobs, in minutes."""

    broad_interval_min: float = 360.0
    comments_interval_min: float = 180.0
    trends_interval_min: float = 60.0
    hot_interval_min: float = 30.0
    broad_enabled: bool = True
    comments_enabled: bool = True
    trends_enabled: bool = True
    hot_enabled: bool = True
    run_on_start: bool = False
    status_file: str = "data/scheduler_status.json"
    pid_file: str = "data/scheduler.pid"


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration."""

    url: str = "sqlite+aiosqlite:///data/community_scraper.db"
    echo: bool = False


@dataclass(frozen=True)
class MonitoringConfig:
    """Monitoring configuration."""

    enable_prometheus: bool = False
    prometheus_port: int = 8000


@dataclass(frozen=True)
class DashboardConfig:
    """Read-only dashboard API configuration."""

    host: str = "127.0.0.1"
    port: int = 3003


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: str = "logs/scraper.log"


_SECTIONS: Dict[str, type] = {
    "rate_limit": RateLimitConfig,
    "proxy": ProxyConfig,
    "navigator": NavigatorConfig,
    "extraction": ExtractionConfig,
    "trends": TrendConfig,
    "schedule": ScheduleConfig,
    "database": DatabaseConfig,
    "monitoring": MonitoringConfig,
    "dashboard": DashboardConfig,
    "logging": LoggingConfig,
}


def _build_section(cls: Type[T], values: Optional[Dict[str, Any]], section: str) -> T:
    """
    Build a frozen config section from a YAML mapping.

    Unknown keys are logged and ignored; lists become tuples.
    """
    if not values:
        return cls()
    if not isinstance(values, dict):
        raise ConfigError(f"Config section '{section}' must be a mapping")

    known = {f.name for f in dataclasses.fields(cls)}
    kwargs: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key '{section}.{key}'")
            continue
        kwargs[key] = tuple(value) if isinstance(value, list) else value
    return cls(**kwargs)


def _split_env_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Config:
    """Application configuration combining environment variables and YAML config."""

    sources: Tuple[str, ...] = DEFAULT_SOURCES
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    navigator: NavigatorConfig = field(default_factory=NavigatorConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    trends: TrendConfig = field(default_factory=TrendConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Config":
        """
        Build a configuration from a parsed YAML mapping.

        Args:
            data: Mapping with optional top-level ``sources`` and section keys

        Returns:
            Config instance
        """
        data = data or {}
        kwargs: Dict[str, Any] = {}
        if "sources" in data:
            kwargs["sources"] = tuple(data["sources"] or ())
        for name, section_cls in _SECTIONS.items():
            if name in data:
                kwargs[name] = _build_section(section_cls, data[name], name)
        for key in data:
            if key != "sources" and key not in _SECTIONS:
                logger.warning(f"Ignoring unknown config key '{key}'")
        return cls(**kwargs)

    @classmethod
    def from_files(cls, config_path: Optional[str] = None, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from YAML file and environment variables.

        Environment variables take precedence over the YAML file:
        ``SCRAPER_DATABASE_URL``, ``SCRAPER_LOG_LEVEL``, ``SCRAPER_SOURCES``
        and ``SCRAPER_PROXY_URLS`` (the last two comma separated).

        Args:
            config_path: Path to YAML configuration file (missing file means defaults)
            env_path: Optional path to .env file (defaults to .env in current directory)

        Returns:
            Config instance with merged configuration
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        yaml_config: Dict[str, Any] = {}
        if config_path and os.path.exists(config_path):
            try:
                with open(config_path, "r", encoding="utf-8") as file:
                    yaml_config = yaml.safe_load(file) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
            if not isinstance(yaml_config, dict):
                raise ConfigError(f"Top level of {config_path} must be a mapping")
        elif config_path:
            logger.warning(f"Config file {config_path} not found, using defaults")

        config = cls.from_dict(yaml_config)

        overrides: Dict[str, Any] = {}
        if os.getenv("SCRAPER_SOURCES"):
            overrides["sources"] = _split_env_list(os.environ["SCRAPER_SOURCES"])
        if os.getenv("SCRAPER_DATABASE_URL"):
            overrides["database"] = dataclasses.replace(config.database, url=os.environ["SCRAPER_DATABASE_URL"])
        if os.getenv("SCRAPER_LOG_LEVEL"):
            overrides["logging"] = dataclasses.replace(config.logging, level=os.environ["SCRAPER_LOG_LEVEL"].upper())
        if os.getenv("SCRAPER_PROXY_URLS"):
            overrides["proxy"] = dataclasses.replace(
                config.proxy, source_urls=_split_env_list(os.environ["SCRAPER_PROXY_URLS"])
            )
        if overrides:
            config = dataclasses.replace(config, **overrides)
        return config

    def validate(self) -> List[str]:
        """
        Validate the configuration.

        Returns:
            List of error messages, empty if valid
        """
        errors = []

        if not self.sources:
            errors.append("No sources configured")

        rl = self.rate_limit
        if rl.min_delay_sec < 0:
            errors.append("rate_limit.min_delay_sec must be >= 0")
        if rl.max_delay_sec < rl.min_delay_sec:
            errors.append("rate_limit.max_delay_sec must be >= min_delay_sec")
        if rl.item_delay_max_sec < rl.item_delay_min_sec:
            errors.append("rate_limit.item_delay_max_sec must be >= item_delay_min_sec")
        if rl.max_attempts < 1:
            errors.append("rate_limit.max_attempts must be at least 1")

        if self.navigator.backend not in ("http", "browser"):
            errors.append("navigator.backend must be 'http' or 'browser'")
        if not self.navigator.user_agents:
            errors.append("navigator.user_agents must not be empty")

        if self.proxy.refresh_interval_sec <= 0:
            errors.append("proxy.refresh_interval_sec must be positive")

        if self.extraction.max_posts_per_source < 1:
            errors.append("extraction.max_posts_per_source must be at least 1")
        if self.extraction.max_concurrent_sources < 1:
            errors.append("extraction.max_concurrent_sources must be at least 1")

        if self.trends.trend_weight <= 0:
            errors.append("trends.trend_weight must be positive")
        if self.trends.window_hours <= 0:
            errors.append("trends.window_hours must be positive")

        for name in ("broad", "comments", "trends", "hot"):
            if getattr(self.schedule, f"{name}_interval_min") <= 0:
                errors.append(f"schedule.{name}_interval_min must be positive")

        if not self.database.url:
            errors.append("database.url is required")

        return errors

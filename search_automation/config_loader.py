"""
Configuration loader for Search Session Automation
Reads and validates settings.yaml, then freezes it into RunSettings
"""

import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from search_automation.models import ProxyMode
from search_automation.providers import available_providers

logger = logging.getLogger(__name__)


class ConfigValidationError(ValueError):
    """Raised when configuration fails invariant validation."""
    pass


def _as_number(value: Any, field: str) -> float:
    """Convert a config value to float, reporting non-numeric values as config errors."""
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be a number, got {value!r}"
        ) from None


def _validate_non_negative(value: Any, field: str) -> None:
    """Validate that a numeric value is non-negative."""
    if value is not None and _as_number(value, field) < 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be non-negative, got {value}"
        )


def _validate_positive(value: Any, field: str) -> None:
    """Validate that a numeric value is positive (> 0)."""
    if value is not None and _as_number(value, field) <= 0:
        raise ConfigValidationError(
            f"Invalid config: '{field}' must be positive (> 0), got {value}"
        )


def _validate_min_max_pair(min_val: Any, max_val: Any, min_field: str, max_field: str) -> None:
    """Validate that min_val <= max_val for a delay/range pair."""
    if min_val is not None and max_val is not None:
        if _as_number(min_val, min_field) > _as_number(max_val, max_field):
            raise ConfigValidationError(
                f"Invalid config: '{min_field}' ({min_val}) must be <= '{max_field}' ({max_val})"
            )


@dataclass(frozen=True)
class RunSettings:
    """Immutable, process-wide settings shared read-only by every worker"""

    keywords: Tuple[str, ...]
    proxy_host: str
    proxy_port: int
    proxy_username: str = ""
    proxy_password: str = ""
    proxy_mode: ProxyMode = ProxyMode.STICKY
    proxy_country: str = "us"
    proxy_lifetime_minutes: int = 10
    proxy_username_template: Optional[str] = None
    provider: str = "google"
    worker_count: int = 1
    max_retries: int = 3
    result_limit: int = 5
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    locale: str = "en-US"
    page_timeout_ms: int = 30000
    navigation_timeout_ms: int = 60000
    profile_dir: Optional[str] = None
    use_stealth: bool = False
    screenshot_dir: str = "output/screenshots"
    backoff_base_seconds: float = 5.0
    backoff_jitter_seconds: float = 3.0
    backoff_max_seconds: float = 120.0
    ip_check_enabled: bool = True
    ip_check_url: str = "http://ip-api.com/json"
    ip_check_timeout: float = 15.0
    metrics_file: Optional[str] = None

    def keyword_for(self, worker_id: int) -> str:
        """Workers are numbered from 1 and take keywords round-robin."""
        return self.keywords[(worker_id - 1) % len(self.keywords)]

    def with_overrides(self, **changes: Any) -> "RunSettings":
        changes = {k: v for k, v in changes.items() if v is not None}
        if "keywords" in changes:
            changes["keywords"] = tuple(changes["keywords"])
        return replace(self, **changes)


class ConfigLoader:
    """Loads and validates configuration from YAML file"""

    def __init__(self, config_path: str = "config/settings.yaml"):
        self.config_path = Path(config_path)
        self.config: Dict[str, Any] = {}
        self._load()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConfigLoader":
        """Build from an in-memory mapping (validated the same way)."""
        loader = cls.__new__(cls)
        loader.config_path = Path("<memory>")
        loader.config = dict(data or {})
        loader._validate_invariants()
        return loader

    def _load(self) -> None:
        """Load config from YAML file"""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"✓ Config loaded from {self.config_path}")
        except yaml.YAMLError as e:
            logger.error(f"Error parsing config file: {e}")
            raise

        if not isinstance(self.config, dict):
            raise ConfigValidationError(f"Invalid config: top level of {self.config_path} must be a mapping")

        self._validate_invariants()

    def _validate_invariants(self) -> None:
        """Validate configuration invariants. Raises ConfigValidationError on failure."""
        # Search
        keywords = self.get_keywords()
        if not keywords:
            raise ConfigValidationError("Invalid config: 'search.keywords' must list at least one keyword")
        if not all(isinstance(k, str) and k.strip() for k in keywords):
            raise ConfigValidationError("Invalid config: 'search.keywords' entries must be non-empty strings")

        provider = self.get_provider()
        if provider not in available_providers():
            raise ConfigValidationError(
                f"Invalid config: 'search.provider' must be one of {', '.join(available_providers())}, got {provider!r}"
            )
        _validate_positive(self.get('search.max_retries'), 'search.max_retries')
        _validate_positive(self.get('search.result_limit'), 'search.result_limit')

        # Workers
        _validate_positive(self.get('workers.count'), 'workers.count')

        # Proxy
        if not self.get_proxy_host():
            raise ConfigValidationError(
                "Invalid config: proxy host is not configured. "
                "Set proxy.host (or env PROXY_HOST)."
            )
        try:
            port = self.get_proxy_port()
        except (TypeError, ValueError):
            raise ConfigValidationError(
                f"Invalid config: 'proxy.port' must be an integer, got {self.get('proxy.port')!r}"
            ) from None
        _validate_positive(port, 'proxy.port')
        try:
            self.get_proxy_mode()
        except ValueError:
            raise ConfigValidationError(
                f"Invalid config: 'proxy.mode' must be 'sticky' or 'rotating', got {self.get('proxy.mode')!r}"
            ) from None
        _validate_positive(self.get('proxy.lifetime_minutes'), 'proxy.lifetime_minutes')

        # Browser timeouts (must be positive)
        _validate_positive(self.get('browser.page_timeout'), 'browser.page_timeout')
        _validate_positive(self.get('browser.navigation_timeout'), 'browser.navigation_timeout')
        _validate_positive(self.get('browser.viewport_width'), 'browser.viewport_width')
        _validate_positive(self.get('browser.viewport_height'), 'browser.viewport_height')

        # Backoff
        base = self.get('backoff.base_seconds')
        ceiling = self.get('backoff.max_seconds')
        _validate_non_negative(base, 'backoff.base_seconds')
        _validate_non_negative(self.get('backoff.jitter_seconds'), 'backoff.jitter_seconds')
        _validate_positive(ceiling, 'backoff.max_seconds')
        _validate_min_max_pair(base, ceiling, 'backoff.base_seconds', 'backoff.max_seconds')

        # IP check
        _validate_positive(self.get('ip_check.timeout'), 'ip_check.timeout')

        logger.debug("✓ Config invariants validated")

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value by dot notation (e.g., 'search.keywords')"""
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default

        return value

    # === Search Config ===

    def get_keywords(self) -> List[str]:
        """Get list of search keywords"""
        keywords = self.get('search.keywords', []) or []
        if isinstance(keywords, str):
            keywords = [keywords]
        return list(keywords)

    def get_provider(self) -> str:
        """Get search provider name"""
        return (self.get('search.provider', 'google') or 'google').strip().lower()

    def get_max_retries(self) -> int:
        """Get max attempts per keyword"""
        return int(self.get('search.max_retries', 3))

    def get_result_limit(self) -> int:
        """Get max results extracted per successful attempt"""
        return int(self.get('search.result_limit', 5))

    # === Worker Config ===

    def get_worker_count(self) -> int:
        """Get number of concurrent workers"""
        return int(self.get('workers.count', 1))

    # === Proxy Config ===

    def get_proxy_host(self) -> str:
        return (
            str(self.get("proxy.host", "") or "").strip()
            or (os.getenv("PROXY_HOST") or "").strip()
        )

    def get_proxy_port(self) -> int:
        raw = self.get("proxy.port", None)
        if raw in (None, ""):
            raw = os.getenv("PROXY_PORT") or 0
        return int(raw)

    def get_proxy_username(self) -> str:
        return (
            str(self.get("proxy.username", "") or "").strip()
            or (os.getenv("PROXY_USER") or "").strip()
        )

    def get_proxy_password(self) -> str:
        return (
            str(self.get("proxy.password", "") or "").strip()
            or (os.getenv("PROXY_PASS") or "").strip()
        )

    def get_proxy_mode(self) -> ProxyMode:
        """Sticky vs rotating. Accepts `proxy.mode` or legacy boolean `proxy.sticky`."""
        mode = self.get("proxy.mode", None)
        if mode is None:
            sticky = self.get("proxy.sticky", True)
            return ProxyMode.STICKY if sticky else ProxyMode.ROTATING
        return ProxyMode(str(mode).strip().lower())

    def get_proxy_country(self) -> str:
        return (str(self.get("proxy.country", "us") or "us")).strip().lower()

    def get_proxy_lifetime_minutes(self) -> int:
        return int(self.get("proxy.lifetime_minutes", 10))

    def get_proxy_username_template(self) -> Optional[str]:
        template = (self.get("proxy.username_template", "") or "").strip()
        return template or None

    # === Browser Config ===

    def is_headless(self) -> bool:
        """Check if browser should run in headless mode"""
        return bool(self.get('browser.headless', True))

    def get_viewport(self) -> Tuple[int, int]:
        return (
            int(self.get('browser.viewport_width', 1280)),
            int(self.get('browser.viewport_height', 720)),
        )

    def get_locale(self) -> str:
        return self.get('browser.locale', 'en-US')

    def get_page_timeout(self) -> int:
        """Get page action timeout in milliseconds"""
        return int(float(self.get('browser.page_timeout', 30)) * 1000)

    def get_navigation_timeout(self) -> int:
        """Get navigation timeout in milliseconds"""
        return int(float(self.get('browser.navigation_timeout', 60)) * 1000)

    def get_profile_dir(self) -> Optional[str]:
        """Root directory for persistent per-worker browser profiles (optional)"""
        path = (self.get('browser.profile_dir', '') or '').strip()
        return path or None

    def use_stealth(self) -> bool:
        """Check if Playwright stealth should be enabled"""
        return bool(self.get('browser.use_stealth', False))

    def get_screenshot_dir(self) -> str:
        return self.get('browser.screenshot_dir', 'output/screenshots')

    # === Backoff Config ===

    def get_backoff(self) -> Tuple[float, float, float]:
        """(base_seconds, jitter_seconds, max_seconds)"""
        return (
            float(self.get('backoff.base_seconds', 5.0)),
            float(self.get('backoff.jitter_seconds', 3.0)),
            float(self.get('backoff.max_seconds', 120.0)),
        )

    # === IP Check Config ===

    def is_ip_check_enabled(self) -> bool:
        return bool(self.get('ip_check.enabled', True))

    def get_ip_check_url(self) -> str:
        return self.get('ip_check.url', 'http://ip-api.com/json')

    def get_ip_check_timeout(self) -> float:
        return float(self.get('ip_check.timeout', 15))

    # === Output / Logging Config ===

    def get_metrics_file(self) -> Optional[str]:
        template = (self.get('output.metrics_file', '') or '').strip()
        return template or None

    def get_log_level(self) -> str:
        """Get logging level"""
        return str(self.get('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Path:
        """Get log file path with timestamp"""
        template = self.get('logging.log_file', 'logs/search_automation.log')
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = template.replace('{timestamp}', timestamp)
        return Path(filename)

    def to_settings(self) -> RunSettings:
        """Freeze the loaded config into the settings object workers share"""
        width, height = self.get_viewport()
        base, jitter, ceiling = self.get_backoff()
        return RunSettings(
            keywords=tuple(k.strip() for k in self.get_keywords()),
            proxy_host=self.get_proxy_host(),
            proxy_port=self.get_proxy_port(),
            proxy_username=self.get_proxy_username(),
            proxy_password=self.get_proxy_password(),
            proxy_mode=self.get_proxy_mode(),
            proxy_country=self.get_proxy_country(),
            proxy_lifetime_minutes=self.get_proxy_lifetime_minutes(),
            proxy_username_template=self.get_proxy_username_template(),
            provider=self.get_provider(),
            worker_count=self.get_worker_count(),
            max_retries=self.get_max_retries(),
            result_limit=self.get_result_limit(),
            headless=self.is_headless(),
            viewport_width=width,
            viewport_height=height,
            locale=self.get_locale(),
            page_timeout_ms=self.get_page_timeout(),
            navigation_timeout_ms=self.get_navigation_timeout(),
            profile_dir=self.get_profile_dir(),
            use_stealth=self.use_stealth(),
            screenshot_dir=self.get_screenshot_dir(),
            backoff_base_seconds=base,
            backoff_jitter_seconds=jitter,
            backoff_max_seconds=ceiling,
            ip_check_enabled=self.is_ip_check_enabled(),
            ip_check_url=self.get_ip_check_url(),
            ip_check_timeout=self.get_ip_check_timeout(),
            metrics_file=self.get_metrics_file(),
        )

    def __repr__(self) -> str:
        keywords = self.get_keywords()
        return f"<Config: {len(keywords)} keywords, provider={self.get_provider()}>"


# Convenience function
def load_config(config_path: str = "config/settings.yaml") -> ConfigLoader:
    """Load configuration from file"""
    return ConfigLoader(config_path)

"""
Tests for YAML config loading, validation and RunSettings.
"""

from pathlib import Path

import pytest
import yaml

from search_automation.config_loader import ConfigLoader, ConfigValidationError, RunSettings, load_config
from search_automation.models import ProxyMode

SAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "settings.yaml"


@pytest.fixture(autouse=True)
def clean_proxy_env(monkeypatch):
    for name in ("PROXY_HOST", "PROXY_PORT", "PROXY_USER", "PROXY_PASS"):
        monkeypatch.delenv(name, raising=False)


def minimal(**sections):
    data = {
        "search": {"keywords": ["best books"]},
        "proxy": {"host": "proxy.example.net", "port": 10010, "username": "u", "password": "p"},
    }
    for key, value in sections.items():
        data.setdefault(key, {}).update(value)
    return data


def write_config(tmp_path, data) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_sample_config_loads():
    settings = load_config(str(SAMPLE_CONFIG)).to_settings()

    assert settings.keywords == ("best books", "best country")
    assert settings.provider == "google"
    assert settings.proxy_mode == ProxyMode.STICKY
    assert settings.page_timeout_ms == 30000
    assert settings.navigation_timeout_ms == 60000
    assert settings.profile_dir is None


def test_defaults_from_minimal_config(tmp_path):
    settings = ConfigLoader(str(write_config(tmp_path, minimal()))).to_settings()

    assert settings.worker_count == 1
    assert settings.max_retries == 3
    assert settings.result_limit == 5
    assert settings.headless is True
    assert settings.proxy_country == "us"
    assert settings.proxy_lifetime_minutes == 10
    assert (settings.backoff_base_seconds, settings.backoff_jitter_seconds, settings.backoff_max_seconds) == (5.0, 3.0, 120.0)
    assert settings.ip_check_enabled is True
    assert settings.metrics_file is None


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        ConfigLoader("does/not/exist.yaml")


def test_top_level_must_be_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigValidationError, match="must be a mapping"):
        ConfigLoader(str(path))


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"search": {"keywords": []}}, "search.keywords"),
        ({"search": {"keywords": ["ok", "  "]}}, "non-empty strings"),
        ({"search": {"provider": "yahoo"}}, "search.provider"),
        ({"search": {"max_retries": 0}}, "search.max_retries"),
        ({"workers": {"count": -1}}, "workers.count"),
        ({"proxy": {"host": ""}}, "proxy host"),
        ({"proxy": {"port": "abc"}}, "proxy.port"),
        ({"proxy": {"port": 0}}, "proxy.port"),
        ({"proxy": {"mode": "sometimes"}}, "proxy.mode"),
        ({"browser": {"navigation_timeout": 0}}, "browser.navigation_timeout"),
        ({"backoff": {"base_seconds": -1}}, "backoff.base_seconds"),
        ({"backoff": {"base_seconds": 200, "max_seconds": 100}}, "must be <="),
        ({"ip_check": {"timeout": 0}}, "ip_check.timeout"),
        ({"search": {"max_retries": "three"}}, "must be a number"),
        ({"backoff": {"base_seconds": "fast"}}, "backoff.base_seconds.*must be a number"),
    ],
)
def test_invalid_values_rejected(overrides, message):
    with pytest.raises(ConfigValidationError, match=message):
        ConfigLoader.from_dict(minimal(**overrides))


def test_proxy_host_and_port_from_env(monkeypatch):
    monkeypatch.setenv("PROXY_HOST", "env-gate.example.net")
    monkeypatch.setenv("PROXY_PORT", "9000")
    data = minimal()
    data["proxy"] = {"username": "u"}

    settings = ConfigLoader.from_dict(data).to_settings()

    assert settings.proxy_host == "env-gate.example.net"
    assert settings.proxy_port == 9000


def test_legacy_sticky_flag():
    loader = ConfigLoader.from_dict(minimal(proxy={"sticky": False}))
    assert loader.get_proxy_mode() == ProxyMode.ROTATING


def test_mode_overrides_legacy_flag():
    loader = ConfigLoader.from_dict(minimal(proxy={"sticky": False, "mode": "Sticky"}))
    assert loader.get_proxy_mode() == ProxyMode.STICKY


def test_provider_is_normalized():
    settings = ConfigLoader.from_dict(minimal(search={"provider": " BING "})).to_settings()
    assert settings.provider == "bing"


def test_single_keyword_string_accepted():
    settings = ConfigLoader.from_dict(minimal(search={"keywords": "weather"})).to_settings()
    assert settings.keywords == ("weather",)


def test_dot_get():
    loader = ConfigLoader.from_dict(minimal(browser={"locale": "de-DE"}))
    assert loader.get("browser.locale") == "de-DE"
    assert loader.get("browser.missing", "fallback") == "fallback"
    assert loader.get("search.keywords.deeper", "x") == "x"


def test_log_file_timestamp_placeholder():
    loader = ConfigLoader.from_dict(minimal(logging={"log_file": "logs/run_{timestamp}.log"}))
    path = loader.get_log_file()
    assert path.parent == Path("logs")
    assert "{timestamp}" not in path.name
    assert path.name.startswith("run_")


def test_keyword_round_robin():
    settings = RunSettings(keywords=("a", "b", "c"), proxy_host="h", proxy_port=1)
    assert [settings.keyword_for(i) for i in range(1, 8)] == ["a", "b", "c", "a", "b", "c", "a"]


def test_with_overrides_ignores_none():
    settings = RunSettings(keywords=("a",), proxy_host="h", proxy_port=1)
    changed = settings.with_overrides(worker_count=4, provider=None, keywords=["x", "y"])

    assert changed.worker_count == 4
    assert changed.provider == "google"
    assert changed.keywords == ("x", "y")
    assert settings.worker_count == 1

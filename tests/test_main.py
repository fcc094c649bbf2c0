"""
Tests for CLI argument handling.
"""

from pathlib import Path

import pytest

from search_automation.config_loader import ConfigValidationError, load_config
from search_automation.main import build_settings, main, parse_args

SAMPLE_CONFIG = str(Path(__file__).resolve().parents[1] / "config" / "settings.yaml")


@pytest.fixture
def config():
    return load_config(SAMPLE_CONFIG)


def test_defaults_keep_config_values(config):
    settings = build_settings(config, parse_args(["--config", SAMPLE_CONFIG]))
    assert settings == config.to_settings()


def test_overrides_apply(config):
    args = parse_args(["--workers", "4", "--provider", "Bing", "--keyword", "a", "--keyword", "b", "--headed"])
    settings = build_settings(config, args)

    assert settings.worker_count == 4
    assert settings.provider == "bing"
    assert settings.keywords == ("a", "b")
    assert settings.headless is False


@pytest.mark.parametrize("argv", [["--workers", "0"], ["--provider", "yahoo"]])
def test_bad_overrides_rejected(config, argv):
    with pytest.raises(ConfigValidationError):
        build_settings(config, parse_args(argv))


def test_missing_config_exits_with_error(tmp_path):
    assert main(["--config", str(tmp_path / "missing.yaml")]) == 1


def test_non_numeric_config_value_exits_with_error(tmp_path, capsys):
    path = tmp_path / "settings.yaml"
    path.write_text(
        "search:\n  keywords: [a]\n  max_retries: three\nproxy:\n  host: h\n  port: 1\n",
        encoding="utf-8",
    )

    assert main(["--config", str(path)]) == 1
    assert "must be a number" in capsys.readouterr().out


def test_broken_yaml_exits_with_error(tmp_path, capsys):
    path = tmp_path / "settings.yaml"
    path.write_text("search: [unclosed\n", encoding="utf-8")

    assert main(["--config", str(path)]) == 1
    assert "Error loading config" in capsys.readouterr().out

#!/usr/bin/env python3

"""
Search Session Automation - Main Entry Point
Runs concurrent proxy-bound browser workers that search and harvest top results
"""

import argparse
import asyncio
import logging
import sys
from typing import List

from search_automation.config_loader import ConfigValidationError, RunSettings, load_config
from search_automation.models import WorkerReport
from search_automation.orchestrator import run_all
from search_automation.providers import available_providers
from search_automation.run_metrics import RunMetrics


def setup_logging(config) -> None:
    """Configure logging for the application"""
    log_file = config.get_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = getattr(logging, config.get_log_level(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file}")


def display_config(settings: RunSettings) -> None:
    """Display effective settings"""
    logger = logging.getLogger(__name__)

    print("\n" + "="*60)
    print("🔎 SEARCH SESSION AUTOMATION v0.1")
    print("="*60)

    print("\n📋 KEYWORDS:")
    for i, keyword in enumerate(settings.keywords, 1):
        print(f"  {i}. {keyword}")

    print(f"\n🌐 Provider: {settings.provider}")
    print(f"👷 Workers: {settings.worker_count}")
    print(f"🔁 Max attempts per keyword: {settings.max_retries}")
    print(f"📊 Results per keyword: {settings.result_limit}")

    print(f"\n🛰️  PROXY:")
    print(f"  Endpoint: {settings.proxy_host}:{settings.proxy_port}")
    print(f"  Mode: {settings.proxy_mode.value}")
    print(f"  Country: {settings.proxy_country}")
    if settings.proxy_mode.value == "sticky":
        print(f"  Sticky lifetime: {settings.proxy_lifetime_minutes} min")

    print(f"\n⚙️  BROWSER SETTINGS:")
    print(f"  Headless mode: {settings.headless}")
    print(f"  Viewport: {settings.viewport_width}x{settings.viewport_height}")
    print(f"  Navigation timeout: {settings.navigation_timeout_ms/1000}s")
    print(f"  Persistent profiles: {settings.profile_dir or 'disabled'}")

    print("\n" + "="*60 + "\n")

    logger.info(f"Config validated: {len(settings.keywords)} keywords, {settings.worker_count} workers")


def summarize(reports: List[WorkerReport]) -> None:
    """Print per-worker summary after the run"""
    succeeded = sum(1 for r in reports if r.succeeded)

    print("\n" + "="*60)
    print("✅ SEARCH RUN COMPLETE")
    print("="*60)
    print(f"\n📊 Workers succeeded: {succeeded}/{len(reports)}")
    for report in reports:
        marker = "✓" if report.succeeded else "✗"
        line = f"  {marker} {report}"
        if report.error:
            line += f" [{report.error}]"
        print(line)
        for hit in report.results:
            print(f"      - {hit}")
    print("\n" + "="*60 + "\n")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Search Session Automation")
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to config YAML",
    )
    parser.add_argument("--workers", type=int, default=None, help="Override workers.count")
    parser.add_argument("--provider", default=None, help="Override search.provider (google, bing)")
    parser.add_argument(
        "--keyword",
        action="append",
        dest="keywords",
        default=None,
        help="Override search.keywords (repeatable)",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    return parser.parse_args(argv)


def build_settings(config, args: argparse.Namespace) -> RunSettings:
    settings = config.to_settings().with_overrides(
        worker_count=args.workers,
        provider=args.provider.strip().lower() if args.provider else None,
        keywords=args.keywords,
        headless=False if args.headed else None,
    )
    if settings.worker_count <= 0:
        raise ConfigValidationError(f"Invalid override: --workers must be positive, got {settings.worker_count}")
    if not settings.keywords:
        raise ConfigValidationError("Invalid override: --keyword must not be empty")
    if settings.provider not in available_providers():
        raise ConfigValidationError(f"Invalid override: unknown provider {settings.provider!r}")
    return settings


def main(argv=None) -> int:
    """Main execution function"""
    print("\n🚀 Starting Search Session Automation...")
    args = parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.config)
        settings = build_settings(config, args)
    except FileNotFoundError as e:
        print(f"❌ Error: {e}")
        print("Make sure config/settings.yaml exists!")
        return 1
    except ConfigValidationError as e:
        print(f"❌ {e}")
        return 1
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    # Setup logging
    setup_logging(config)
    logger = logging.getLogger(__name__)

    display_config(settings)

    metrics = RunMetrics(provider=settings.provider)
    reports = asyncio.run(run_all(settings))

    for report in reports:
        for attempt, outcome in enumerate(report.outcomes, 1):
            metrics.record_attempt(report.worker_id, attempt, outcome)
        metrics.record_report(report)
    metrics.finish()

    summarize(reports)

    if settings.metrics_file:
        path = metrics.write_json(template=settings.metrics_file)
        logger.info(f"Run metrics written: {path}")

    logger.info(
        "Search run complete: %d/%d workers succeeded",
        sum(1 for r in reports if r.succeeded),
        len(reports),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

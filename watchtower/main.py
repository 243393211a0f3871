"""
Watchtower - Main Entry Point

Provides logging setup, run helpers and the scheduler that scans every
repository in the watchlist on a fixed interval.
"""

import sys
import signal
import asyncio
import logging
from pathlib import Path
from typing import List

import structlog
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR

from . import __version__
from .config import Config, WatchedRepository, load_config, validate_config
from .coordinator import WatchtowerCoordinator
from .delivery import EmailNotifier, LogNotifier, OwnerContext
from .github import GitHubRepository
from .models import WatchtowerResult
from .sources import build_sources


def configure_logging(config: Config) -> structlog.BoundLogger:
    """
    Configure structured logging.

    Args:
        config: Application configuration.

    Returns:
        Configured logger.
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer() if sys.stdout.isatty() else structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(config.log_file, encoding="utf-8")
        ]
    )

    return structlog.get_logger("watchtower")


def build_coordinator(config: Config) -> WatchtowerCoordinator:
    """Wire the sources and notifier selected by configuration into a coordinator."""
    notifier = EmailNotifier(config) if config.email_enabled else LogNotifier()
    return WatchtowerCoordinator(sources=build_sources(config), notifier=notifier)


async def scan_repository(
    coordinator: WatchtowerCoordinator,
    config: Config,
    target: WatchedRepository,
) -> WatchtowerResult:
    """
    Run Watchtower once against a single GitHub repository.

    Outstanding notifications are drained before returning.
    """
    github = GitHubRepository(
        owner=target.owner,
        repo=target.repo,
        token=config.github_token,
        api_url=config.github_api_url,
        timeout=config.http_timeout_seconds,
    )
    owner = OwnerContext(owner_id=target.owner_id) if target.owner_id else None

    try:
        result = await coordinator.run(github, github, owner=owner)
        await coordinator.wait_for_notifications()
        return result
    finally:
        github.close()


def run_watchlist(coordinator: WatchtowerCoordinator, config: Config, logger: structlog.BoundLogger) -> List[WatchtowerResult]:
    """Scan every watched repository, isolating failures per repository."""
    results = []

    for target in config.watchlist:
        try:
            result = asyncio.run(scan_repository(coordinator, config, target))
            results.append(result)
        except Exception as e:
            logger.error(
                "repository_scan_failed",
                repo=target.full_name,
                error=str(e),
                error_type=e.__class__.__name__,
            )

    logger.info(
        "watchlist_scan_completed",
        repositories=len(config.watchlist),
        succeeded=len(results),
        threats_found=sum(r.threats_found for r in results),
    )
    return results


def main():
    """Main entry point."""
    print("=" * 60)
    print("  Watchtower")
    print("  Repository Threat Correlation")
    print("=" * 60)
    print()

    config = load_config()

    errors = validate_config(config)
    if not config.watchlist:
        errors.append(f"No repositories found in watchlist {config.watchlist_path}")
    if errors:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        print()
        print("Please check your .env file and watchlist and try again.")
        sys.exit(1)

    Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)

    logger = configure_logging(config)
    logger.info("watchtower_starting", version=__version__, repositories=len(config.watchlist))

    coordinator = build_coordinator(config)

    shutdown_flag = False

    def signal_handler(signum, frame):
        nonlocal shutdown_flag
        if shutdown_flag:
            logger.warning("forced_shutdown")
            sys.exit(1)
        shutdown_flag = True
        logger.info("shutdown_requested")
        raise SystemExit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    scheduler = BlockingScheduler()

    def job_listener(event):
        if event.exception:
            logger.error("job_failed", exception=str(event.exception))

    scheduler.add_listener(job_listener, EVENT_JOB_ERROR)

    scheduler.add_job(
        run_watchlist,
        trigger=IntervalTrigger(hours=config.run_interval_hours),
        args=[coordinator, config, logger],
        id="watchtower_scan_job",
        name="Watchtower Repository Scan",
        replace_existing=True,
        max_instances=1
    )

    logger.info("scheduler_configured", interval_hours=config.run_interval_hours)

    # Run immediately on startup
    logger.info("running_initial_scan")
    run_watchlist(coordinator, config, logger)

    logger.info("starting_scheduler")
    print()
    print(f"Scheduler started. Scanning every {config.run_interval_hours} hours.")
    print("Press Ctrl+C to stop.")
    print()

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("shutting_down")
    finally:
        if scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("watchtower_stopped")


if __name__ == "__main__":
    main()

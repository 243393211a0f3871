"""
Watchtower - One-Shot Execution Mode

Scans a single repository once, for GitHub Actions and other environments
where a continuous scheduler is not appropriate.
"""

import os
import sys
import asyncio
import argparse
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import WatchedRepository, load_config, validate_config
from .exceptions import RepositoryAccessError
from .main import build_coordinator, configure_logging, scan_repository
from .models import WatchtowerResult


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="watchtower-run-once",
        description="Scan one GitHub repository for vulnerable dependencies.",
    )
    parser.add_argument("--owner", required=True, help="Repository owner (user or organization)")
    parser.add_argument("--repo", required=True, help="Repository name")
    parser.add_argument("--owner-id", default=None, help="Account id for activity entries and notifications")
    return parser.parse_args(argv)


def print_summary(result: WatchtowerResult):
    remediations = result.remediations
    print()
    print("=" * 60)
    print("  Run Summary")
    print("=" * 60)
    print(f"Dependencies Indexed: {result.dependencies_indexed}")
    print(f"Advisories Checked: {result.advisories_checked}")
    print(f"Sources: {', '.join(result.sources) or 'none'}")
    print(f"Threats Found: {result.threats_found}")
    print(f"Issues Opened: {sum(1 for r in remediations if r.issue_url)}")
    print(f"Fix PRs Opened: {sum(1 for r in remediations if r.change_request_url)}")
    print(f"Errors: {sum(1 for r in remediations if r.error)}")
    print("=" * 60)
    print()


def write_github_output(result: WatchtowerResult, path: str):
    with open(path, "a") as f:
        f.write(f"dependencies_indexed={result.dependencies_indexed}\n")
        f.write(f"advisories_checked={result.advisories_checked}\n")
        f.write(f"threats_found={result.threats_found}\n")
        f.write(f"sources={','.join(result.sources)}\n")
        f.write(f"change_requests={sum(1 for r in result.remediations if r.change_request_url)}\n")


def run_single_scan(argv: Optional[List[str]] = None) -> WatchtowerResult:
    """
    Execute a single scan without scheduling.

    Raises:
        SystemExit: On configuration errors or fatal failures.
    """
    args = parse_args(argv)

    print("=" * 60)
    print("  Watchtower - Single Run")
    print(f"  {args.owner}/{args.repo}")
    print("=" * 60)
    print()

    config = load_config()

    errors = validate_config(config)
    if errors:
        print("❌ Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        print()
        print("Please configure GitHub Secrets properly.")
        sys.exit(1)

    Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)

    logger = configure_logging(config)
    logger.info("single_run_started", version=__version__, repo=f"{args.owner}/{args.repo}")

    target = WatchedRepository(owner=args.owner, repo=args.repo, owner_id=args.owner_id)

    try:
        coordinator = build_coordinator(config)
        result = asyncio.run(scan_repository(coordinator, config, target))
    except RepositoryAccessError as e:
        logger.error("repository_access_failed", error=str(e), status_code=e.status_code)
        print(f"\n❌ Repository not accessible: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.error("run_failed", error=str(e), exc_info=True)
        print(f"\n❌ Fatal error: {str(e)}")
        sys.exit(1)

    logger.info(
        "single_run_completed",
        threats_found=result.threats_found,
        advisories_checked=result.advisories_checked,
        dependencies_indexed=result.dependencies_indexed,
        sources=result.sources,
    )
    print_summary(result)

    if github_output := os.getenv("GITHUB_OUTPUT"):
        try:
            write_github_output(result, github_output)
            logger.info("github_output_written", path=github_output)
        except Exception as e:
            logger.warning("github_output_write_failed", error=str(e))

    return result


def main():
    """Entry point for one-shot execution."""
    run_single_scan()


if __name__ == "__main__":
    main()

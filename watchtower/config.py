"""
Configuration module for Watchtower.

Loads configuration from environment variables and .env file,
validates required settings, and provides typed access to configuration values.
"""

import os
import sys
from pathlib import Path
from typing import Optional, List
from dataclasses import dataclass, field
from dotenv import load_dotenv


@dataclass
class WatchedRepository:
    """A repository scanned on every scheduled run."""
    owner: str
    repo: str
    owner_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # GitHub Configuration
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    github_graphql_url: str = "https://api.github.com/graphql"

    # Threat feed endpoints
    osv_api_url: str = "https://api.osv.dev/v1/query"
    kev_feed_url: str = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"
    hn_search_url: str = "https://hn.algolia.com/api/v1/search"

    # Source tuning
    github_advisory_limit: int = 20
    community_package_limit: int = 10
    community_request_delay_seconds: float = 0.1
    community_recency_days: int = 7
    source_timeout_seconds: float = 120.0
    http_timeout_seconds: float = 30.0

    # Scheduler Configuration
    run_interval_hours: int = 12
    watchlist_path: str = "./watchlist.yaml"
    watchlist: List[WatchedRepository] = field(default_factory=list)

    # Logging Configuration
    log_level: str = "INFO"
    log_file: str = "./logs/watchtower.log"

    # Notification delivery (optional)
    smtp_user: str = ""
    smtp_app_password: str = ""
    notify_recipient: str = ""

    @property
    def email_enabled(self) -> bool:
        """True when every SMTP setting needed for email notifications is present."""
        return bool(self.smtp_user and self.smtp_app_password and self.notify_recipient)


def load_config(env_path: Optional[str] = None) -> Config:
    """
    Load configuration from environment variables and optional .env file.

    Args:
        env_path: Optional path to .env file. If not provided, searches
                  current directory and parent directories.

    Returns:
        Config object with loaded values.
    """
    # Load .env file if it exists
    if env_path:
        load_dotenv(env_path)
    else:
        env_file = Path(".env")
        if env_file.exists():
            load_dotenv(env_file)
        else:
            for parent in Path.cwd().parents:
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    break

    config = Config(
        # GitHub
        github_token=os.getenv("GITHUB_TOKEN", ""),
        github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
        github_graphql_url=os.getenv("GITHUB_GRAPHQL_URL", "https://api.github.com/graphql"),

        # Feeds
        osv_api_url=os.getenv("OSV_API_URL", "https://api.osv.dev/v1/query"),
        kev_feed_url=os.getenv(
            "KEV_FEED_URL",
            "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"
        ),
        hn_search_url=os.getenv("HN_SEARCH_URL", "https://hn.algolia.com/api/v1/search"),

        # Source tuning
        github_advisory_limit=int(os.getenv("GITHUB_ADVISORY_LIMIT", "20")),
        community_package_limit=int(os.getenv("COMMUNITY_PACKAGE_LIMIT", "10")),
        community_request_delay_seconds=float(os.getenv("COMMUNITY_REQUEST_DELAY_SECONDS", "0.1")),
        community_recency_days=int(os.getenv("COMMUNITY_RECENCY_DAYS", "7")),
        source_timeout_seconds=float(os.getenv("SOURCE_TIMEOUT_SECONDS", "120")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),

        # Scheduler
        run_interval_hours=int(os.getenv("RUN_INTERVAL_HOURS", "12")),
        watchlist_path=os.getenv("WATCHLIST_PATH", "./watchlist.yaml"),

        # Logging
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE", "./logs/watchtower.log"),

        # Email
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_app_password=os.getenv("SMTP_APP_PASSWORD", ""),
        notify_recipient=os.getenv("NOTIFY_RECIPIENT", ""),
    )

    config.watchlist = load_watchlist(config.watchlist_path)

    return config


def load_watchlist(config_path: str) -> List[WatchedRepository]:
    """
    Load the scheduled-scan repository list from a YAML file.

    Expected layout::

        repositories:
          - owner: acme
            repo: storefront
            owner_id: org-42

    Args:
        config_path: Path to watchlist.yaml.

    Returns:
        List of WatchedRepository entries; empty if the file is absent or invalid.
    """
    watchlist_path = Path(config_path)

    if not watchlist_path.exists():
        return []

    try:
        import yaml

        with open(watchlist_path) as f:
            data = yaml.safe_load(f) or {}

        repositories = []
        for entry in data.get("repositories", []):
            owner = entry.get("owner")
            repo = entry.get("repo")
            if not owner or not repo:
                print(f"Warning: skipping watchlist entry without owner/repo: {entry}", file=sys.stderr)
                continue
            owner_id = entry.get("owner_id")
            repositories.append(WatchedRepository(
                owner=str(owner),
                repo=str(repo),
                owner_id=str(owner_id) if owner_id is not None else None,
            ))

        return repositories

    except Exception as e:
        print(f"Warning: Failed to load watchlist from {config_path}: {e}", file=sys.stderr)
        print(f"  Error type: {e.__class__.__name__}", file=sys.stderr)
        return []


def validate_config(config: Config) -> list[str]:
    """
    Validate that required configuration values are present.

    Args:
        config: Configuration object to validate.

    Returns:
        List of validation error messages. Empty if valid.
    """
    errors = []

    if not config.github_token:
        errors.append("GITHUB_TOKEN is required")

    # Email settings are all-or-nothing
    email_settings = [config.smtp_user, config.smtp_app_password, config.notify_recipient]
    if any(email_settings) and not all(email_settings):
        errors.append("SMTP_USER, SMTP_APP_PASSWORD and NOTIFY_RECIPIENT must be set together")
    if config.smtp_user and "@" not in config.smtp_user:
        errors.append("SMTP_USER must be a valid email address")
    if config.notify_recipient and "@" not in config.notify_recipient:
        errors.append("NOTIFY_RECIPIENT must be a valid email address")

    # Validate numeric ranges
    if config.github_advisory_limit < 1 or config.github_advisory_limit > 100:
        errors.append("GITHUB_ADVISORY_LIMIT must be between 1 and 100")
    if config.community_package_limit < 0:
        errors.append("COMMUNITY_PACKAGE_LIMIT must not be negative")
    if config.community_request_delay_seconds < 0:
        errors.append("COMMUNITY_REQUEST_DELAY_SECONDS must not be negative")
    if config.community_recency_days < 1:
        errors.append("COMMUNITY_RECENCY_DAYS must be at least 1")
    if config.source_timeout_seconds <= 0:
        errors.append("SOURCE_TIMEOUT_SECONDS must be positive")
    if config.http_timeout_seconds <= 0:
        errors.append("HTTP_TIMEOUT_SECONDS must be positive")
    if config.run_interval_hours < 1:
        errors.append("RUN_INTERVAL_HOURS must be at least 1")

    return errors

"""Threat-intelligence sources queried on every Watchtower run."""

from typing import Tuple

from ..config import Config
from .base import SourceContext, SourceReport, ThreatSource
from .github_advisory import GitHubAdvisorySource
from .hackernews import CommunitySignalSource
from .kev import KEVSource
from .osv import OSVSource


def build_sources(config: Config) -> Tuple[ThreatSource, ...]:
    """
    Construct the fixed set of threat sources from configuration.

    Called once at startup; the returned tuple is passed to the coordinator.
    """
    common = {
        "timeout_seconds": config.source_timeout_seconds,
        "http_timeout": config.http_timeout_seconds,
    }
    return (
        OSVSource(api_url=config.osv_api_url, **common),
        GitHubAdvisorySource(
            token=config.github_token,
            graphql_url=config.github_graphql_url,
            limit=config.github_advisory_limit,
            **common,
        ),
        CommunitySignalSource(
            search_url=config.hn_search_url,
            package_limit=config.community_package_limit,
            request_delay_seconds=config.community_request_delay_seconds,
            recency_days=config.community_recency_days,
            **common,
        ),
        KEVSource(feed_url=config.kev_feed_url, **common),
    )


__all__ = [
    "SourceContext",
    "SourceReport",
    "ThreatSource",
    "OSVSource",
    "GitHubAdvisorySource",
    "CommunitySignalSource",
    "KEVSource",
    "build_sources",
]

"""
Community signal source backed by the Hacker News Algolia search API.

Searches recent stories mentioning a dependency together with security
keywords. Results are low confidence: a hit only means people are talking
about the package, so every advisory carries severity "unknown".
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Set

import httpx
from backoff import on_exception, expo

from ..exceptions import SourceUnavailableError
from ..models import Advisory, SourceTag
from .base import SourceContext, ThreatSource
from .models import HackerNewsHit


class CommunitySignalSource(ThreatSource):
    """
    Hacker News search client with a fixed delay between requests.

    Only the first ``package_limit`` dependency names are searched, two
    queries each, to stay well inside Algolia's public rate limits.
    """

    tag = SourceTag.COMMUNITY
    DEFAULT_URL = "https://hn.algolia.com/api/v1/search"
    HITS_PER_PAGE = 5

    def __init__(
        self,
        search_url: str = DEFAULT_URL,
        package_limit: int = 10,
        request_delay_seconds: float = 0.1,
        recency_days: int = 7,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.search_url = search_url or self.DEFAULT_URL
        self.package_limit = package_limit
        self.request_delay_seconds = request_delay_seconds
        self.recency_days = recency_days

    @on_exception(expo, (httpx.TransportError,), max_tries=2)
    async def _search(self, client: httpx.AsyncClient, query: str) -> Optional[List[HackerNewsHit]]:
        response = await client.get(
            self.search_url,
            params={"query": query, "tags": "story", "hitsPerPage": self.HITS_PER_PAGE},
        )

        if response.status_code != 200:
            self.logger.warning("hn_search_failed", query=query, status_code=response.status_code)
            return None

        hits = []
        for hit in response.json().get("hits") or []:
            try:
                hits.append(HackerNewsHit.from_search_hit(hit))
            except (ValueError, TypeError) as e:
                self.logger.debug("hn_hit_parse_error", query=query, error=str(e))
        return hits

    @staticmethod
    def build_queries(package_name: str) -> List[str]:
        return [f"{package_name} vulnerability", f"CVE {package_name}"]

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        names = [dep.name for dep in context.index.dependencies[:self.package_limit]]
        self.logger.info("hn_search_started", packages=len(names))

        advisories: List[Advisory] = []
        seen_ids: Set[str] = set()
        now = datetime.now(timezone.utc)
        searches = 0
        failures = 0

        async with self._client() as client:
            for name in names:
                hits: List[HackerNewsHit] = []
                for query in self.build_queries(name):
                    searches += 1
                    try:
                        found = await self._search(client, query)
                    except (httpx.HTTPError, ValueError) as e:
                        self.logger.warning("hn_search_error", query=query, error=str(e))
                        found = None
                    if found is None:
                        failures += 1
                    else:
                        hits.extend(found)
                    await asyncio.sleep(self.request_delay_seconds)

                for hit in hits:
                    if not hit.object_id or hit.object_id in seen_ids:
                        continue
                    if not hit.is_recent(now, self.recency_days):
                        continue
                    seen_ids.add(hit.object_id)
                    advisories.append(hit.to_advisory(name))

        if searches and failures == searches:
            raise SourceUnavailableError("every community search failed")

        self.logger.info("hn_search_completed", searches=searches, failures=failures, discussions=len(advisories))
        return advisories

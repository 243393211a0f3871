"""
CISA Known Exploited Vulnerabilities (KEV) catalog source.

Fetches the KEV catalog JSON feed and turns every entry into a critical
advisory. The catalog names vendors and products, not registry packages,
so the advisory's package identity is a lowercased ``vendor/product``
keyword that only matches dependencies named the same way.
"""

from typing import List

import httpx
from backoff import on_exception, expo

from ..models import Advisory, SourceTag
from .base import SourceContext, ThreatSource
from .models import KEVEntry


class KEVSource(ThreatSource):
    """
    Client for the CISA KEV catalog.

    The KEV catalog is a JSON feed of vulnerabilities with known
    active exploitation, maintained by CISA.
    """

    tag = SourceTag.KEV
    DEFAULT_FEED_URL = "https://www.cisa.gov/sites/default/files/feeds/known_exploited_vulnerabilities.json"

    def __init__(self, feed_url: str = DEFAULT_FEED_URL, **kwargs):
        super().__init__(**kwargs)
        self.feed_url = feed_url or self.DEFAULT_FEED_URL

    @on_exception(expo, (httpx.TransportError,), max_tries=3, max_time=120)
    async def _fetch_catalog(self) -> dict:
        """
        Fetch the KEV catalog from CISA.

        Returns:
            Raw JSON response data.

        Raises:
            httpx.HTTPError: On request failure after retries.
        """
        self.logger.debug("kev_fetch_started", url=self.feed_url)

        async with self._client() as client:
            response = await client.get(self.feed_url)
            response.raise_for_status()
            data = response.json()

        self.logger.info(
            "kev_fetch_completed",
            catalog_version=data.get("catalogVersion"),
            count=data.get("count"),
        )
        return data

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        data = await self._fetch_catalog()

        advisories = []
        for vuln in data.get("vulnerabilities", []):
            try:
                advisories.append(KEVEntry.from_kev_data(vuln).to_advisory())
            except Exception as e:
                cve_id = vuln.get("cveID", "unknown")
                self.logger.warning("kev_parse_error", cve_id=cve_id, error=str(e))

        self.logger.info("kev_catalog_loaded", entries=len(advisories))
        return advisories

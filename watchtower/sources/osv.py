"""
OSV vulnerability database source.

Queries https://api.osv.dev once per indexed dependency, concurrently, and
maps the returned vulnerabilities into advisories.

API Documentation: https://google.github.io/osv.dev/post-v1-query/
"""

import asyncio
from typing import Dict, List, Any, Optional

import httpx
from backoff import on_exception, expo

from ..exceptions import SourceUnavailableError
from ..models import Advisory, Dependency, Ecosystem, SourceTag
from .base import SourceContext, ThreatSource
from .models import OSVVulnerability


OSV_ECOSYSTEMS: Dict[Ecosystem, str] = {
    Ecosystem.NPM: "npm",
    Ecosystem.PYPI: "PyPI",
    Ecosystem.GO: "Go",
    Ecosystem.RUBYGEMS: "RubyGems",
}


class OSVSource(ThreatSource):
    """
    OSV query API client.

    FREE service, no authentication required.
    """

    tag = SourceTag.OSV
    DEFAULT_URL = "https://api.osv.dev/v1/query"

    def __init__(self, api_url: str = DEFAULT_URL, **kwargs):
        super().__init__(**kwargs)
        self.api_url = api_url or self.DEFAULT_URL

    @on_exception(expo, (httpx.TransportError,), max_tries=3)
    async def _post_query(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.post(self.api_url, json=payload)
        response.raise_for_status()
        return response.json()

    async def _query_dependency(self, client: httpx.AsyncClient, dep: Dependency) -> Optional[List[Advisory]]:
        """Advisories for one dependency, or None if the request failed."""
        payload = {
            "package": {"name": dep.name, "ecosystem": OSV_ECOSYSTEMS[dep.ecosystem]},
            "version": dep.version,
        }
        self.logger.debug("osv_query", package=dep.name, version=dep.version, ecosystem=dep.ecosystem.value)

        try:
            data = await self._post_query(client, payload)
        except httpx.HTTPStatusError as e:
            self.logger.warning(
                "osv_http_error",
                package=dep.name,
                status_code=e.response.status_code,
            )
            return None
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning("osv_request_failed", package=dep.name, error=str(e))
            return None

        advisories = []
        for vuln_data in data.get("vulns") or []:
            try:
                advisories.append(OSVVulnerability.from_osv_data(vuln_data).to_advisory(dep.name))
            except Exception as e:
                self.logger.warning(
                    "osv_parse_error",
                    package=dep.name,
                    vuln_id=vuln_data.get("id", "unknown"),
                    error=str(e),
                )
        return advisories

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        dependencies = context.index.dependencies
        async with self._client() as client:
            results = await asyncio.gather(
                *(self._query_dependency(client, dep) for dep in dependencies)
            )

        failures = sum(1 for batch in results if batch is None)
        if dependencies and failures == len(dependencies):
            raise SourceUnavailableError("every OSV query failed")

        advisories = [advisory for batch in results if batch for advisory in batch]
        self.logger.info(
            "osv_results",
            dependencies=len(dependencies),
            failures=failures,
            advisories=len(advisories),
        )
        return advisories

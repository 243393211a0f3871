"""
GitHub Advisory Database source.

Issues one GraphQL query per ecosystem present in the dependency index,
requesting the most recently published advisories for that ecosystem.
"""

import asyncio
from typing import Dict, List, Optional, Any

import httpx
from backoff import on_exception, expo

from ..exceptions import SourceUnavailableError
from ..models import Advisory, Ecosystem, SourceTag
from .base import SourceContext, ThreatSource
from .models import GitHubAdvisoryNode


GITHUB_ECOSYSTEMS: Dict[Ecosystem, str] = {
    Ecosystem.NPM: "NPM",
    Ecosystem.PYPI: "PIP",
    Ecosystem.GO: "GO",
    Ecosystem.RUBYGEMS: "RUBYGEMS",
}

ADVISORY_QUERY = """
query($ecosystem: SecurityAdvisoryEcosystem!, $first: Int!) {
  securityAdvisories(
    first: $first,
    orderBy: { field: PUBLISHED_AT, direction: DESC },
    ecosystem: $ecosystem
  ) {
    nodes {
      ghsaId
      summary
      description
      severity
      permalink
      publishedAt
      vulnerabilities(first: 5) {
        nodes {
          package {
            name
            ecosystem
          }
          vulnerableVersionRange
          firstPatchedVersion {
            identifier
          }
        }
      }
    }
  }
}
"""


class GitHubAdvisorySource(ThreatSource):
    """
    GitHub Security Advisory GraphQL client.

    Requires a token; the public GraphQL endpoint rejects anonymous calls.
    """

    tag = SourceTag.GITHUB
    DEFAULT_URL = "https://api.github.com/graphql"

    def __init__(
        self,
        token: Optional[str],
        graphql_url: str = DEFAULT_URL,
        limit: int = 20,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.token = token
        self.graphql_url = graphql_url or self.DEFAULT_URL
        self.limit = limit

        if not self.token:
            self.logger.warning("github_advisory_no_token", message="GitHub advisories disabled")

    @on_exception(expo, (httpx.TransportError,), max_tries=3)
    async def _post_graphql(self, client: httpx.AsyncClient, variables: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.post(
            self.graphql_url,
            json={"query": ADVISORY_QUERY, "variables": variables},
        )
        response.raise_for_status()
        data = response.json()

        if data.get("errors"):
            messages = "; ".join(e.get("message", "unknown") for e in data["errors"])
            raise SourceUnavailableError(f"GraphQL errors: {messages}")

        return data.get("data") or {}

    async def _query_ecosystem(self, client: httpx.AsyncClient, ecosystem: Ecosystem) -> List[Advisory]:
        gh_ecosystem = GITHUB_ECOSYSTEMS.get(ecosystem)
        if not gh_ecosystem:
            self.logger.info("github_advisory_unknown_ecosystem", ecosystem=ecosystem.value)
            return []

        data = await self._post_graphql(client, {"ecosystem": gh_ecosystem, "first": self.limit})

        advisories: List[Advisory] = []
        for node in (data.get("securityAdvisories") or {}).get("nodes") or []:
            try:
                advisories.extend(GitHubAdvisoryNode.from_graphql_node(node).to_advisories())
            except Exception as e:
                self.logger.warning(
                    "github_advisory_parse_error",
                    ghsa_id=node.get("ghsaId", "unknown"),
                    error=str(e),
                )

        self.logger.info(
            "github_advisory_results",
            ecosystem=gh_ecosystem,
            advisories=len(advisories),
        )
        return advisories

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        if not self.token:
            raise SourceUnavailableError("no GitHub token configured")

        ecosystems = context.index.ecosystems()
        advisories: List[Advisory] = []
        failures = 0

        async with self._client(headers={"Authorization": f"Bearer {self.token}"}) as client:
            results = await asyncio.gather(
                *(self._query_ecosystem(client, eco) for eco in ecosystems),
                return_exceptions=True,
            )

        for ecosystem, result in zip(ecosystems, results):
            if isinstance(result, Exception):
                failures += 1
                self.logger.error(
                    "github_advisory_query_failed",
                    ecosystem=ecosystem.value,
                    error=str(result),
                )
                continue
            advisories.extend(result)

        if ecosystems and failures == len(ecosystems):
            raise SourceUnavailableError("every ecosystem query failed")

        return advisories

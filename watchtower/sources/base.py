"""
Common contract for threat-intelligence sources.

Every source answers ``query(context) -> list[Advisory]`` and never raises:
failures and timeouts are logged and reported as an empty, not-ok
``SourceReport``.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
import structlog

from ..models import Advisory, DependencyIndex, SourceTag

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SourceContext:
    """Inputs a source may use to build its queries."""
    index: DependencyIndex


@dataclass
class SourceReport:
    """Outcome of one source query."""
    tag: SourceTag
    advisories: List[Advisory] = field(default_factory=list)
    ok: bool = True
    error: Optional[str] = None


class ThreatSource:
    """
    Base class for threat sources.

    Subclasses set ``tag`` and implement ``_fetch``. The base class bounds
    each query by ``timeout_seconds`` and turns any failure into an empty
    report.
    """

    tag: SourceTag

    def __init__(
        self,
        timeout_seconds: float = 120.0,
        http_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            timeout_seconds: Upper bound for one complete query of this source.
            http_timeout: Per-request HTTP timeout in seconds.
            transport: Optional httpx transport, used to stub the network in tests.
        """
        self.timeout_seconds = timeout_seconds
        self.http_timeout = http_timeout
        self.transport = transport
        self.logger = logger.bind(source=self.tag.value)

    def _client(self, **kwargs) -> httpx.AsyncClient:
        headers = {"User-Agent": "Watchtower-Threat-Core/1.0", "Accept": "application/json"}
        headers.update(kwargs.pop("headers", {}))
        return httpx.AsyncClient(
            timeout=self.http_timeout,
            transport=self.transport,
            headers=headers,
            **kwargs,
        )

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        raise NotImplementedError

    async def collect(self, context: SourceContext) -> SourceReport:
        """Run the query with fault isolation and report how it went."""
        try:
            advisories = await asyncio.wait_for(self._fetch(context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.error("source_query_timed_out", timeout_seconds=self.timeout_seconds)
            return SourceReport(tag=self.tag, ok=False, error="timed out")
        except Exception as e:
            self.logger.error("source_query_failed", error=str(e), error_type=e.__class__.__name__)
            return SourceReport(tag=self.tag, ok=False, error=str(e))

        self.logger.info("source_query_completed", advisories=len(advisories))
        return SourceReport(tag=self.tag, advisories=advisories)

    async def query(self, context: SourceContext) -> List[Advisory]:
        """Return advisories for the context; empty on any failure."""
        report = await self.collect(context)
        return report.advisories

"""
Run coordinator.

Sequences one Watchtower run over a repository: access check, dependency
indexing, concurrent threat-source fan-out, matching, sequential
remediation, and fire-and-forget owner notifications.
"""

import asyncio
import time
from typing import List, Optional, Sequence, Set

import structlog

from .delivery.notifier import (
    ActivityLog,
    LogNotifier,
    Notifier,
    OwnerContext,
    StructlogActivityLog,
    notification_categories,
)
from .indexer import DependencyIndexer
from .matcher import match_advisories
from .models import Advisory, RemediationOutcome, ThreatMatch, WatchtowerResult
from .remediation.planner import RemediationPlanner
from .repository import ChangePublisher, RepositoryAccessor
from .sources.base import SourceContext, ThreatSource

logger = structlog.get_logger(__name__)


class WatchtowerCoordinator:
    """
    Orchestrates a Watchtower run.

    The source tuple is fixed for the coordinator's lifetime; each run gets
    fresh index, advisory and match lists.
    """

    def __init__(
        self,
        sources: Sequence[ThreatSource],
        indexer: Optional[DependencyIndexer] = None,
        notifier: Optional[Notifier] = None,
        activity_log: Optional[ActivityLog] = None,
    ):
        self.sources = tuple(sources)
        self.indexer = indexer or DependencyIndexer()
        self.notifier = notifier or LogNotifier()
        self.activity_log = activity_log or StructlogActivityLog()
        self._pending: Set[asyncio.Task] = set()

    async def run(
        self,
        repo: RepositoryAccessor,
        publisher: ChangePublisher,
        owner: Optional[OwnerContext] = None,
    ) -> WatchtowerResult:
        """
        Execute one run against a repository.

        Args:
            repo: Read access to the repository.
            publisher: Used to open issues and fix pull requests.
            owner: Account to log activity and send notifications for.

        Returns:
            Run summary.

        Raises:
            RepositoryAccessError: If the repository cannot be accessed.
        """
        log = logger.bind(repo=f"{repo.owner}/{repo.repo}")
        start_time = time.time()
        log.info("watchtower_run_started")

        await asyncio.to_thread(repo.check_access)

        index = await asyncio.to_thread(self.indexer.index, repo)
        if not index.dependencies:
            log.info("no_dependencies_found")
            return WatchtowerResult()

        context = SourceContext(index=index)
        reports = await asyncio.gather(*(source.collect(context) for source in self.sources))

        advisories: List[Advisory] = []
        sources: List[str] = []
        for report in reports:
            advisories.extend(report.advisories)
            if report.ok:
                sources.append(report.tag.value)

        log.info("advisories_collected", advisories=len(advisories), sources=sources)

        matches = match_advisories(index, advisories)
        log.info("threats_matched", matches=len(matches))

        remediations = await self._remediate(matches, repo, publisher, log)

        result = WatchtowerResult(
            matches=matches,
            advisories_checked=len(advisories),
            dependencies_indexed=len(index.dependencies),
            sources=sources,
            remediations=remediations,
        )

        if owner is not None:
            self._report_to_owner(owner, result, log)

        log.info(
            "watchtower_run_completed",
            threats_found=result.threats_found,
            advisories_checked=result.advisories_checked,
            dependencies_indexed=result.dependencies_indexed,
            duration_seconds=round(time.time() - start_time, 1),
        )
        return result

    async def _remediate(
        self,
        matches: List[ThreatMatch],
        repo: RepositoryAccessor,
        publisher: ChangePublisher,
        log: structlog.BoundLogger,
    ) -> List[RemediationOutcome]:
        planner = RemediationPlanner(publisher, repo)
        outcomes: List[RemediationOutcome] = []

        for i, match in enumerate(matches, 1):
            log.info(
                "remediating_match",
                advisory_id=match.advisory.id,
                package=match.dependency.name,
                progress=f"{i}/{len(matches)}"
            )
            try:
                outcomes.append(await asyncio.to_thread(planner.remediate, match))
            except Exception as e:
                log.error(
                    "remediation_failed",
                    advisory_id=match.advisory.id,
                    package=match.dependency.name,
                    error=str(e),
                )
                outcomes.append(RemediationOutcome(
                    advisory_id=match.advisory.id,
                    package=match.dependency.name,
                    error=str(e),
                ))

        return outcomes

    def _report_to_owner(self, owner: OwnerContext, result: WatchtowerResult, log: structlog.BoundLogger):
        if not result.matches:
            return

        try:
            self.activity_log.log_activity(
                owner,
                "threat_detected",
                f"Watchtower found {result.threats_found} threat(s) affecting your dependencies",
                {"match_count": result.threats_found, "sources": result.sources},
            )
        except Exception as e:
            log.warning("activity_log_failed", owner_id=owner.owner_id, error=str(e))

        for match in result.matches:
            categories = notification_categories(match.advisory)
            if not categories:
                continue
            task = asyncio.create_task(self.notifier.notify(owner, match.advisory, categories))
            self._pending.add(task)
            task.add_done_callback(self._notification_done)

    def _notification_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("notification_failed", error=str(error), error_type=error.__class__.__name__)

    async def wait_for_notifications(self):
        """Wait for every outstanding notification task to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

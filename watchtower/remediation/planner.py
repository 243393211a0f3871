"""
Remediation planner.

Turns a threat match into repository actions: a tracking issue always, and
a version-bump change request when a fixed version is known and the
ecosystem's manifest can be edited safely.
"""

import time
from typing import Callable, Dict, List, Optional

import structlog

from ..indexer import MANIFEST_FILES
from ..models import Ecosystem, RemediationOutcome, ThreatMatch
from ..repository import ChangePublisher, RepositoryAccessor
from .manifests import bump_package_json, bump_requirements_txt

logger = structlog.get_logger(__name__)


ISSUE_LABELS = ["security", "watchtower"]

MANIFEST_EDITORS: Dict[Ecosystem, Callable[[str, str, str], str]] = {
    Ecosystem.NPM: bump_package_json,
    Ecosystem.PYPI: bump_requirements_txt,
}

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def build_issue_title(match: ThreatMatch) -> str:
    advisory = match.advisory
    return f"[Watchtower] {advisory.severity.value.upper()}: {advisory.title} ({match.dependency.name})"


def build_issue_body(match: ThreatMatch) -> str:
    """Markdown body of the tracking issue."""
    advisory, dep = match.advisory, match.dependency
    lines: List[Optional[str]] = [
        f"## Security Advisory: {advisory.title}",
        "",
        f"**Package:** `{dep.name}@{dep.version}` ({dep.ecosystem.value})",
        f"**Severity:** {advisory.severity.value}",
        f"**Source:** {advisory.source.value}",
        f"**CVE:** {advisory.cve_id}" if advisory.cve_id else None,
        f"**Affected versions:** {advisory.affected_version_range}" if advisory.affected_version_range else None,
        f"**Fix available:** upgrade to `{advisory.fixed_version}`" if advisory.fixed_version else None,
        "",
        advisory.description,
        "",
        f"**Reference:** {advisory.url}",
        "",
        "---",
        "*Detected by Watchtower threat intelligence*",
    ]
    return "\n".join(line for line in lines if line is not None)


def build_change_request_body(match: ThreatMatch) -> str:
    """Markdown body of the version-bump pull request."""
    advisory, dep = match.advisory, match.dependency
    lines: List[Optional[str]] = [
        f"## Security: bump {dep.name} to {advisory.fixed_version}",
        "",
        f"Watchtower detected that `{dep.name}@{dep.version}` is affected by **{advisory.title}**.",
        "",
        f"- **Severity:** {advisory.severity.value}",
        f"- **CVE:** {advisory.cve_id}" if advisory.cve_id else None,
        f"- **Fix:** upgrade to `{advisory.fixed_version}`",
        f"- **Reference:** {advisory.url}",
        "",
        "---",
        "*Automated by Watchtower threat intelligence*",
    ]
    return "\n".join(line for line in lines if line is not None)


class RemediationPlanner:
    """
    Opens the issue and, where possible, the fix PR for each match.

    Issue creation errors propagate to the caller. Change-request errors
    are logged and recorded on the outcome.
    """

    def __init__(
        self,
        publisher: ChangePublisher,
        repo: RepositoryAccessor,
        manifest_files: Optional[Dict[Ecosystem, str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.publisher = publisher
        self.repo = repo
        self.manifest_files = dict(manifest_files or MANIFEST_FILES)
        self.clock = clock

    def branch_name(self, package: str) -> str:
        timestamp = to_base36(int(self.clock() * 1000))
        return f"watchtower/bump-{package}-{timestamp}"

    def remediate(self, match: ThreatMatch) -> RemediationOutcome:
        """
        Act on one match.

        Raises:
            Exception: Whatever the publisher raises while opening the issue.
        """
        advisory, dep = match.advisory, match.dependency
        log = logger.bind(advisory_id=advisory.id, package=dep.name)

        outcome = RemediationOutcome(advisory_id=advisory.id, package=dep.name)
        outcome.issue_url = self.publisher.open_issue(
            build_issue_title(match),
            build_issue_body(match),
            list(ISSUE_LABELS),
        )
        log.info("tracking_issue_opened", url=outcome.issue_url)

        if not advisory.fixed_version:
            return outcome

        editor = MANIFEST_EDITORS.get(dep.ecosystem)
        if editor is None:
            log.debug("automated_bump_unsupported", ecosystem=dep.ecosystem.value)
            return outcome

        try:
            outcome.change_request_url = self._open_bump(match, editor, log)
        except Exception as e:
            log.error("change_request_failed", error=str(e), error_type=e.__class__.__name__)
            outcome.error = str(e)

        return outcome

    def _open_bump(
        self,
        match: ThreatMatch,
        editor: Callable[[str, str, str], str],
        log: structlog.BoundLogger,
    ) -> Optional[str]:
        advisory, dep = match.advisory, match.dependency
        path = self.manifest_files[dep.ecosystem]

        content = self.repo.fetch_file(path)
        if content is None:
            log.warning("bump_manifest_missing", path=path)
            return None

        updated = editor(content, dep.name, advisory.fixed_version)
        if updated == content:
            log.info("bump_produced_no_change", path=path)
            return None

        url = self.publisher.open_change_request(
            self.branch_name(dep.name),
            f"fix(security): bump {dep.name} to {advisory.fixed_version}",
            build_change_request_body(match),
            {path: updated},
        )
        log.info("change_request_opened", url=url, fixed_version=advisory.fixed_version)
        return url

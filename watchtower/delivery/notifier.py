"""
Downstream notifications and activity logging.

After a run with matches, the coordinator records one activity entry for
the owner and notifies about each match that falls into a category the
owner cares about. Both collaborators are protocols; the defaults here
write structured log events.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import structlog

from ..models import Advisory, Severity

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OwnerContext:
    """The account a run acts on behalf of."""
    owner_id: str
    display_name: Optional[str] = None


CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "secret-handling": ["credential", "secret", "token", "key leak"],
    "llm-security": ["llm", "prompt injection", "langchain"],
    "ci-supply-chain": ["github action", "supply chain", "ci/cd"],
}

_AI_WORD = re.compile(r"\bai\b")


def notification_categories(advisory: Advisory) -> List[str]:
    """
    Pick the notification categories an advisory is relevant to.

    Keyword heuristic over the lowercased title. Critical and high advisories
    that match no keyword fall back to ``secret-handling``.
    """
    title = advisory.title.lower()
    categories = []

    for category, keywords in CATEGORY_KEYWORDS.items():
        hit = any(keyword in title for keyword in keywords)
        if category == "llm-security" and _AI_WORD.search(title):
            hit = True
        if hit:
            categories.append(category)

    if not categories and advisory.severity in (Severity.CRITICAL, Severity.HIGH):
        categories.append("secret-handling")

    return categories


class Notifier(Protocol):
    async def notify(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> None:
        ...


class ActivityLog(Protocol):
    def log_activity(self, owner: OwnerContext, kind: str, message: str, metadata: Dict[str, Any]) -> None:
        ...


class LogNotifier:
    """Notifier that only emits a log event."""

    async def notify(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> None:
        logger.info(
            "threat_notification",
            owner_id=owner.owner_id,
            advisory_id=advisory.id,
            package=advisory.affected_package,
            severity=advisory.severity.value,
            categories=categories,
        )


class StructlogActivityLog:
    """Activity log that records entries as structured log events."""

    def log_activity(self, owner: OwnerContext, kind: str, message: str, metadata: Dict[str, Any]) -> None:
        logger.info(
            "activity_logged",
            owner_id=owner.owner_id,
            kind=kind,
            message=message,
            **metadata,
        )

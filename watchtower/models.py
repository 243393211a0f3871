"""
Data models shared by every stage of a Watchtower run.

These Pydantic models are the normalized representations that flow from
the dependency indexer and the threat sources into the matcher and the
remediation planner. Source-specific payload shapes live in
``watchtower.sources.models`` and are mapped into ``Advisory`` explicitly.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


_LEADING_INT = re.compile(r"^\d+")


class Ecosystem(str, Enum):
    """Package-manager namespaces Watchtower can index."""
    NPM = "npm"
    PYPI = "pypi"
    GO = "go"
    RUBYGEMS = "rubygems"


class Severity(str, Enum):
    """Normalized advisory severity levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"


class SourceTag(str, Enum):
    """Identifiers of the threat-intelligence sources."""
    OSV = "osv"
    GITHUB = "github"
    COMMUNITY = "community"
    KEV = "kev"


def parse_version(version: str) -> Tuple[int, ...]:
    """
    Parse a dotted version string into a tuple of integers.

    A leading ``v`` is dropped. Each component contributes its leading
    digits; components without any digits become 0. This is deliberately
    looser than semver: ``1.2.3-beta`` parses as ``(1, 2, 3)``.
    """
    text = (version or "").strip()
    if text[:1] in ("v", "V"):
        text = text[1:]

    parts = []
    for component in text.split("."):
        match = _LEADING_INT.match(component.strip())
        parts.append(int(match.group(0)) if match else 0)
    return tuple(parts)


class Dependency(BaseModel):
    """A third-party package pinned by one of the repository's manifests."""

    name: str = Field(description="Package name as written in the manifest")
    version: str = Field(default="", description="Version string with range operators stripped")
    ecosystem: Ecosystem = Field(description="Package-manager namespace")

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("dependency name must not be empty")
        return value

    @property
    def version_tuple(self) -> Tuple[int, ...]:
        """Numeric form of ``version`` used by the range comparator."""
        return parse_version(self.version)


class DependencyIndex(BaseModel):
    """Every dependency found in one repository at one point in time."""

    dependencies: List[Dependency] = Field(default_factory=list)
    repo_owner: str
    repo_name: str
    indexed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def ecosystems(self) -> List[Ecosystem]:
        """Distinct ecosystems present, in first-seen order."""
        seen: List[Ecosystem] = []
        for dep in self.dependencies:
            if dep.ecosystem not in seen:
                seen.append(dep.ecosystem)
        return seen


class Advisory(BaseModel):
    """A normalized vulnerability record from one intelligence source."""

    id: str = Field(description="Source-native identifier, unique within the source only")
    source: SourceTag
    title: str = ""
    description: str = ""
    severity: Severity = Severity.UNKNOWN
    cve_id: Optional[str] = None
    affected_package: str = Field(description="Package name the advisory applies to")
    affected_version_range: Optional[str] = None
    fixed_version: Optional[str] = None
    url: str = ""
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ThreatMatch(BaseModel):
    """An advisory paired with a dependency present in the repository."""

    advisory: Advisory
    dependency: Dependency
    is_reachable: bool = True


class RemediationOutcome(BaseModel):
    """What the remediation planner did for a single match."""

    advisory_id: str
    package: str
    issue_url: Optional[str] = None
    change_request_url: Optional[str] = None
    error: Optional[str] = None


class WatchtowerResult(BaseModel):
    """Summary of one Watchtower run."""

    matches: List[ThreatMatch] = Field(default_factory=list)
    advisories_checked: int = 0
    dependencies_indexed: int = 0
    sources: List[str] = Field(default_factory=list)
    remediations: List[RemediationOutcome] = Field(default_factory=list)

    @property
    def threats_found(self) -> int:
        return len(self.matches)

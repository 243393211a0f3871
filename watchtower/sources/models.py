"""
Source-specific records for the threat-intelligence feeds.

Each feed returns its own loosely-typed JSON. These Pydantic models give
every feed a typed intermediate shape and an explicit mapping into the
shared ``Advisory`` model, so the rest of the pipeline never sees raw
payloads.
"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, Field

from ..models import Advisory, Severity, SourceTag


_SEVERITY_LABELS = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "moderate": Severity.MEDIUM,
    "medium": Severity.MEDIUM,
    "low": Severity.LOW,
}


def severity_from_label(label: Optional[str]) -> Severity:
    """Map a feed's textual severity label to a Severity."""
    if not label:
        return Severity.UNKNOWN
    return _SEVERITY_LABELS.get(label.strip().lower(), Severity.UNKNOWN)


def severity_from_cvss_score(score: float) -> Severity:
    """Bucket a CVSS v3 base score."""
    if score >= 9.0:
        return Severity.CRITICAL
    if score >= 7.0:
        return Severity.HIGH
    if score >= 4.0:
        return Severity.MEDIUM
    return Severity.UNKNOWN


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# OSV
# ---------------------------------------------------------------------------

class OSVRangeEvent(BaseModel):
    introduced: Optional[str] = None
    fixed: Optional[str] = None
    last_affected: Optional[str] = None


class OSVRange(BaseModel):
    type: str = ""
    events: List[OSVRangeEvent] = Field(default_factory=list)


class OSVAffected(BaseModel):
    package_name: Optional[str] = None
    package_ecosystem: Optional[str] = None
    ranges: List[OSVRange] = Field(default_factory=list)


class OSVSeverityScore(BaseModel):
    type: str = ""
    score: str = ""


class OSVVulnerability(BaseModel):
    """A vulnerability record returned by the OSV query API."""

    id: str
    summary: Optional[str] = None
    details: Optional[str] = None
    aliases: List[str] = Field(default_factory=list)
    severity: List[OSVSeverityScore] = Field(default_factory=list)
    database_severity: Optional[str] = None
    affected: List[OSVAffected] = Field(default_factory=list)
    references: List[Dict[str, str]] = Field(default_factory=list)
    published: Optional[datetime] = None

    @classmethod
    def from_osv_data(cls, data: Dict[str, Any]) -> "OSVVulnerability":
        """Create an OSVVulnerability from one entry of an OSV ``vulns`` array."""
        affected = []
        for entry in data.get("affected") or []:
            package = entry.get("package") or {}
            ranges = []
            for range_data in entry.get("ranges") or []:
                ranges.append(OSVRange(
                    type=range_data.get("type", ""),
                    events=[OSVRangeEvent(**{
                        k: str(v) for k, v in event.items()
                        if k in ("introduced", "fixed", "last_affected") and v is not None
                    }) for event in range_data.get("events") or []],
                ))
            affected.append(OSVAffected(
                package_name=package.get("name"),
                package_ecosystem=package.get("ecosystem"),
                ranges=ranges,
            ))

        return cls(
            id=data.get("id", ""),
            summary=data.get("summary"),
            details=data.get("details"),
            aliases=data.get("aliases") or [],
            severity=[
                OSVSeverityScore(type=s.get("type", ""), score=str(s.get("score", "")))
                for s in data.get("severity") or []
            ],
            database_severity=(data.get("database_specific") or {}).get("severity"),
            affected=affected,
            references=[
                {"type": r.get("type") or "", "url": r["url"]}
                for r in data.get("references") or []
                if isinstance(r, dict) and r.get("url")
            ],
            published=_parse_timestamp(data.get("published")),
        )

    @property
    def mapped_severity(self) -> Severity:
        """Database label first, then the first CVSS v3 score."""
        label = severity_from_label(self.database_severity)
        if label is not Severity.UNKNOWN:
            return label

        if self.severity:
            first = self.severity[0]
            if first.type == "CVSS_V3" and first.score:
                try:
                    return severity_from_cvss_score(float(first.score))
                except ValueError:
                    # Vector strings carry no numeric base score
                    return Severity.UNKNOWN

        return Severity.UNKNOWN

    @property
    def cve_id(self) -> Optional[str]:
        return next((a for a in self.aliases if a.startswith("CVE-")), None)

    @property
    def fixed_version(self) -> Optional[str]:
        """First ``fixed`` event of the first affected entry."""
        if not self.affected:
            return None
        for range_ in self.affected[0].ranges:
            for event in range_.events:
                if event.fixed:
                    return event.fixed
        return None

    @property
    def version_range(self) -> Optional[str]:
        """``>=introduced <fixed`` from the first range that has an introduced event."""
        if not self.affected:
            return None
        for range_ in self.affected[0].ranges:
            introduced = None
            fixed = None
            for event in range_.events:
                if event.introduced:
                    introduced = event.introduced
                if event.fixed:
                    fixed = event.fixed
            if introduced and fixed:
                return f">={introduced} <{fixed}"
            if introduced:
                return f">={introduced}"
        return None

    @property
    def reference_url(self) -> str:
        for ref in self.references:
            if ref.get("type") in ("WEB", "ADVISORY") and ref.get("url"):
                return ref["url"]
        return f"https://osv.dev/vulnerability/{self.id}"

    def to_advisory(self, package_name: str) -> Advisory:
        """Map to the shared Advisory for the package that was queried."""
        return Advisory(
            id=self.id,
            source=SourceTag.OSV,
            title=self.summary or self.id,
            description=self.details or "",
            severity=self.mapped_severity,
            cve_id=self.cve_id,
            affected_package=package_name,
            affected_version_range=self.version_range,
            fixed_version=self.fixed_version,
            url=self.reference_url,
            published_at=self.published or datetime.now(timezone.utc),
        )


# ---------------------------------------------------------------------------
# GitHub Advisory Database
# ---------------------------------------------------------------------------

class GitHubAdvisoryVulnerability(BaseModel):
    package_name: str
    package_ecosystem: str = ""
    vulnerable_version_range: Optional[str] = None
    first_patched_version: Optional[str] = None


class GitHubAdvisoryNode(BaseModel):
    """A ``securityAdvisories`` node from the GitHub GraphQL API."""

    ghsa_id: str
    summary: str = ""
    description: str = ""
    severity: str = ""
    permalink: str = ""
    published_at: Optional[datetime] = None
    vulnerabilities: List[GitHubAdvisoryVulnerability] = Field(default_factory=list)

    @classmethod
    def from_graphql_node(cls, node: Dict[str, Any]) -> "GitHubAdvisoryNode":
        vulnerabilities = []
        for vuln in (node.get("vulnerabilities") or {}).get("nodes") or []:
            package = vuln.get("package") or {}
            if not package.get("name"):
                continue
            patched = vuln.get("firstPatchedVersion") or {}
            vulnerabilities.append(GitHubAdvisoryVulnerability(
                package_name=package["name"],
                package_ecosystem=package.get("ecosystem", ""),
                vulnerable_version_range=vuln.get("vulnerableVersionRange") or None,
                first_patched_version=patched.get("identifier"),
            ))

        return cls(
            ghsa_id=node.get("ghsaId", ""),
            summary=node.get("summary") or "",
            description=node.get("description") or "",
            severity=node.get("severity") or "",
            permalink=node.get("permalink") or "",
            published_at=_parse_timestamp(node.get("publishedAt")),
            vulnerabilities=vulnerabilities,
        )

    def to_advisories(self) -> List[Advisory]:
        """One Advisory per affected package, all sharing the GHSA id."""
        published = self.published_at or datetime.now(timezone.utc)
        return [
            Advisory(
                id=self.ghsa_id,
                source=SourceTag.GITHUB,
                title=self.summary,
                description=self.description,
                severity=severity_from_label(self.severity),
                affected_package=vuln.package_name,
                affected_version_range=vuln.vulnerable_version_range,
                fixed_version=vuln.first_patched_version,
                url=self.permalink,
                published_at=published,
            )
            for vuln in self.vulnerabilities
        ]


# ---------------------------------------------------------------------------
# Hacker News (Algolia search)
# ---------------------------------------------------------------------------

class HackerNewsHit(BaseModel):
    """A story hit from the Hacker News Algolia search API."""

    object_id: str
    title: str = ""
    url: Optional[str] = None
    story_url: Optional[str] = None
    created_at_i: int = 0

    @classmethod
    def from_search_hit(cls, hit: Dict[str, Any]) -> "HackerNewsHit":
        return cls(
            object_id=str(hit.get("objectID", "")),
            title=hit.get("title") or "",
            url=hit.get("url") or None,
            story_url=hit.get("story_url") or None,
            created_at_i=int(hit.get("created_at_i") or 0),
        )

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created_at_i, tz=timezone.utc)

    def is_recent(self, now: datetime, window_days: int) -> bool:
        return (now - self.created_at).total_seconds() < window_days * 86400

    def to_advisory(self, package_name: str) -> Advisory:
        return Advisory(
            id=f"hn-{self.object_id}",
            source=SourceTag.COMMUNITY,
            title=self.title,
            description=f"Hacker News discussion potentially related to {package_name} security",
            severity=Severity.UNKNOWN,
            affected_package=package_name,
            url=self.url or self.story_url or f"https://news.ycombinator.com/item?id={self.object_id}",
            published_at=self.created_at,
        )


# ---------------------------------------------------------------------------
# CISA KEV
# ---------------------------------------------------------------------------

class KEVEntry(BaseModel):
    """CISA Known Exploited Vulnerability catalog entry."""

    cve_id: str = Field(description="CVE identifier")
    vendor_project: str = Field(default="", description="Vendor or project name")
    product: str = Field(default="", description="Affected product name")
    vulnerability_name: str = Field(default="", description="Vulnerability title")
    date_added: Optional[datetime] = Field(default=None, description="Date added to KEV catalog")
    short_description: str = Field(default="", description="Brief vulnerability description")
    required_action: str = Field(default="", description="Required remediation action")
    known_ransomware_use: str = Field(default="Unknown", description="Known ransomware campaign use")

    @classmethod
    def from_kev_data(cls, data: Dict[str, Any]) -> "KEVEntry":
        """Create KEVEntry from CISA KEV catalog JSON data."""
        if not data.get("cveID"):
            raise ValueError("KEV entry has no cveID")

        date_added = None
        if data.get("dateAdded"):
            try:
                date_added = datetime.strptime(data["dateAdded"], "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except (ValueError, TypeError):
                pass

        return cls(
            cve_id=data["cveID"],
            vendor_project=data.get("vendorProject", ""),
            product=data.get("product", ""),
            vulnerability_name=data.get("vulnerabilityName", ""),
            date_added=date_added,
            short_description=data.get("shortDescription", ""),
            required_action=data.get("requiredAction", ""),
            known_ransomware_use=data.get("knownRansomwareCampaignUse", "Unknown"),
        )

    @property
    def package_identity(self) -> str:
        """Coarse ``vendor/product`` keyword identity, lowercased."""
        return f"{self.vendor_project}/{self.product}".lower()

    def to_advisory(self) -> Advisory:
        return Advisory(
            id=f"kev-{self.cve_id}",
            source=SourceTag.KEV,
            title=self.vulnerability_name,
            description=self.short_description,
            severity=Severity.CRITICAL,
            cve_id=self.cve_id,
            affected_package=self.package_identity,
            url=f"https://nvd.nist.gov/vuln/detail/{self.cve_id}",
            published_at=self.date_added or datetime.now(timezone.utc),
        )

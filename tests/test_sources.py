import asyncio
import json
import time
from typing import List

import httpx
import pytest

from watchtower.models import Advisory, Ecosystem, Severity, SourceTag
from watchtower.sources import (
    CommunitySignalSource,
    GitHubAdvisorySource,
    KEVSource,
    OSVSource,
    SourceContext,
)
from watchtower.sources.base import ThreatSource
from watchtower.sources.models import OSVVulnerability, severity_from_cvss_score
from tests.fakes import make_index, npm


OSV_LEFT_PAD = {
    "id": "GHSA-left-pad",
    "summary": "left-pad pads wrong",
    "details": "Long details",
    "aliases": ["GHSA-left-pad", "CVE-2024-0001"],
    "database_specific": {"severity": "HIGH"},
    "affected": [{
        "package": {"name": "left-pad", "ecosystem": "npm"},
        "ranges": [{"type": "SEMVER", "events": [{"introduced": "1.0.0"}, {"fixed": "1.3.1"}]}],
    }],
    "references": [{"type": "PACKAGE", "url": "https://npmjs.com"}, {"type": "WEB", "url": "https://example.test/web"}],
    "published": "2024-01-02T03:04:05Z",
}


def _context(*deps) -> SourceContext:
    return SourceContext(index=make_index(*deps))


# ---------------------------------------------------------------------------
# Source records
# ---------------------------------------------------------------------------

def test_osv_record_mapping():
    advisory = OSVVulnerability.from_osv_data(OSV_LEFT_PAD).to_advisory("left-pad")

    assert advisory.source is SourceTag.OSV
    assert advisory.severity is Severity.HIGH
    assert advisory.cve_id == "CVE-2024-0001"
    assert advisory.affected_version_range == ">=1.0.0 <1.3.1"
    assert advisory.fixed_version == "1.3.1"
    assert advisory.url == "https://example.test/web"


def test_osv_record_fallbacks():
    vuln = OSVVulnerability.from_osv_data({
        "id": "PYSEC-1",
        "severity": [{"type": "CVSS_V3", "score": "CVSS:3.1/AV:N/AC:L"}],
        "affected": [{"ranges": [{"type": "ECOSYSTEM", "events": [{"introduced": "0"}]}]}],
    })
    advisory = vuln.to_advisory("requests")

    assert advisory.title == "PYSEC-1"
    assert advisory.severity is Severity.UNKNOWN
    assert advisory.affected_version_range == ">=0"
    assert advisory.fixed_version is None
    assert advisory.url == "https://osv.dev/vulnerability/PYSEC-1"


@pytest.mark.parametrize("score,expected", [
    (9.8, Severity.CRITICAL),
    (7.0, Severity.HIGH),
    (5.3, Severity.MEDIUM),
    (2.1, Severity.UNKNOWN),
])
def test_cvss_buckets(score, expected):
    assert severity_from_cvss_score(score) is expected


# ---------------------------------------------------------------------------
# Base contract
# ---------------------------------------------------------------------------

class _SlowSource(ThreatSource):
    tag = SourceTag.OSV

    async def _fetch(self, context):
        await asyncio.sleep(5)
        return []


class _BrokenSource(ThreatSource):
    tag = SourceTag.KEV

    async def _fetch(self, context):
        raise RuntimeError("feed down")


@pytest.mark.asyncio
async def test_timeout_yields_empty_failed_report():
    report = await _SlowSource(timeout_seconds=0.01).collect(_context(npm("a", "1.0.0")))
    assert report.ok is False
    assert report.advisories == []


@pytest.mark.asyncio
async def test_exception_never_propagates_from_query():
    source = _BrokenSource()
    assert await source.query(_context(npm("a", "1.0.0"))) == []
    report = await source.collect(_context(npm("a", "1.0.0")))
    assert report.ok is False
    assert report.error == "feed down"


# ---------------------------------------------------------------------------
# OSV
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_osv_queries_each_dependency():
    requests_seen: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests_seen.append(body)
        name = body["package"]["name"]
        if name == "left-pad":
            return httpx.Response(200, json={"vulns": [OSV_LEFT_PAD]})
        if name == "broken":
            return httpx.Response(500, json={})
        return httpx.Response(200, json={})

    source = OSVSource(transport=httpx.MockTransport(handler))
    report = await source.collect(_context(
        npm("left-pad", "1.3.0"),
        npm("broken", "1.0.0"),
        ("requests", "2.0.0", Ecosystem.PYPI),
    ))

    assert report.ok is True
    assert [a.id for a in report.advisories] == ["GHSA-left-pad"]
    ecosystems = {b["package"]["name"]: b["package"]["ecosystem"] for b in requests_seen}
    assert ecosystems == {"left-pad": "npm", "broken": "npm", "requests": "PyPI"}
    assert all("version" in b for b in requests_seen)


@pytest.mark.asyncio
async def test_osv_outage_marks_source_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    source = OSVSource(transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.3.0"), npm("express", "4.18.2")))

    assert report.ok is False
    assert report.advisories == []
    assert "every OSV query failed" in report.error


@pytest.mark.asyncio
async def test_osv_with_no_dependencies_is_ok():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no query expected")

    report = await OSVSource(transport=httpx.MockTransport(handler)).collect(_context())

    assert report.ok is True
    assert report.advisories == []


def test_osv_reference_without_url_is_skipped():
    data = dict(OSV_LEFT_PAD, references=[
        {"type": "WEB", "url": None},
        {"type": "ADVISORY", "url": "https://example.test/advisory"},
    ])
    vuln = OSVVulnerability.from_osv_data(data)

    assert [r["url"] for r in vuln.references] == ["https://example.test/advisory"]


# ---------------------------------------------------------------------------
# GitHub Advisory Database
# ---------------------------------------------------------------------------

def _ghsa_node(ghsa_id: str, *packages) -> dict:
    return {
        "ghsaId": ghsa_id,
        "summary": f"{ghsa_id} summary",
        "description": "desc",
        "severity": "MODERATE",
        "permalink": f"https://github.com/advisories/{ghsa_id}",
        "publishedAt": "2024-05-01T00:00:00Z",
        "vulnerabilities": {"nodes": [
            {
                "package": {"name": name, "ecosystem": "NPM"},
                "vulnerableVersionRange": "< 2.0.0",
                "firstPatchedVersion": {"identifier": "2.0.0"},
            }
            for name in packages
        ]},
    }


@pytest.mark.asyncio
async def test_github_advisories_expand_per_package():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer t0ken"
        variables = json.loads(request.content)["variables"]
        seen.append(variables)
        nodes = [_ghsa_node("GHSA-a", "left-pad", "right-pad")] if variables["ecosystem"] == "NPM" else []
        return httpx.Response(200, json={"data": {"securityAdvisories": {"nodes": nodes}}})

    source = GitHubAdvisorySource(token="t0ken", limit=7, transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.0.0"), ("flask", "2.0.0", Ecosystem.PYPI)))

    assert report.ok is True
    assert sorted(v["ecosystem"] for v in seen) == ["NPM", "PIP"]
    assert all(v["first"] == 7 for v in seen)
    assert [a.affected_package for a in report.advisories] == ["left-pad", "right-pad"]
    assert {a.id for a in report.advisories} == {"GHSA-a"}
    assert report.advisories[0].severity is Severity.MEDIUM
    assert report.advisories[0].fixed_version == "2.0.0"


@pytest.mark.asyncio
async def test_github_one_ecosystem_failure_keeps_others():
    def handler(request: httpx.Request) -> httpx.Response:
        variables = json.loads(request.content)["variables"]
        if variables["ecosystem"] == "PIP":
            return httpx.Response(200, json={"errors": [{"message": "rate limited"}]})
        return httpx.Response(200, json={"data": {"securityAdvisories": {"nodes": [_ghsa_node("GHSA-b", "left-pad")]}}})

    source = GitHubAdvisorySource(token="t", transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.0.0"), ("flask", "2.0.0", Ecosystem.PYPI)))

    assert report.ok is True
    assert [a.id for a in report.advisories] == ["GHSA-b"]


@pytest.mark.asyncio
async def test_github_without_token_fails():
    def handler(request):
        raise AssertionError("no request expected")

    source = GitHubAdvisorySource(token=None, transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.0.0")))

    assert report.ok is False
    assert report.advisories == []


# ---------------------------------------------------------------------------
# Community (Hacker News)
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_community_filters_recent_and_dedups():
    now = int(time.time())
    queries = []

    def handler(request: httpx.Request) -> httpx.Response:
        queries.append(request.url.params["query"])
        assert request.url.params["tags"] == "story"
        hits = [
            {"objectID": "1", "title": "left-pad RCE", "url": "https://blog.test/1", "created_at_i": now - 3600},
            {"objectID": "2", "title": "old news", "created_at_i": now - 30 * 86400},
        ]
        return httpx.Response(200, json={"hits": hits})

    source = CommunitySignalSource(
        package_limit=1,
        request_delay_seconds=0,
        transport=httpx.MockTransport(handler),
    )
    report = await source.collect(_context(npm("left-pad", "1.3.0"), npm("lodash", "4.0.0")))

    assert queries == ["left-pad vulnerability", "CVE left-pad"]
    assert [a.id for a in report.advisories] == ["hn-1"]
    advisory = report.advisories[0]
    assert advisory.severity is Severity.UNKNOWN
    assert advisory.affected_package == "left-pad"
    assert advisory.url == "https://blog.test/1"


@pytest.mark.asyncio
async def test_community_search_errors_are_isolated():
    now = int(time.time())

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["query"].startswith("CVE"):
            return httpx.Response(503)
        hit = {"objectID": "7", "title": "left-pad hijacked", "created_at_i": now - 60}
        return httpx.Response(200, json={"hits": [hit]})

    source = CommunitySignalSource(request_delay_seconds=0, transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.3.0")))

    assert report.ok is True
    assert [a.id for a in report.advisories] == ["hn-7"]


@pytest.mark.asyncio
async def test_community_outage_marks_source_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    source = CommunitySignalSource(request_delay_seconds=0, transport=httpx.MockTransport(handler))
    report = await source.collect(_context(npm("left-pad", "1.3.0"), npm("lodash", "4.0.0")))

    assert report.ok is False
    assert report.advisories == []


# ---------------------------------------------------------------------------
# CISA KEV
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_kev_entries_become_critical_advisories():
    feed = {
        "catalogVersion": "2024.01.01",
        "count": 2,
        "vulnerabilities": [
            {
                "cveID": "CVE-2023-1234",
                "vendorProject": "Apache",
                "product": "Log4j",
                "vulnerabilityName": "Log4Shell",
                "dateAdded": "2023-12-10",
                "shortDescription": "JNDI lookup",
            },
            {"vendorProject": "Nobody"},
        ],
    }
    source = KEVSource(transport=httpx.MockTransport(lambda request: httpx.Response(200, json=feed)))
    report = await source.collect(_context(npm("left-pad", "1.3.0")))

    assert report.ok is True
    assert len(report.advisories) == 1
    advisory: Advisory = report.advisories[0]
    assert advisory.id == "kev-CVE-2023-1234"
    assert advisory.severity is Severity.CRITICAL
    assert advisory.affected_package == "apache/log4j"
    assert advisory.url == "https://nvd.nist.gov/vuln/detail/CVE-2023-1234"
    assert advisory.published_at.year == 2023


@pytest.mark.asyncio
async def test_kev_http_error_fails_source():
    source = KEVSource(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    report = await source.collect(_context(npm("left-pad", "1.3.0")))
    assert report.ok is False

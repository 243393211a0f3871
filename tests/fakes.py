"""In-memory collaborators used across the test suite."""

from typing import Dict, List, Optional

from watchtower.delivery.notifier import OwnerContext
from watchtower.models import Advisory, Dependency, DependencyIndex, Ecosystem, Severity, SourceTag
from watchtower.sources.base import SourceContext, ThreatSource


def make_advisory(**overrides) -> Advisory:
    data = {
        "id": "OSV-1",
        "source": SourceTag.OSV,
        "title": "Prototype pollution",
        "description": "Something bad",
        "severity": Severity.HIGH,
        "affected_package": "left-pad",
        "url": "https://example.test/advisory",
    }
    data.update(overrides)
    return Advisory(**data)


def make_index(*deps) -> DependencyIndex:
    return DependencyIndex(
        dependencies=[
            Dependency(name=name, version=version, ecosystem=ecosystem)
            for name, version, ecosystem in deps
        ],
        repo_owner="acme",
        repo_name="shop",
    )


def npm(name: str, version: str):
    return name, version, Ecosystem.NPM


class FakeRepository:
    def __init__(self, files: Optional[Dict[str, object]] = None, access_error: Optional[Exception] = None):
        self.owner = "acme"
        self.repo = "shop"
        self.files = dict(files or {})
        self.access_error = access_error
        self.fetched: List[str] = []

    def check_access(self) -> None:
        if self.access_error is not None:
            raise self.access_error

    def fetch_file(self, path: str) -> Optional[str]:
        self.fetched.append(path)
        value = self.files.get(path)
        if isinstance(value, Exception):
            raise value
        return value


class FakePublisher:
    def __init__(self, failing_packages=(), fail_change_requests: bool = False):
        self.issues: List[dict] = []
        self.change_requests: List[dict] = []
        self.failing_packages = set(failing_packages)
        self.fail_change_requests = fail_change_requests

    def open_issue(self, title: str, body: str, labels: List[str]) -> str:
        if any(f"({pkg})" in title for pkg in self.failing_packages):
            raise RuntimeError("issue creation rejected")
        self.issues.append({"title": title, "body": body, "labels": labels})
        return f"https://github.com/acme/shop/issues/{len(self.issues)}"

    def open_change_request(self, branch: str, title: str, body: str, files: Dict[str, str]) -> str:
        if self.fail_change_requests:
            raise RuntimeError("branch protection")
        self.change_requests.append({"branch": branch, "title": title, "body": body, "files": files})
        return f"https://github.com/acme/shop/pull/{len(self.change_requests)}"


class StaticSource(ThreatSource):
    """Source returning a fixed list, or raising a fixed error."""

    def __init__(self, tag: SourceTag, advisories=(), error: Optional[Exception] = None, **kwargs):
        self.tag = tag
        super().__init__(**kwargs)
        self.advisories = list(advisories)
        self.error = error
        self.calls = 0

    async def _fetch(self, context: SourceContext) -> List[Advisory]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.advisories)


class RecordingNotifier:
    def __init__(self, error: Optional[Exception] = None):
        self.sent: List[tuple] = []
        self.error = error

    async def notify(self, owner: OwnerContext, advisory: Advisory, categories: List[str]) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((owner, advisory, categories))


class RecordingActivityLog:
    def __init__(self, error: Optional[Exception] = None):
        self.entries: List[tuple] = []
        self.error = error

    def log_activity(self, owner, kind, message, metadata) -> None:
        if self.error is not None:
            raise self.error
        self.entries.append((owner, kind, message, metadata))

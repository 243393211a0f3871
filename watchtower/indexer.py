"""
Dependency indexer.

Fetches the manifest file of each supported ecosystem from a repository
and parses it into a flat list of ``Dependency`` records. Missing manifests
are normal; malformed ones only cost their own ecosystem.
"""

import json
import re
from typing import Callable, Dict, List, Optional

import structlog

from .exceptions import RepositoryAccessError
from .models import Dependency, DependencyIndex, Ecosystem
from .repository import RepositoryAccessor

logger = structlog.get_logger(__name__)


MANIFEST_FILES: Dict[Ecosystem, str] = {
    Ecosystem.NPM: "package.json",
    Ecosystem.PYPI: "requirements.txt",
    Ecosystem.GO: "go.mod",
    Ecosystem.RUBYGEMS: "Gemfile.lock",
}

_NPM_RANGE_PREFIX = re.compile(r"^[\^~>=<]*")
_PINNED_REQUIREMENT = re.compile(r"^([a-zA-Z0-9._-]+)==(.+)$")
_GO_SINGLE_REQUIRE = re.compile(r"^require\s+(\S+)\s+(\S+)")
_GO_BLOCK_ENTRY = re.compile(r"^(\S+)\s+(\S+)")
_GEM_SPEC = re.compile(r"^([a-zA-Z0-9._-]+)\s+\(([^)]+)\)$")


def parse_package_json(content: str) -> List[Dependency]:
    """
    Parse an npm package.json.

    Both ``dependencies`` and ``devDependencies`` are read. Leading range
    operators are stripped, so ``^1.3.0`` is indexed as ``1.3.0``.

    Raises:
        ValueError: If the content is not a JSON object.
    """
    pkg = json.loads(content)
    if not isinstance(pkg, dict):
        raise ValueError("package.json root is not an object")

    deps: List[Dependency] = []
    for section in ("dependencies", "devDependencies"):
        for name, version in (pkg.get(section) or {}).items():
            deps.append(Dependency(
                name=name,
                version=_NPM_RANGE_PREFIX.sub("", str(version)),
                ecosystem=Ecosystem.NPM,
            ))
    return deps


def parse_requirements_txt(content: str) -> List[Dependency]:
    """
    Parse a pip requirements file.

    Only exactly pinned ``name==version`` lines are recognized. Unpinned and
    range-qualified requirements are dropped without notice.
    """
    deps: List[Dependency] = []
    for line in content.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#") or trimmed.startswith("-"):
            continue

        match = _PINNED_REQUIREMENT.match(trimmed)
        if match:
            deps.append(Dependency(name=match.group(1), version=match.group(2), ecosystem=Ecosystem.PYPI))
    return deps


def parse_go_mod(content: str) -> List[Dependency]:
    """Parse single-line and block ``require`` directives of a go.mod file."""
    deps: List[Dependency] = []
    in_require = False

    for line in content.splitlines():
        trimmed = line.strip()

        if trimmed == "require (":
            in_require = True
            continue

        if trimmed == ")":
            in_require = False
            continue

        single = _GO_SINGLE_REQUIRE.match(trimmed)
        if single:
            deps.append(Dependency(name=single.group(1), version=single.group(2), ecosystem=Ecosystem.GO))
            continue

        if in_require:
            entry = _GO_BLOCK_ENTRY.match(trimmed)
            if entry and not entry.group(1).startswith("//"):
                deps.append(Dependency(name=entry.group(1), version=entry.group(2), ecosystem=Ecosystem.GO))

    return deps


def parse_gemfile_lock(content: str) -> List[Dependency]:
    """
    Parse the ``specs:`` sections of a Gemfile.lock.

    A section ends at the first non-indented line.
    """
    deps: List[Dependency] = []
    in_specs = False

    for line in content.splitlines():
        trimmed = line.strip()

        if trimmed == "specs:":
            in_specs = True
            continue

        if in_specs and line and not line.startswith(" "):
            in_specs = False
            continue

        if in_specs:
            match = _GEM_SPEC.match(trimmed)
            if match:
                deps.append(Dependency(name=match.group(1), version=match.group(2), ecosystem=Ecosystem.RUBYGEMS))

    return deps


PARSERS: Dict[Ecosystem, Callable[[str], List[Dependency]]] = {
    Ecosystem.NPM: parse_package_json,
    Ecosystem.PYPI: parse_requirements_txt,
    Ecosystem.GO: parse_go_mod,
    Ecosystem.RUBYGEMS: parse_gemfile_lock,
}


class DependencyIndexer:
    """
    Builds a DependencyIndex from a repository's manifest files.

    Exactly one fetch is attempted per ecosystem manifest. A missing file
    contributes nothing; a fetch or parse failure is logged and only that
    ecosystem is lost.
    """

    def __init__(self, manifest_files: Optional[Dict[Ecosystem, str]] = None):
        self.manifest_files = dict(manifest_files or MANIFEST_FILES)

    def index(self, repo: RepositoryAccessor) -> DependencyIndex:
        """
        Index every supported manifest in the repository.

        Args:
            repo: Repository accessor to read manifests from.

        Returns:
            DependencyIndex, possibly partial or empty.
        """
        log = logger.bind(repo=f"{repo.owner}/{repo.repo}")
        log.info("dependency_indexing_started")

        dependencies: List[Dependency] = []
        for ecosystem, path in self.manifest_files.items():
            dependencies.extend(self._index_manifest(repo, ecosystem, path, log))

        log.info("dependency_indexing_completed", total=len(dependencies))

        return DependencyIndex(
            dependencies=dependencies,
            repo_owner=repo.owner,
            repo_name=repo.repo,
        )

    def _index_manifest(
        self,
        repo: RepositoryAccessor,
        ecosystem: Ecosystem,
        path: str,
        log: structlog.BoundLogger,
    ) -> List[Dependency]:
        try:
            content = repo.fetch_file(path)
        except RepositoryAccessError as e:
            log.warning("manifest_fetch_failed", path=path, error=str(e))
            return []
        except Exception as e:
            log.warning("manifest_fetch_failed", path=path, error=str(e), error_type=e.__class__.__name__)
            return []

        if content is None:
            log.debug("manifest_not_found", path=path)
            return []

        try:
            deps = PARSERS[ecosystem](content)
        except Exception as e:
            log.error(
                "manifest_parse_failed",
                path=path,
                ecosystem=ecosystem.value,
                error=str(e),
                error_type=e.__class__.__name__,
            )
            return []

        log.info("manifest_indexed", path=path, ecosystem=ecosystem.value, count=len(deps))
        return deps

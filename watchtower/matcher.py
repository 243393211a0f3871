"""
Advisory-to-dependency matcher.

Pairs advisories with indexed dependencies by case-insensitive package name
and evaluates the advisory's affected-version range with a small
conjunctive comparator. This is not a semver implementation: ranges are
AND-only and versions compare as zero-padded integer tuples.
"""

import re
from typing import List, Sequence, Set, Tuple

import structlog

from .models import Advisory, DependencyIndex, ThreatMatch, parse_version

logger = structlog.get_logger(__name__)


_CONDITION = re.compile(r"^(>=|<=|==|!=|>|<|=)\s*(.+)$")
# A comma, or whitespace directly ahead of an operator, starts a new condition.
_CONDITION_BOUNDARY = re.compile(r",|\s+(?=[<>=!])")


def compare_versions(a: Sequence[int], b: Sequence[int]) -> int:
    """Compare two integer version tuples, padding the shorter with zeros."""
    length = max(len(a), len(b))
    for i in range(length):
        av = a[i] if i < len(a) else 0
        bv = b[i] if i < len(b) else 0
        if av < bv:
            return -1
        if av > bv:
            return 1
    return 0


def parse_range(range_str: str) -> List[Tuple[str, Tuple[int, ...]]]:
    """
    Split a range expression into ``(operator, version)`` conditions.

    Unparseable fragments are ignored.
    """
    conditions = []
    for fragment in _CONDITION_BOUNDARY.split(range_str or ""):
        fragment = fragment.strip()
        if not fragment:
            continue
        match = _CONDITION.match(fragment)
        if not match:
            logger.debug("range_condition_ignored", condition=fragment)
            continue
        conditions.append((match.group(1), parse_version(match.group(2))))
    return conditions


def is_version_affected(version: str, range_str: str) -> bool:
    """
    Return True if ``version`` satisfies every condition in ``range_str``.

    Examples:
        >>> is_version_affected("1.3.0", ">= 1.0.0, < 1.3.1")
        True
        >>> is_version_affected("1.3.1", ">=1.0.0 <1.3.1")
        False
    """
    current = parse_version(version)

    for op, target in parse_range(range_str):
        cmp = compare_versions(current, target)
        if op == ">=" and cmp < 0:
            return False
        if op == ">" and cmp <= 0:
            return False
        if op == "<=" and cmp > 0:
            return False
        if op == "<" and cmp >= 0:
            return False
        if op in ("=", "==") and cmp != 0:
            return False
        if op == "!=" and cmp == 0:
            return False

    return True


def match_advisories(index: DependencyIndex, advisories: Sequence[Advisory]) -> List[ThreatMatch]:
    """
    Cross-reference advisories against the dependency index.

    Each (advisory id, dependency name) pair yields at most one match per
    call. An advisory without a version range matches any dependency with
    the same name. Advisories from different sources are never merged, even
    when they describe the same vulnerability.

    Args:
        index: Dependencies of the scanned repository.
        advisories: Combined advisories from every source.

    Returns:
        Matches in advisory order, then dependency order.
    """
    matches: List[ThreatMatch] = []
    seen: Set[Tuple[str, str]] = set()

    for advisory in advisories:
        affected = advisory.affected_package.lower()

        for dep in index.dependencies:
            if dep.name.lower() != affected:
                continue

            key = (advisory.id, dep.name)
            if key in seen:
                continue
            seen.add(key)

            if advisory.affected_version_range and not is_version_affected(
                dep.version, advisory.affected_version_range
            ):
                continue

            matches.append(ThreatMatch(advisory=advisory, dependency=dep, is_reachable=True))

    logger.info(
        "advisories_matched",
        advisories=len(advisories),
        dependencies=len(index.dependencies),
        matches=len(matches),
    )

    return matches

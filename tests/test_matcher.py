import itertools

import pytest

from watchtower.matcher import compare_versions, is_version_affected, match_advisories, parse_range
from watchtower.models import SourceTag
from tests.fakes import make_advisory, make_index, npm


VERSIONS = list(itertools.product(range(3), repeat=3))


def _dotted(parts):
    return ".".join(str(p) for p in parts)


def test_compare_versions_pads_with_zeros():
    assert compare_versions((1, 2), (1, 2, 0)) == 0
    assert compare_versions((1, 2, 1), (1, 2)) == 1
    assert compare_versions((0, 9), (1,)) == -1


@pytest.mark.parametrize("version,range_str,expected", [
    ("1.3.0", ">=1.0.0, <1.3.1", True),
    ("1.3.1", ">=1.0.0, <1.3.1", False),
    ("1.3.0", ">=1.0.0 <1.3.1", True),
    ("1.3.1", ">=1.0.0 <1.3.1", False),
    ("2.0.0", "= 2.0.0", True),
    ("2.0.0", "!= 2.0.0", False),
    ("v1.5", "> 1.4.9", True),
    ("1.0.0", "<= 0.9", False),
    ("1.0.0", "garbage", True),
])
def test_is_version_affected(version, range_str, expected):
    assert is_version_affected(version, range_str) is expected


def test_unparseable_conditions_are_ignored():
    assert parse_range(">=1.0.0, ~2, <3") == [(">=", (1, 0, 0)), ("<", (3,))]


def test_half_open_range_property():
    for low, high, current in itertools.product(VERSIONS, repeat=3):
        range_str = f">={_dotted(low)},<{_dotted(high)}"
        expected = low <= current < high
        assert is_version_affected(_dotted(current), range_str) is expected, (range_str, current)


def test_match_is_case_insensitive_and_range_checked():
    index = make_index(npm("Left-Pad", "1.3.0"), npm("express", "4.18.2"))
    advisories = [
        make_advisory(id="A", affected_package="left-pad", affected_version_range=">=1.0.0 <1.3.1"),
        make_advisory(id="B", affected_package="express", affected_version_range="<4.0.0"),
        make_advisory(id="C", affected_package="express"),
    ]

    matches = match_advisories(index, advisories)

    assert [(m.advisory.id, m.dependency.name) for m in matches] == [("A", "Left-Pad"), ("C", "express")]
    assert all(m.is_reachable for m in matches)


def test_match_is_idempotent():
    index = make_index(npm("left-pad", "1.3.0"), npm("lodash", "4.17.20"))
    advisories = [
        make_advisory(id="A", affected_package="left-pad"),
        make_advisory(id="B", affected_package="lodash", affected_version_range="<4.17.21"),
    ]

    first = match_advisories(index, advisories)
    second = match_advisories(index, advisories)

    assert first == second
    assert len(first) == 2


def test_same_advisory_id_matches_once_per_dependency():
    index = make_index(npm("left-pad", "1.3.0"))
    advisories = [
        make_advisory(id="GHSA-1", affected_package="left-pad"),
        make_advisory(id="GHSA-1", affected_package="left-pad", title="duplicate record"),
    ]

    matches = match_advisories(index, advisories)

    assert len(matches) == 1
    assert matches[0].advisory.title == "Prototype pollution"


def test_cross_source_duplicates_are_kept():
    index = make_index(npm("left-pad", "1.3.0"))
    advisories = [
        make_advisory(id="GHSA-xxxx", source=SourceTag.OSV, cve_id="CVE-2024-1"),
        make_advisory(id="GHSA-yyyy", source=SourceTag.GITHUB, cve_id="CVE-2024-1"),
    ]

    matches = match_advisories(index, advisories)

    assert [m.advisory.source for m in matches] == [SourceTag.OSV, SourceTag.GITHUB]


def test_no_dependencies_no_matches():
    assert match_advisories(make_index(), [make_advisory()]) == []

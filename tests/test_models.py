import pytest
from pydantic import ValidationError

from watchtower.models import Dependency, Ecosystem, WatchtowerResult, parse_version
from tests.fakes import make_index, npm


def test_parse_version_strips_prefix_and_suffixes():
    assert parse_version("v1.2.3") == (1, 2, 3)
    assert parse_version("1.2.3-beta.1") == (1, 2, 3, 1)
    assert parse_version("2.x") == (2, 0)
    assert parse_version("") == (0,)


def test_dependency_rejects_empty_name():
    with pytest.raises(ValidationError):
        Dependency(name="  ", version="1.0.0", ecosystem=Ecosystem.NPM)


def test_dependency_version_tuple():
    dep = Dependency(name="lodash", version="4.17.21", ecosystem=Ecosystem.NPM)
    assert dep.version_tuple == (4, 17, 21)


def test_index_ecosystems_first_seen_order():
    index = make_index(
        ("requests", "2.0.0", Ecosystem.PYPI),
        npm("left-pad", "1.3.0"),
        ("flask", "2.0.0", Ecosystem.PYPI),
    )
    assert index.ecosystems() == [Ecosystem.PYPI, Ecosystem.NPM]


def test_result_threats_found_defaults_to_zero():
    assert WatchtowerResult().threats_found == 0

"""
Tests for version parsing, constraint matching and latest-version selection
"""
from dataclasses import dataclass

import pytest
from semver import Version

from fm_discovery.errors import NoMatchingVersion, VersionParseError
from fm_discovery.versioning import (
    parse_constraint,
    parse_version,
    select_latest,
)


@dataclass
class Candidate:
    id: str
    version: Version


def v(text):
    return parse_version(text)


def test_parse_version_completes_partial_versions():
    assert v("1.2") == Version(1, 2, 0)
    assert v("2") == Version(2, 0, 0)
    assert v("v1.4.1") == Version(1, 4, 1)


def test_parse_version_keeps_prerelease():
    version = v("1.0.0-beta.2")
    assert version.prerelease == "beta.2"
    assert version < v("1.0.0")


@pytest.mark.parametrize("text", ["", "abc", "1.2.3.4", "1..2"])
def test_parse_version_rejects_garbage(text):
    with pytest.raises(VersionParseError):
        parse_version(text)


@pytest.mark.parametrize("text", [None, "", "*", "  "])
def test_any_constraint_matches_everything(text):
    constraint = parse_constraint(text)
    for version in ["0.0.0", "0.1.0", "1.0.0", "99.3.7"]:
        assert constraint(v(version))


@pytest.mark.parametrize(
    "version,expected",
    [
        ("1.2.2", False),
        ("1.2.3", True),
        ("1.2.4", True),
        ("1.9.0", True),
        ("1.99.99", True),
        ("2.0.0", False),
        ("0.9.9", False),
    ],
)
def test_caret_constraint_bounds(version, expected):
    assert parse_constraint("^1.2.3").matches(v(version)) is expected


@pytest.mark.parametrize(
    "version,expected",
    [
        ("0.1.0", False),
        ("0.2.3", True),
        ("0.9.0", True),
        ("1.0.0", False),
    ],
)
def test_caret_upper_bound_is_next_major_even_below_one(version, expected):
    assert parse_constraint("^0.2.3").matches(v(version)) is expected


@pytest.mark.parametrize(
    "version,expected",
    [
        ("1.2.2", False),
        ("1.2.3", True),
        ("1.2.99", True),
        ("1.3.0", False),
        ("2.2.3", False),
    ],
)
def test_tilde_constraint_bounds(version, expected):
    assert parse_constraint("~1.2.3").matches(v(version)) is expected


def test_bare_version_is_exact_match():
    constraint = parse_constraint("1.2")
    assert constraint(v("1.2.0"))
    assert not constraint(v("1.2.1"))


def test_range_expression():
    constraint = parse_constraint(">=1.2.0 <2.0.0")
    assert constraint(v("1.2.0"))
    assert constraint(v("1.9.9"))
    assert not constraint(v("1.1.9"))
    assert not constraint(v("2.0.0"))


def test_range_tolerates_space_after_operator():
    constraint = parse_constraint(">= 1.0.0 < 1.5")
    assert constraint(v("1.4.9"))
    assert not constraint(v("1.5.0"))


def test_alternatives():
    constraint = parse_constraint("<1.0.0 || >=2.0.0")
    assert constraint(v("0.5.0"))
    assert constraint(v("2.1.0"))
    assert not constraint(v("1.5.0"))


def test_wildcard_versions():
    assert parse_constraint("1.x")(v("1.7.3"))
    assert not parse_constraint("1.x")(v("2.0.0"))
    assert parse_constraint("1.2.*")(v("1.2.9"))
    assert not parse_constraint("1.2.*")(v("1.3.0"))
    assert parse_constraint(">1.x")(v("2.0.0"))
    assert not parse_constraint(">1.x")(v("1.9.0"))


def test_not_equal():
    constraint = parse_constraint("!=1.0.0")
    assert not constraint(v("1.0.0"))
    assert constraint(v("1.0.1"))


@pytest.mark.parametrize("text", ["^", "~abc", ">=x.y.z.w", "1.0.0 ||", "foo", "1.x.3"])
def test_malformed_constraints_raise(text):
    with pytest.raises(VersionParseError):
        parse_constraint(text)


def test_select_latest_picks_highest_matching_version():
    candidates = [
        Candidate("a", v("1.0.0")),
        Candidate("b", v("1.2.0")),
        Candidate("c", v("1.2.5")),
        Candidate("d", v("2.0.0")),
    ]

    selected = select_latest(candidates, parse_constraint("^1.0.0"))

    assert [c.id for c in selected] == ["c"]


def test_select_latest_keeps_every_instance_at_the_latest_version():
    candidates = [
        Candidate("a", v("1.0.0")),
        Candidate("b", v("1.0.0")),
        Candidate("c", v("0.9.0")),
    ]

    selected = select_latest(candidates, parse_constraint("*"))

    assert {c.id for c in selected} == {"a", "b"}


def test_select_latest_raises_when_nothing_matches():
    candidates = [Candidate("a", v("1.0.0"))]

    with pytest.raises(NoMatchingVersion):
        select_latest(candidates, parse_constraint("^2.0.0"))

    with pytest.raises(NoMatchingVersion):
        select_latest([], parse_constraint("*"))

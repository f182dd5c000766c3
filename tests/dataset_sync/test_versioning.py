"""Ordering and eligibility rules for dataset release versions."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from NexusSDE.DatasetSync.versioning import (
    ZERO_VERSION,
    VersionTuple,
    compare_versions,
    icon_is_newer,
    is_eligible,
)

versions = st.builds(
    VersionTuple,
    build_number=st.integers(min_value=0, max_value=10_000_000),
    patch_number=st.integers(min_value=0, max_value=1_000),
)


@given(versions, versions)
def test_compare_versions_is_antisymmetric(a: VersionTuple, b: VersionTuple) -> None:
    assert compare_versions(a, b) == -compare_versions(b, a)


@given(versions, versions, versions)
def test_compare_versions_is_transitive(a: VersionTuple, b: VersionTuple, c: VersionTuple) -> None:
    if compare_versions(a, b) <= 0 and compare_versions(b, c) <= 0:
        assert compare_versions(a, c) <= 0


@given(versions, versions)
def test_ordering_matches_build_then_patch(a: VersionTuple, b: VersionTuple) -> None:
    expected = (a.build_number, a.patch_number) > (b.build_number, b.patch_number)
    assert (a > b) is expected


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (VersionTuple(3064089, 1), VersionTuple(3064089, 0), 1),
        (VersionTuple(3064089, 0), VersionTuple(3064090, 0), -1),
        (VersionTuple(3064090, 0), VersionTuple(3064089, 9), 1),
        (VersionTuple(7, 7), VersionTuple(7, 7), 0),
    ],
)
def test_compare_versions_examples(a: VersionTuple, b: VersionTuple, expected: int) -> None:
    assert compare_versions(a, b) == expected


def test_version_rendering() -> None:
    version = VersionTuple(3064089, 1)
    assert str(version) == "3064089.1"
    assert version.release_tag == "sde-build-3064089.1"
    assert str(ZERO_VERSION) == "0.0"


def test_icon_version_requires_strictly_greater() -> None:
    assert icon_is_newer(8, 7)
    assert not icon_is_newer(7, 7)
    assert not icon_is_newer(6, 7)


def test_exact_eligibility_is_string_equality() -> None:
    assert is_eligible("1.8.1", "1.8.1")
    assert is_eligible(" 1.8.1 ", "1.8.1")
    assert not is_eligible("1.8.0", "1.8.1")
    assert not is_eligible("1.8.2", "1.8.1")


def test_at_most_eligibility_accepts_older_minimums() -> None:
    assert is_eligible("1.8.0", "1.8.1", "at_most")
    assert is_eligible("1.8.1", "1.8.1", "at_most")
    assert not is_eligible("1.9.0", "1.8.1", "at_most")
    assert not is_eligible("not-a-version", "1.8.1", "at_most")


def test_unknown_policy_is_rejected() -> None:
    with pytest.raises(ValueError):
        is_eligible("1.8.1", "1.8.1", "newest")  # type: ignore[arg-type]

# === NAVMAP v1 ===
# {
#   "module": "NexusSDE.DatasetSync.versioning",
#   "purpose": "Dataset version tuples, icon version comparison, and release eligibility policies",
#   "sections": [
#     {"id": "versiontuple", "name": "VersionTuple", "anchor": "class-versiontuple", "kind": "class"},
#     {"id": "compare", "name": "compare_versions", "anchor": "function-compare-versions", "kind": "function"},
#     {"id": "eligibility", "name": "is_eligible", "anchor": "function-is-eligible", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Version arithmetic for dataset releases.

A dataset release is identified by ``(build_number, patch_number)`` and ordered
lexicographically. Icon archives carry an independent integer version. Both
dimensions are compared separately: either one advancing is an update.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Literal

from packaging.version import InvalidVersion, Version

__all__ = [
    "VersionTuple",
    "ZERO_VERSION",
    "compare_versions",
    "icon_is_newer",
    "EligibilityPolicy",
    "is_eligible",
]

EligibilityPolicy = Literal["exact", "at_most"]


@functools.total_ordering
@dataclass(frozen=True)
class VersionTuple:
    """Release version ordered by build number, then patch number.

    Examples:
        >>> VersionTuple(3, 1) > VersionTuple(2, 9)
        True
        >>> str(VersionTuple(3, 1))
        '3.1'
    """

    build_number: int
    patch_number: int

    def _key(self) -> tuple[int, int]:
        return (self.build_number, self.patch_number)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, VersionTuple):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        return f"{self.build_number}.{self.patch_number}"

    @property
    def release_tag(self) -> str:
        """Tag used by the release tooling, e.g. ``sde-build-3.1``."""
        return f"sde-build-{self}"


ZERO_VERSION = VersionTuple(0, 0)


def compare_versions(a: VersionTuple, b: VersionTuple) -> int:
    """Return ``-1``, ``0`` or ``1`` as ``a`` is older, equal, or newer than ``b``."""

    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def icon_is_newer(remote: int, local: int) -> bool:
    """Icon archives only update on a strictly greater version."""
    return remote > local


def is_eligible(
    minimum_app_version: str,
    client_version: str,
    policy: EligibilityPolicy = "exact",
) -> bool:
    """Decide whether a release record may be installed by this client.

    Args:
        minimum_app_version: Value carried on the remote record.
        client_version: Version of the running client build.
        policy: ``exact`` requires string equality; ``at_most`` accepts any
            record whose minimum does not exceed the client version.

    Returns:
        True when the record is installable.

    Examples:
        >>> is_eligible("1.8.1", "1.8.1")
        True
        >>> is_eligible("1.8.0", "1.8.1")
        False
        >>> is_eligible("1.8.0", "1.8.1", "at_most")
        True
    """

    if policy == "exact":
        return minimum_app_version.strip() == client_version.strip()
    if policy == "at_most":
        try:
            return Version(minimum_app_version) <= Version(client_version)
        except InvalidVersion:
            return False
    raise ValueError(f"Unknown eligibility policy: {policy}")

"""Version utilities for the IdP and its installable components."""

import re
from dataclasses import dataclass
from functools import total_ordering


@total_ordering
@dataclass
class ComponentVersion:
    """Version of the IdP or of a plugin.

    Versions are ``major[.minor[.patch]]`` with an optional ``-qualifier``
    (for example ``5.1.0`` or ``2.0.0-SNAPSHOT``). Missing components are zero.
    """

    major: int
    minor: int = 0
    patch: int = 0
    qualifier: str | None = None

    _VERSION_PATTERN = re.compile(
        r"^(?P<major>\d+)(?:\.(?P<minor>\d+))?(?:\.(?P<patch>\d+))?"
        r"(?:-(?P<qualifier>[0-9A-Za-z.-]+))?$"
    )

    @classmethod
    def parse(cls, version_str: str) -> "ComponentVersion":
        """Parse a version string.

        Args:
            version_str: Version string (e.g., "5", "4.3", "1.2.3-SNAPSHOT")

        Returns:
            ComponentVersion instance

        Raises:
            ValueError: If the string is not a valid version
        """
        match = cls._VERSION_PATTERN.match(version_str.strip())
        if not match:
            raise ValueError(f"Invalid version: {version_str}")

        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            qualifier=match.group("qualifier"),
        )

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.qualifier:
            version += f"-{self.qualifier}"
        return version

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ComponentVersion):
            return NotImplemented
        return (self.major, self.minor, self.patch, self.qualifier) == (
            other.major,
            other.minor,
            other.patch,
            other.qualifier,
        )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ComponentVersion):
            return NotImplemented

        if (self.major, self.minor, self.patch) != (other.major, other.minor, other.patch):
            return (self.major, self.minor, self.patch) < (other.major, other.minor, other.patch)

        # A qualified build (e.g. a snapshot) precedes the release
        if self.qualifier and not other.qualifier:
            return True
        if not self.qualifier and other.qualifier:
            return False
        if self.qualifier and other.qualifier:
            return self.qualifier < other.qualifier

        return False

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.qualifier))


class VersionRange:
    """A half-open range of IdP versions: ``minimum <= version < maximum``."""

    def __init__(self, minimum: ComponentVersion | str, maximum: ComponentVersion | str):
        """Initialize a version range.

        Args:
            minimum: Lowest supported version (inclusive)
            maximum: First unsupported version (exclusive)
        """
        self.minimum = _coerce(minimum)
        self.maximum = _coerce(maximum)

    def contains(self, version: ComponentVersion | str) -> bool:
        """Check if a version falls inside this range.

        Args:
            version: Version to check

        Returns:
            True if ``minimum <= version < maximum``
        """
        version = _coerce(version)
        return self.minimum <= version < self.maximum

    def __str__(self) -> str:
        return f"[{self.minimum}, {self.maximum})"

    def __repr__(self) -> str:
        return f"VersionRange({str(self.minimum)!r}, {str(self.maximum)!r})"


def _coerce(version: ComponentVersion | str) -> ComponentVersion:
    if isinstance(version, str):
        return ComponentVersion.parse(version)
    return version

"""
Dotted schema version parsing and comparison.

Versions are strings of non-negative integer components joined by dots,
conventionally MAJOR.MINOR.PATCH. Comparison is numeric and component-wise;
missing trailing components count as 0, so "2.2" and "2.2.0" are equal and
"2.10.0" is newer than "2.9.9".
"""

from itertools import zip_longest

from rhythm_schema.exceptions import InvalidVersionError


def parse_version(version: str) -> tuple[int, ...]:
    """
    Split a dotted version string into integer components.

    Raises:
        InvalidVersionError: If the string is empty or any component is not a
            non-negative integer.

    Examples:
        >>> parse_version("2.10.0")
        (2, 10, 0)
        >>> parse_version("2.x")
        Traceback (most recent call last):
        ...
        rhythm_schema.exceptions.InvalidVersionError: Invalid schema version: '2.x'
    """
    if not isinstance(version, str) or not version.strip():
        raise InvalidVersionError(f"Invalid schema version: {version!r}")

    components = []
    for part in version.strip().split("."):
        if not part.isdigit():
            raise InvalidVersionError(f"Invalid schema version: {version!r}")
        components.append(int(part))

    return tuple(components)


def compare_versions(a: str, b: str) -> int:
    """
    Compare two schema versions.

    Returns:
        -1 if a is older than b, 0 if equal, 1 if a is newer.
    """
    for left, right in zip_longest(parse_version(a), parse_version(b), fillvalue=0):
        if left > right:
            return 1
        if left < right:
            return -1
    return 0


def is_newer_version(a: str, b: str) -> bool:
    """Return True if version a is strictly newer than version b."""
    return compare_versions(a, b) > 0


def meets_minimum_version(version: str, minimum: str) -> bool:
    """Return True if version is at or above minimum."""
    return compare_versions(version, minimum) >= 0

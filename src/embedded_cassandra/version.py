"""Cassandra version model.

A version is ``major.minor[.patch][-label]``. Ordering looks at major, minor
and patch only (an absent patch orders as zero) while equality also takes
patch presence and the label into account, so ``3.11`` and ``3.11.0`` sort
together without being equal.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Self, final

from embedded_cassandra.exceptions import FormatError

_VERSION_PATTERN = re.compile(
    r"^(?P<major>[0-9]+)\.(?P<minor>[0-9]+)(?:\.(?P<patch>[0-9]+))?"
    r"(?:-(?P<label>[^\s\\/]+))?$"
)


class Ordering(IntEnum):
    """Result of comparing two versions."""

    LESS = -1
    EQUAL = 0
    GREATER = 1


@final
@dataclass(frozen=True, slots=True)
class Version:
    """Immutable Cassandra version.

    Attributes:
        major: Major component.
        minor: Minor component.
        patch: Patch component, or None when the text omitted it.
        pre_release: Label after the dash (``beta1``, ``rc2``), if any.
    """

    major: int
    minor: int
    patch: int | None = None
    pre_release: str | None = None

    def __post_init__(self) -> None:
        for component in (self.major, self.minor, self.patch):
            if component is not None and component < 0:
                msg = f"Version components must be non-negative: {self.major}.{self.minor}.{self.patch}"
                raise FormatError(msg, version_text=str(component))
        if self.pre_release is not None and not self.pre_release:
            msg = "Version pre-release label must not be empty"
            raise FormatError(msg, version_text="")

    @classmethod
    def parse(cls, text: str) -> Self:
        """Parse a version string.

        Args:
            text: Version text such as ``4.0``, ``3.11.6`` or ``4.0-beta1``.
                Surrounding whitespace is ignored.

        Returns:
            The parsed version.

        Raises:
            FormatError: If the text does not have the expected shape.
        """
        match = _VERSION_PATTERN.match(text.strip())
        if match is None:
            msg = f"Version '{text}' is invalid, expected major.minor[.patch][-label]"
            raise FormatError(msg, version_text=text)

        patch = match.group("patch")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(patch) if patch is not None else None,
            pre_release=match.group("label"),
        )

    @classmethod
    def of(
        cls,
        major: int,
        minor: int,
        patch: int | None = None,
        pre_release: str | None = None,
    ) -> Self:
        """Build a version from its components."""
        return cls(major=major, minor=minor, patch=patch, pre_release=pre_release)

    def _ordering_key(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch or 0)

    def compare(self, other: Version) -> Ordering:
        """Compare by major, minor and patch, ignoring the pre-release label."""
        mine, theirs = self._ordering_key(), other._ordering_key()
        if mine < theirs:
            return Ordering.LESS
        if mine > theirs:
            return Ordering.GREATER
        return Ordering.EQUAL

    def is_at_least(self, other: Version | str) -> bool:
        """Return True if this version orders at or above ``other``."""
        if isinstance(other, str):
            other = Version.parse(other)
        return self.compare(other) is not Ordering.LESS

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) is Ordering.LESS

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) is not Ordering.GREATER

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) is Ordering.GREATER

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self.compare(other) is not Ordering.LESS

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}"
        if self.patch is not None:
            text += f".{self.patch}"
        if self.pre_release is not None:
            text += f"-{self.pre_release}"
        return text


def compare(a: Version, b: Version) -> Ordering:
    """Compare two versions by major, minor and patch."""
    return a.compare(b)

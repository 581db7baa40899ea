"""
Numeric semantic version handling and the promotion bump policy.
"""
import re
from dataclasses import dataclass

from flowops.core.environments import Environment
from flowops.core.errors import ValidationError

SEMVER_PATTERN = re.compile(r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)$")


@dataclass(frozen=True, order=True)
class SemVer:
    major: int
    minor: int
    patch: int

    @classmethod
    def parse(cls, value: str) -> "SemVer":
        match = SEMVER_PATTERN.match((value or "").strip())
        if not match:
            raise ValidationError(
                f"Invalid version number '{value}'",
                details=["expected numeric major.minor.patch"],
            )
        major, minor, patch = (int(part) for part in match.groups())
        return cls(major, minor, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    def bump_patch(self) -> "SemVer":
        return SemVer(self.major, self.minor, self.patch + 1)

    def bump_minor(self) -> "SemVer":
        return SemVer(self.major, self.minor + 1, 0)

    def bump_major(self) -> "SemVer":
        return SemVer(self.major + 1, 0, 0)


INITIAL_VERSION = SemVer(1, 0, 0)


def bump_for_environment(version: SemVer, target: Environment) -> SemVer:
    """
    Apply the promotion bump policy for a version entering `target`.

    - into QA: minor bump, patch reset
    - into PRODUCTION: major bump, minor and patch reset
    - anywhere else: patch bump
    """
    target = Environment(target)
    if target == Environment.PRODUCTION:
        return version.bump_major()
    if target == Environment.QA:
        return version.bump_minor()
    return version.bump_patch()


def next_commit_number(head_number: str = None) -> str:
    """Number for a regular commit on top of `head_number` (1.0.0 for the first commit)."""
    if not head_number:
        return str(INITIAL_VERSION)
    return str(SemVer.parse(head_number).bump_patch())

"""
Profile-count detector — flags machines carrying too many user profiles.
"""

from dataclasses import dataclass

from .config import log
from .constants import DEFAULT_PROFILE_THRESHOLD


@dataclass(frozen=True)
class DetectionResult:
    count: int
    threshold: int

    @property
    def exceeded(self) -> bool:
        return self.count > self.threshold

    @property
    def message(self) -> str:
        if self.exceeded:
            return f"{self.count} profiles found, exceeds threshold of {self.threshold}"
        return f"{self.count} profiles found, within threshold of {self.threshold}"


def count_profiles(host) -> int:
    """Non-special profiles currently registered on the machine."""
    return sum(1 for p in host.enumerate_profiles() if not p.special)


def check_profile_count(host, threshold=DEFAULT_PROFILE_THRESHOLD) -> DetectionResult:
    if threshold < 0:
        raise ValueError(f"profile threshold must be >= 0, got {threshold}")
    result = DetectionResult(count=count_profiles(host), threshold=threshold)
    (log.warning if result.exceeded else log.info)("Profile count: %s", result.message)
    return result

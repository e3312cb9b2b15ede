"""
Records, host facts, and typed outcomes shared across components.

Every component reports through one of these dataclasses instead of raising:
a failed deletion step, a skipped candidate, or a missing install artifact is
a value in a report, never an exception in the caller's face.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum

from .constants import TIMESTAMP_FORMAT, USER_IDENTITY_PATTERN, PATH_UNSAFE_CHARS


# ─── Timestamps ──────────────────────────────────────────────────

def format_timestamp(dt: datetime) -> str:
    return dt.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value) -> datetime | None:
    """Parse a stored LastLogon value. Returns None if missing or unparsable."""
    if not value or not isinstance(value, str):
        return None
    try:
        dt = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    # Stored values are local wall-clock; drop any offset a hand edit added.
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def is_user_identity(identity) -> bool:
    return bool(identity) and bool(USER_IDENTITY_PATTERN.match(identity))


def sanitize_username(name) -> str:
    """Replace characters that can't live in a path segment."""
    return PATH_UNSAFE_CHARS.sub("_", (name or "").strip())


def strip_profile_suffix(name) -> str:
    """Administrator.WIN-ABC → Administrator.

    Windows appends .<COMPUTER> or .<DOMAIN> to a profile folder when the
    plain name is already taken.
    """
    base, dot, _ = name.rpartition(".")
    return base if dot and base else name


def matches_exclusion(name, exclusions) -> bool:
    """True if the name, or the name without a profile-folder suffix, is excluded."""
    if not name:
        return False
    name = name.strip().lower()
    return name in exclusions or strip_profile_suffix(name) in exclusions


# ─── Store / host records ────────────────────────────────────────

@dataclass
class ProfileRecord:
    identity: str
    username: str | None = None
    last_logon: str | None = None
    profile_path: str | None = None

    @property
    def last_logon_at(self) -> datetime | None:
        return parse_timestamp(self.last_logon)

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class LiveProfile:
    """A profile as the OS currently sees it."""
    identity: str
    local_path: str | None = None
    special: bool = False
    loaded: bool = False

    @property
    def username(self) -> str | None:
        if not self.local_path:
            return None
        leaf = self.local_path.replace("/", "\\").rstrip("\\").split("\\")[-1]
        return leaf or None


@dataclass(frozen=True)
class SessionIdentity:
    identity: str
    username: str
    profile_path: str | None = None


@dataclass(frozen=True)
class TaskState:
    name: str
    status: str

    @property
    def runnable(self) -> bool:
        return self.status.strip().lower() != "disabled"


# ─── Reconciliation outcomes ─────────────────────────────────────

class StepStatus(str, Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"
    SIMULATED = "simulated"
    FAILED = "failed"


class CandidateOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    SIMULATED = "simulated"


@dataclass
class StepOutcome:
    step: str            # "account" | "profile" | "record"
    status: StepStatus
    detail: str = ""

    @property
    def failed(self) -> bool:
        return self.status is StepStatus.FAILED


@dataclass
class CandidateReport:
    identity: str
    username: str | None
    last_logon: str
    days_inactive: int
    profile_path: str | None
    size_bytes: int = 0
    steps: list = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed_steps(self) -> list:
        return [s.step for s in self.steps if s.failed]

    @property
    def outcome(self) -> CandidateOutcome:
        if self.failed_steps:
            return CandidateOutcome.PARTIAL
        return CandidateOutcome.SIMULATED if self.dry_run else CandidateOutcome.SUCCESS

    def to_dict(self):
        return {
            "identity": self.identity,
            "username": self.username,
            "lastLogon": self.last_logon,
            "daysInactive": self.days_inactive,
            "profilePath": self.profile_path,
            "sizeBytes": self.size_bytes,
            "outcome": self.outcome.value,
            "failedSteps": self.failed_steps,
            "steps": [
                {"step": s.step, "status": s.status.value, "detail": s.detail}
                for s in self.steps
            ],
        }


@dataclass(frozen=True)
class SkippedRecord:
    identity: str
    username: str | None
    reason: str

    def to_dict(self):
        return asdict(self)


@dataclass
class ReconcileSummary:
    scanned: int = 0
    stale: int = 0
    removed: int = 0
    partial: int = 0
    reclaimed_bytes: int = 0
    elapsed_seconds: float = 0.0
    dry_run: bool = False
    days_threshold: int = 0

    def to_dict(self):
        return {
            "scanned": self.scanned,
            "stale": self.stale,
            "removed": self.removed,
            "partial": self.partial,
            "reclaimedBytes": self.reclaimed_bytes,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "dryRun": self.dry_run,
            "daysThreshold": self.days_threshold,
        }


@dataclass
class ReconcileReport:
    candidates: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    summary: ReconcileSummary = field(default_factory=ReconcileSummary)

    def to_dict(self):
        return {
            "candidates": [c.to_dict() for c in self.candidates],
            "skipped": [s.to_dict() for s in self.skipped],
            "summary": self.summary.to_dict(),
        }

"""
Install validator — read-only consistency check.

Mandatory (all must pass for compliance):
  store root · tracker artifact · version marker · scheduled task
Informational (reported, never block compliance):
  store entries · tracker health
"""

from dataclasses import dataclass, field

from .config import log
from .models import is_user_identity
from .tracker import read_health

CHECK_STORE_ROOT = "store root"
CHECK_TRACKER = "tracker artifact"
CHECK_VERSION = "version marker"
CHECK_TASK = "scheduled task"
CHECK_ENTRIES = "store entries"
CHECK_HEALTH = "tracker health"


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    mandatory: bool
    detail: str = ""


@dataclass
class ValidationReport:
    checks: list = field(default_factory=list)

    @property
    def compliant(self) -> bool:
        return all(c.passed for c in self.checks if c.mandatory)

    @property
    def failed(self) -> list:
        """Names of every failed check, mandatory first."""
        mandatory = [c.name for c in self.checks if not c.passed and c.mandatory]
        informational = [c.name for c in self.checks if not c.passed and not c.mandatory]
        return mandatory + informational

    def to_dict(self):
        return {
            "compliant": self.compliant,
            "failed": self.failed,
            "checks": [
                {"name": c.name, "passed": c.passed, "mandatory": c.mandatory, "detail": c.detail}
                for c in self.checks
            ],
        }


class InstallValidator:

    def __init__(self, store, host, settings, task_names=None):
        self._store = store
        self._host = host
        self._settings = settings
        self._task_names = tuple(task_names or (settings.task_name,))

    def run(self) -> ValidationReport:
        report = ValidationReport(checks=[
            self._check_store_root(),
            self._check_tracker(),
            self._check_version(),
            self._check_task(),
            self._check_entries(),
            self._check_health(),
        ])
        for c in report.checks:
            level = log.info if c.passed else (log.error if c.mandatory else log.warning)
            level("Check %-16s %s — %s", c.name, "PASS" if c.passed else "FAIL", c.detail)
        log.info("Validation %s", "COMPLIANT" if report.compliant
                 else "NON-COMPLIANT: " + ", ".join(report.failed))
        return report

    def _check_store_root(self):
        exists = self._store.root_exists()
        return CheckResult(CHECK_STORE_ROOT, exists, True,
                           f"{self._store.location} {'exists' if exists else 'missing'}")

    def _check_tracker(self):
        path = self._settings.tracker_path
        required = [path]
        package = self._settings.tracker_package_dir
        if package is not None:
            # The script is only runnable with its package beside it
            required.append(package / "tracker.py")
        missing = [str(p) for p in required if not p.is_file()]
        if missing:
            return CheckResult(CHECK_TRACKER, False, True, "missing: " + ", ".join(missing))
        return CheckResult(CHECK_TRACKER, True, True, f"{path} exists")

    def _check_version(self):
        version = (self._store.read_version() or "").strip()
        return CheckResult(CHECK_VERSION, bool(version), True,
                           f"version {version}" if version else "no version marker")

    def _check_task(self):
        seen = []
        for name in self._task_names:
            state = self._host.query_task(name)
            if state is None:
                continue
            seen.append(f"{state.name} ({state.status})")
            if state.runnable:
                return CheckResult(CHECK_TASK, True, True, f"{state.name} is {state.status}")
        detail = "disabled: " + ", ".join(seen) if seen else "no logon task registered"
        return CheckResult(CHECK_TASK, False, True, detail)

    def _check_entries(self):
        count = sum(1 for r in self._store.list_records() if is_user_identity(r.identity))
        return CheckResult(CHECK_ENTRIES, count > 0, False, f"{count} user records")

    def _check_health(self):
        health = read_health(self._settings.health_file)
        if not health:
            return CheckResult(CHECK_HEALTH, True, False, "no tracker runs recorded")
        failures = int(health.get("consecutiveFailures", 0))
        if failures:
            return CheckResult(CHECK_HEALTH, False, False,
                               f"{failures} consecutive failures, last: {health.get('lastError')}")
        return CheckResult(CHECK_HEALTH, True, False, f"last success {health.get('lastSuccess')}")

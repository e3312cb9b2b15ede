"""
LogonTracker — stamps "now" for the user whose logon triggered the task.

Runs once per logon under Task Scheduler. It must never block or fail the
logon path: every error becomes a failed TrackOutcome, nothing propagates.

After each run a small health file (tracker_health.json) records success or
failure so repeated silent failures show up in validation.
"""

import json
import sys
from dataclasses import dataclass
from datetime import datetime

from .config import log
from .models import format_timestamp, sanitize_username


@dataclass(frozen=True)
class TrackOutcome:
    ok: bool
    identity: str | None = None
    username: str | None = None
    last_logon: str | None = None
    error: str | None = None


class LogonTracker:

    def __init__(self, store, host, settings, clock=datetime.now):
        self._store = store
        self._host = host
        self._settings = settings
        self._clock = clock

    def run(self) -> TrackOutcome:
        outcome = self._track()
        self._record_health(outcome)
        return outcome

    def _track(self):
        try:
            session = self._host.current_session()
        except Exception as e:
            log.error("Could not resolve session identity: %s", e)
            return TrackOutcome(ok=False, error=f"identity: {e}")

        if session is None or not session.identity:
            # Nothing safe to key a record on
            log.error("No session identity resolved — nothing recorded")
            return TrackOutcome(ok=False, error="identity: unresolved")

        username = sanitize_username(session.username)
        now = format_timestamp(self._clock())
        try:
            self._store.upsert(session.identity, username, now, session.profile_path)
        except Exception as e:
            log.error("Logon stamp failed for %s (%s): %s", session.identity, username, e)
            return TrackOutcome(ok=False, identity=session.identity, username=username,
                                error=f"store: {e}")

        log.info("Logon recorded: %s (%s) at %s", username, session.identity, now)
        return TrackOutcome(ok=True, identity=session.identity, username=username, last_logon=now)

    # ── Health counter (outside the upsert path) ─────────────

    def _record_health(self, outcome):
        path = self._settings.health_file
        try:
            health = read_health(path) or {}
            now = format_timestamp(self._clock())
            if outcome.ok:
                health["consecutiveFailures"] = 0
                health["lastSuccess"] = now
            else:
                health["consecutiveFailures"] = int(health.get("consecutiveFailures", 0)) + 1
                health["totalFailures"] = int(health.get("totalFailures", 0)) + 1
                health["lastFailure"] = now
                health["lastError"] = outcome.error
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(health, indent=2), encoding="utf-8")
        except Exception as e:
            log.warning("Could not update tracker health: %s", e)


def read_health(path):
    """Tracker health dict, or None if never written / unreadable."""
    try:
        if not path.exists():
            return None
        data = json.loads(path.read_text(encoding="utf-8"))
        return data if isinstance(data, dict) else None
    except (OSError, ValueError):
        return None


def main():
    """Entry point for the deployed tracker artifact. Always exits 0."""
    try:
        from .config import load_settings, setup_logging
        from .platform_win import WindowsHost
        from .store import open_store

        settings = load_settings()
        setup_logging("tracker", settings)
        LogonTracker(open_store(settings), WindowsHost(), settings).run()
    except Exception as e:
        try:
            log.error("Tracker crashed: %s", e, exc_info=True)
        except Exception:
            pass
    sys.exit(0)

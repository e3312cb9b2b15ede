"""
Reconciler — find stale profiles and remove them.

For every store record:
  excluded username          → skip
  LastLogon missing/garbled  → skip (warning)
  LastLogon >= threshold     → not stale
  no live profile            → skip (warning, store/OS drift)
  profile loaded             → skip (warning, liveness beats staleness)
  otherwise                  → candidate

Each candidate gets three independent removals, in order:
  account (if it still exists) → profile (DeleteProfileW, else rmtree) → store record
A failed step is recorded and the next one still runs; one candidate's
failure never stops the batch.
"""

import time
from datetime import datetime, timedelta

from .config import log
from .constants import DEFAULT_DAYS_THRESHOLD, MIN_DAYS_THRESHOLD, MAX_DAYS_THRESHOLD
from .disk import human_size
from .models import (
    CandidateOutcome, CandidateReport, ReconcileReport, SkippedRecord,
    StepOutcome, StepStatus, is_user_identity, matches_exclusion,
)


class Reconciler:

    def __init__(self, store, host, settings, clock=datetime.now):
        self._store = store
        self._host = host
        self._settings = settings
        self._clock = clock

    def run(self, days_threshold=None, exclude_users=(), dry_run=False) -> ReconcileReport:
        days = DEFAULT_DAYS_THRESHOLD if days_threshold is None else int(days_threshold)
        if not MIN_DAYS_THRESHOLD <= days <= MAX_DAYS_THRESHOLD:
            raise ValueError(
                f"days_threshold must be between {MIN_DAYS_THRESHOLD} and {MAX_DAYS_THRESHOLD}, got {days}"
            )

        started = time.monotonic()
        report = ReconcileReport()
        report.summary.dry_run = dry_run
        report.summary.days_threshold = days

        now = self._clock()
        threshold = now - timedelta(days=days)
        exclusions = self._settings.exclusions(exclude_users)

        log.info("Reconciliation started%s: threshold=%d days (before %s), %d exclusions",
                 " [DRY RUN]" if dry_run else "", days,
                 threshold.strftime("%Y-%m-%d %H:%M:%S"), len(exclusions))

        records = [r for r in self._store.list_records() if is_user_identity(r.identity)]
        report.summary.scanned = len(records)
        live = {p.identity.upper(): p for p in self._host.enumerate_profiles()}

        for record in records:
            try:
                candidate = self._evaluate(record, threshold, now, exclusions, live, report)
                if candidate is None:
                    continue
                self._remove(candidate, dry_run)
            except Exception as e:
                # Anything unexpected stays scoped to this record
                log.error("Unexpected error reconciling %s: %s", record.identity, e, exc_info=True)
                report.skipped.append(SkippedRecord(record.identity, record.username, f"error: {e}"))
                continue

            report.candidates.append(candidate)
            report.summary.stale += 1
            if candidate.outcome is CandidateOutcome.PARTIAL:
                report.summary.partial += 1
            else:
                report.summary.removed += 1
                report.summary.reclaimed_bytes += candidate.size_bytes

        report.summary.elapsed_seconds = time.monotonic() - started
        s = report.summary
        log.info("Reconciliation %s: scanned=%d stale=%d removed=%d partial=%d reclaimed=%s in %.1fs",
                 "simulated" if dry_run else "complete",
                 s.scanned, s.stale, s.removed, s.partial, human_size(s.reclaimed_bytes),
                 s.elapsed_seconds)
        return report

    # ── Decision ─────────────────────────────────────────────

    def _evaluate(self, record, threshold, now, exclusions, live, report):
        """Return a CandidateReport, or None after recording why the record was skipped."""
        name = record.username

        def skip(reason, warn=False):
            (log.warning if warn else log.info)("Skip %s (%s): %s", record.identity, name, reason)
            report.skipped.append(SkippedRecord(record.identity, name, reason))

        if matches_exclusion(name, exclusions):
            skip("excluded")
            return None

        last = record.last_logon_at
        if last is None:
            skip(f"LastLogon missing or unparsable ({record.last_logon!r})", warn=True)
            return None

        if last >= threshold:
            return None

        profile = live.get(record.identity.upper())
        if profile is None:
            skip("no matching profile on this machine", warn=True)
            return None

        if profile.loaded:
            skip("profile is currently loaded", warn=True)
            return None

        path = profile.local_path or record.profile_path
        size = self._host.directory_size(path) if path else 0
        days_inactive = (now - last).days
        log.info("Stale: %s (%s) last logon %s, %d days inactive, %s at %s",
                 name, record.identity, record.last_logon, days_inactive, human_size(size), path)

        return CandidateReport(
            identity=record.identity,
            username=name,
            last_logon=record.last_logon,
            days_inactive=days_inactive,
            profile_path=path,
            size_bytes=size,
        )

    # ── Removal ──────────────────────────────────────────────

    def _remove(self, candidate, dry_run):
        candidate.dry_run = dry_run
        candidate.steps.append(self._remove_account(candidate, dry_run))
        candidate.steps.append(self._remove_profile(candidate, dry_run))
        candidate.steps.append(self._remove_record(candidate, dry_run))

        if candidate.failed_steps:
            log.error("Partial removal of %s (%s): failed steps %s",
                      candidate.username, candidate.identity, ", ".join(candidate.failed_steps))
        elif dry_run:
            log.info("WhatIf: %s (%s) would be removed, reclaiming %s",
                     candidate.username, candidate.identity, human_size(candidate.size_bytes))
        else:
            log.info("Removed %s (%s), reclaimed %s",
                     candidate.username, candidate.identity, human_size(candidate.size_bytes))

    def _remove_account(self, candidate, dry_run):
        name = candidate.username
        try:
            exists = bool(name) and self._host.account_exists(name)
        except Exception as e:
            log.error("Account lookup failed for %s: %s", name, e)
            return StepOutcome("account", StepStatus.FAILED, f"lookup: {e}")

        if not exists:
            log.info("No local account named %s", name)
            return StepOutcome("account", StepStatus.NOT_FOUND, "no local account")
        if dry_run:
            log.info("WhatIf: would delete local account %s", name)
            return StepOutcome("account", StepStatus.SIMULATED, f"would delete account {name}")

        try:
            self._host.delete_account(name)
            log.info("Deleted local account %s", name)
            return StepOutcome("account", StepStatus.REMOVED, f"deleted account {name}")
        except Exception as e:
            log.error("Account deletion failed for %s: %s", name, e)
            return StepOutcome("account", StepStatus.FAILED, str(e))

    def _remove_profile(self, candidate, dry_run):
        identity, path = candidate.identity, candidate.profile_path
        if dry_run:
            log.info("WhatIf: would delete profile %s at %s", identity, path)
            return StepOutcome("profile", StepStatus.SIMULATED, f"would delete profile {path}")

        try:
            self._host.delete_profile(identity)
            log.info("Deleted profile %s", identity)
            return StepOutcome("profile", StepStatus.REMOVED, f"deleted profile {path}")
        except Exception as e:
            log.warning("Profile API deletion failed for %s: %s — removing directory", identity, e)
            primary_error = e

        if not path:
            return StepOutcome("profile", StepStatus.FAILED,
                               f"{primary_error}; no profile path to remove")
        try:
            self._host.remove_directory(path)
            log.info("Removed profile directory %s", path)
            return StepOutcome("profile", StepStatus.REMOVED, f"removed directory {path}")
        except Exception as e:
            log.error("Profile directory removal failed for %s: %s", path, e)
            return StepOutcome("profile", StepStatus.FAILED, f"{primary_error}; {e}")

    def _remove_record(self, candidate, dry_run):
        identity = candidate.identity
        if dry_run:
            log.info("WhatIf: would delete store record %s", identity)
            return StepOutcome("record", StepStatus.SIMULATED, "would delete store record")
        try:
            if self._store.delete(identity):
                log.info("Deleted store record %s", identity)
                return StepOutcome("record", StepStatus.REMOVED, "deleted store record")
            return StepOutcome("record", StepStatus.NOT_FOUND, "record already gone")
        except Exception as e:
            log.error("Store record deletion failed for %s: %s", identity, e)
            return StepOutcome("record", StepStatus.FAILED, str(e))

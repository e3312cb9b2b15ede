"""
Seeder — populate the store from profiles already on the machine.

Runs at install time. Re-running overwrites every record with a freshly
computed timestamp; that's acceptable because nothing else runs it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .config import log
from .models import ProfileRecord, format_timestamp, is_user_identity


@dataclass
class SeedReport:
    planned: list = field(default_factory=list)   # ProfileRecord per intended upsert
    skipped: list = field(default_factory=list)   # (identity, reason)
    written: int = 0
    errors: int = 0
    dry_run: bool = False


class Seeder:

    def __init__(self, store, host, settings, clock=datetime.now):
        self._store = store
        self._host = host
        self._settings = settings
        self._clock = clock

    def _initial_logon(self, local_path):
        """Profile folder mtime approximates the last logon; fall back to now."""
        if local_path:
            try:
                path = Path(local_path)
                if path.is_dir():
                    return datetime.fromtimestamp(path.stat().st_mtime)
            except OSError as e:
                log.warning("Could not stat %s: %s", local_path, e)
        return self._clock()

    def _account_name(self, profile):
        """Account name for the SID; the profile folder leaf if it can't be resolved."""
        try:
            name = self._host.username_for(profile.identity)
        except Exception as e:
            log.warning("Account lookup failed for %s: %s", profile.identity, e)
            name = None
        return name or profile.username

    def plan(self):
        """Decide what would be written. Reads only."""
        report = SeedReport()
        for profile in self._host.enumerate_profiles():
            if profile.special:
                report.skipped.append((profile.identity, "special"))
                continue
            if not is_user_identity(profile.identity):
                report.skipped.append((profile.identity, "not a user identity"))
                continue
            username = self._account_name(profile)
            # A renamed account can still own a folder named after a built-in one
            if self._settings.is_excluded(username) or self._settings.is_excluded(profile.username):
                log.info("Seed skip %s (%s): excluded", profile.identity, username)
                report.skipped.append((profile.identity, "excluded"))
                continue
            report.planned.append(ProfileRecord(
                identity=profile.identity,
                username=username,
                last_logon=format_timestamp(self._initial_logon(profile.local_path)),
                profile_path=profile.local_path,
            ))
        return report

    def seed(self, dry_run=False) -> SeedReport:
        report = self.plan()
        report.dry_run = dry_run

        for record in report.planned:
            if dry_run:
                log.info("WhatIf: would seed %s (%s) LastLogon=%s",
                         record.identity, record.username, record.last_logon)
                continue
            try:
                self._store.upsert(record.identity, record.username,
                                   record.last_logon, record.profile_path)
                report.written += 1
                log.info("Seeded %s (%s) LastLogon=%s",
                         record.identity, record.username, record.last_logon)
            except Exception as e:
                report.errors += 1
                log.error("Seed failed for %s (%s): %s", record.identity, record.username, e)

        log.info("Seeding %s: %d planned, %d written, %d skipped, %d errors",
                 "simulated" if dry_run else "complete",
                 len(report.planned), report.written, len(report.skipped), report.errors)
        return report

"""
Installer — place the tracker, register it for every logon, seed the store.

Install:
  1. Store root + version marker
  2. Copy tracker artifact into <base>\\Tracker
  3. Task Scheduler entry: run tracker as SYSTEM at logon
  4. Seed records from existing profiles
Uninstall reverses 3 → 2 → 1 (store records included).

Best effort throughout: each step is logged and reported, none aborts the
rest, and the CLI exits 0 either way.
"""

import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path

from .config import log, resource_path
from .constants import AGENT_VERSION, TRACKER_SCRIPT_NAME, TRACKER_EXE_NAME
from .seeder import Seeder


@dataclass(frozen=True)
class InstallAction:
    step: str
    ok: bool
    detail: str = ""


@dataclass
class InstallReport:
    actions: list = field(default_factory=list)
    dry_run: bool = False
    seed: object = None

    @property
    def ok(self) -> bool:
        return all(a.ok for a in self.actions)

    def add(self, step, ok, detail=""):
        self.actions.append(InstallAction(step, ok, detail))
        (log.info if ok else log.error)("%s%s: %s — %s", "WhatIf " if self.dry_run else "",
                                         step, "ok" if ok else "FAILED", detail)


def tracker_source():
    """The tracker artifact shipped with this build."""
    if getattr(sys, 'frozen', False):
        return resource_path(TRACKER_EXE_NAME)
    return Path(__file__).parent / TRACKER_SCRIPT_NAME


def tracker_package():
    """Package directory deployed beside the tracker script; None when frozen."""
    if getattr(sys, 'frozen', False):
        return None
    return Path(__file__).parent


def tracker_command(tracker_path):
    """Command line Task Scheduler runs at logon."""
    if getattr(sys, 'frozen', False):
        return f'"{tracker_path}"'
    pythonw = Path(sys.executable).with_name("pythonw.exe")
    interpreter = pythonw if pythonw.exists() else Path(sys.executable)
    return f'"{interpreter}" "{tracker_path}"'


class Installer:

    def __init__(self, store, host, settings, source=None, package=None):
        self._store = store
        self._host = host
        self._settings = settings
        self._source = Path(source) if source else tracker_source()
        self._package = Path(package) if package else tracker_package()

    def install(self, dry_run=False) -> InstallReport:
        report = InstallReport(dry_run=dry_run)
        log.info("Install started (v%s)%s", AGENT_VERSION, " [WhatIf]" if dry_run else "")

        self._write_version(report, dry_run)
        self._place_tracker(report, dry_run)
        self._register_task(report, dry_run)

        try:
            report.seed = Seeder(self._store, self._host, self._settings).seed(dry_run=dry_run)
            report.add("seed", report.seed.errors == 0,
                       f"{len(report.seed.planned)} profiles, {report.seed.errors} errors")
        except Exception as e:
            report.add("seed", False, str(e))

        log.info("Install %s", "finished" if report.ok else "finished with errors")
        return report

    def uninstall(self, dry_run=False) -> InstallReport:
        report = InstallReport(dry_run=dry_run)
        log.info("Uninstall started%s", " [WhatIf]" if dry_run else "")
        name = self._settings.task_name
        target = self._settings.tracker_path

        if dry_run:
            report.add("task", True, f"would remove {name}")
            report.add("tracker", True, f"would delete {target}")
            report.add("store", True, f"would delete {self._store.location}")
            return report

        try:
            report.add("task", self._host.unregister_logon_task(name), f"removed {name}")
        except Exception as e:
            report.add("task", False, str(e))

        try:
            package_target = self._settings.tracker_package_dir
            if package_target and package_target.exists():
                shutil.rmtree(package_target)
            if target.exists():
                target.unlink()
            if target.parent.exists() and not any(target.parent.iterdir()):
                target.parent.rmdir()
            report.add("tracker", True, f"deleted {target}")
        except OSError as e:
            report.add("tracker", False, str(e))

        try:
            self._store.destroy()
            report.add("store", True, f"deleted {self._store.location}")
        except Exception as e:
            report.add("store", False, str(e))

        log.info("Uninstall %s", "finished" if report.ok else "finished with errors")
        return report

    # ── Steps ────────────────────────────────────────────────

    def _write_version(self, report, dry_run):
        if dry_run:
            report.add("store", True, f"would set {self._store.location} Version={AGENT_VERSION}")
            return
        try:
            self._store.write_version(AGENT_VERSION)
            report.add("store", True, f"{self._store.location} Version={AGENT_VERSION}")
        except Exception as e:
            report.add("store", False, str(e))

    def _place_tracker(self, report, dry_run):
        target = self._settings.tracker_path
        package_target = self._settings.tracker_package_dir
        if dry_run:
            report.add("tracker", True, f"would copy {self._source} → {target}")
            return
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            if not self._source.resolve() == target.resolve():
                shutil.copy2(self._source, target)
            # The task interpreter may not have this package installed
            if self._package and package_target and self._package.resolve() != package_target.resolve():
                if package_target.exists():
                    shutil.rmtree(package_target)
                shutil.copytree(self._package, package_target,
                                ignore=shutil.ignore_patterns("__pycache__", "*.pyc"))
            report.add("tracker", True, f"{target}")
        except OSError as e:
            report.add("tracker", False, f"copy {self._source} → {target}: {e}")

    def _register_task(self, report, dry_run):
        name = self._settings.task_name
        command = tracker_command(self._settings.tracker_path)
        if dry_run:
            report.add("task", True, f"would register {name}: {command}")
            return
        try:
            ok = self._host.register_logon_task(name, command)
            report.add("task", ok, f"{name}: {command}")
        except Exception as e:
            report.add("task", False, str(e))


def is_admin():
    """True when running elevated (writes to HKLM and Task Scheduler need it)."""
    if sys.platform != "win32":
        return hasattr(os, "geteuid") and os.geteuid() == 0
    try:
        import ctypes
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except Exception:
        return False

import os
import shutil
import subprocess
import sys

import pytest

from conftest import FakeHost, live
from hygiene_core.constants import AGENT_VERSION
from hygiene_core.installer import Installer
from hygiene_core.validator import CHECK_TRACKER, InstallValidator

SID = "S-1-5-21-100-200-300-1001"


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "dist" / "logon_tracker.py"
    path.parent.mkdir()
    path.write_text("print('tracker')\n")
    return path


@pytest.fixture
def machine(tmp_path):
    home = tmp_path / "Users" / "alice"
    home.mkdir(parents=True)
    return FakeHost(profiles=[
        live(SID, "alice", root=str(tmp_path / "Users")),
        live("S-1-5-18", "systemprofile", special=True),
    ])


def test_install_places_everything(settings, store, machine, source):
    report = Installer(store, machine, settings, source=source).install()

    assert report.ok
    assert [a.step for a in report.actions] == ["store", "tracker", "task", "seed"]
    assert store.read_version() == AGENT_VERSION
    assert settings.tracker_path.read_text() == "print('tracker')\n"
    assert settings.task_name in machine.tasks
    assert str(settings.tracker_path) in machine.task_commands[settings.task_name]
    assert [r.identity for r in store.list_records()] == [SID]


def test_install_then_validate_is_compliant(settings, store, machine, source):
    Installer(store, machine, settings, source=source).install()
    assert InstallValidator(store, machine, settings).run().compliant


def test_install_twice_is_idempotent(settings, store, machine, source):
    installer = Installer(store, machine, settings, source=source)
    installer.install()
    report = installer.install()

    assert report.ok
    assert len(store.list_records()) == 1
    assert list(machine.tasks) == [settings.task_name]


def test_what_if_changes_nothing(settings, store, machine, source):
    report = Installer(store, machine, settings, source=source).install(dry_run=True)

    assert report.dry_run
    assert report.seed.planned and report.seed.written == 0
    assert not store.root_exists()
    assert not settings.tracker_path.exists()
    assert machine.tasks == {}


def test_missing_source_is_reported_not_raised(settings, store, machine, tmp_path):
    report = Installer(store, machine, settings, source=tmp_path / "nope.py").install()

    assert not report.ok
    failed = [a.step for a in report.actions if not a.ok]
    assert failed == ["tracker"]
    # Later steps still ran
    assert settings.task_name in machine.tasks


def test_uninstall_removes_everything(settings, store, machine, source):
    installer = Installer(store, machine, settings, source=source)
    installer.install()

    report = installer.uninstall()

    assert report.ok
    assert machine.tasks == {}
    assert not settings.tracker_path.exists()
    assert not settings.tracker_path.parent.exists()
    assert not store.root_exists()
    assert not InstallValidator(store, machine, settings).run().compliant


def test_uninstall_what_if_keeps_everything(settings, store, machine, source):
    installer = Installer(store, machine, settings, source=source)
    installer.install()

    installer.uninstall(dry_run=True)

    assert settings.tracker_path.exists()
    assert store.root_exists()
    assert settings.task_name in machine.tasks


def test_install_deploys_package_beside_tracker(settings, store, machine, source):
    Installer(store, machine, settings, source=source).install()

    package = settings.tracker_package_dir
    assert (package / "tracker.py").is_file()
    assert (package / "__init__.py").is_file()
    assert not (package / "__pycache__").exists()


def test_uninstall_removes_deployed_package(settings, store, machine, source):
    installer = Installer(store, machine, settings, source=source)
    installer.install()

    installer.uninstall()

    assert not settings.tracker_package_dir.exists()


def test_tracker_without_package_is_not_compliant(settings, store, machine, source):
    Installer(store, machine, settings, source=source).install()
    shutil.rmtree(settings.tracker_package_dir)

    report = InstallValidator(store, machine, settings).run()

    assert not report.compliant
    assert report.failed == [CHECK_TRACKER]


@pytest.mark.skipif(sys.platform == "win32", reason="data dir is fixed to ProgramData on Windows")
def test_deployed_tracker_runs_without_an_installed_package(settings, store, machine, tmp_path):
    Installer(store, machine, settings).install()
    env = {k: v for k, v in os.environ.items() if k != "PYTHONPATH"}
    env["HYGIENE_HOME"] = str(tmp_path)

    # -S: no site-packages, so only the copy beside the script is importable
    result = subprocess.run([sys.executable, "-S", str(settings.tracker_path)],
                            env=env, cwd=str(tmp_path), capture_output=True, text=True, timeout=60)

    assert result.returncode == 0, result.stderr
    assert settings.health_file.is_file()

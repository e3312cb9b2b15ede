import logging
from datetime import datetime

import pytest

from hygiene_core.config import AgentSettings, log
from hygiene_core.models import LiveProfile, TaskState
from hygiene_core.platform_win import HostCommandError
from hygiene_core.store import SqliteStore

NOW = datetime(2026, 10, 19, 12, 0, 0)


def clock():
    return NOW


class FakeHost:
    """In-memory stand-in for WindowsHost."""

    def __init__(self, profiles=(), session=None, accounts=()):
        self.profiles = list(profiles)
        self.session = session
        self.accounts = {a.lower() for a in accounts}
        self.sizes = {}
        self.tasks = {}
        self.task_commands = {}
        self.deleted_accounts = []
        self.deleted_profiles = []
        self.removed_dirs = []
        self.fail_account = set()
        self.fail_profile = set()
        self.fail_rmdir = set()
        self.fail_lookup = set()
        self.names = {}            # identity -> account name (LookupAccountSidW)

    def enumerate_profiles(self):
        return list(self.profiles)

    def current_session(self):
        if isinstance(self.session, Exception):
            raise self.session
        return self.session

    def profile_path_for(self, identity):
        for p in self.profiles:
            if p.identity == identity:
                return p.local_path
        return None

    def username_for(self, identity):
        return self.names.get(identity)

    def account_exists(self, username):
        if username in self.fail_lookup:
            raise HostCommandError(f"net user {username} exited 2: Access is denied.")
        return bool(username) and username.lower() in self.accounts

    def delete_account(self, username):
        if username in self.fail_account:
            raise HostCommandError(f"net user /delete exited 2: access denied for {username}")
        self.accounts.discard(username.lower())
        self.deleted_accounts.append(username)

    def delete_profile(self, identity):
        if identity in self.fail_profile:
            raise HostCommandError("DeleteProfileW failed: The process cannot access the file (32)")
        self.deleted_profiles.append(identity)

    def remove_directory(self, path):
        if path in self.fail_rmdir:
            raise OSError(f"3 entries under {path} could not be deleted")
        self.removed_dirs.append(path)

    def directory_size(self, path):
        return self.sizes.get(path, 0)

    def register_logon_task(self, name, command):
        self.tasks[name] = TaskState(name=name, status="Ready")
        self.task_commands[name] = command
        return True

    def unregister_logon_task(self, name):
        self.tasks.pop(name, None)
        return True

    def query_task(self, name):
        return self.tasks.get(name)


def live(identity, username, loaded=False, special=False, root="C:\\Users"):
    return LiveProfile(identity=identity, local_path=f"{root}\\{username}",
                       special=special, loaded=loaded)


@pytest.fixture(autouse=True)
def quiet_log():
    # Keep logging's last-resort stderr handler out of CLI output
    handler = logging.NullHandler()
    log.addHandler(handler)
    yield
    log.removeHandler(handler)


@pytest.fixture
def settings(tmp_path):
    return AgentSettings(base_dir=tmp_path, store_backend="sqlite")


@pytest.fixture
def store(settings):
    return SqliteStore(settings.db_file)


@pytest.fixture
def host():
    return FakeHost()

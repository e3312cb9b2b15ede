import json
from datetime import timedelta

from conftest import FakeHost, NOW
from hygiene_core.models import SessionIdentity
from hygiene_core.platform_win import HostCommandError
from hygiene_core.tracker import LogonTracker, read_health

SID = "S-1-5-21-100-200-300-1001"
STAMP = NOW.strftime("%Y-%m-%d %H:%M:%S")


def session(username="alice", path="C:\\Users\\alice"):
    return SessionIdentity(identity=SID, username=username, profile_path=path)


def test_track_stamps_now(settings, store):
    host = FakeHost(session=session())
    outcome = LogonTracker(store, host, settings, clock=lambda: NOW).run()

    assert outcome.ok
    assert outcome.last_logon == STAMP
    record = store.get(SID)
    assert record.username == "alice"
    assert record.last_logon == STAMP
    assert record.profile_path == "C:\\Users\\alice"


def test_track_sanitizes_display_name(settings, store):
    host = FakeHost(session=session(username="jo/hn:doe"))
    LogonTracker(store, host, settings, clock=lambda: NOW).run()
    assert store.get(SID).username == "jo_hn_doe"


def test_track_repeated_converges_to_one_record(settings, store):
    host = FakeHost(session=session())
    times = iter([NOW, NOW, NOW + timedelta(seconds=5)])
    tracker = LogonTracker(store, host, settings, clock=lambda: next(times))
    for _ in range(3):
        tracker._track()

    records = store.list_records()
    assert len(records) == 1
    assert records[0].last_logon == (NOW + timedelta(seconds=5)).strftime("%Y-%m-%d %H:%M:%S")


def test_unresolved_identity_writes_nothing(settings, store):
    outcome = LogonTracker(store, FakeHost(session=None), settings, clock=lambda: NOW).run()
    assert not outcome.ok
    assert outcome.error.startswith("identity")
    assert not store.root_exists()


def test_identity_lookup_error_is_swallowed(settings, store):
    host = FakeHost(session=HostCommandError("whoami failed"))
    outcome = LogonTracker(store, host, settings, clock=lambda: NOW).run()
    assert not outcome.ok
    assert "whoami failed" in outcome.error
    assert store.list_records() == []


def test_store_failure_is_swallowed(settings):
    class ReadOnlyStore:
        def upsert(self, *args):
            raise PermissionError("Access is denied")

    outcome = LogonTracker(ReadOnlyStore(), FakeHost(session=session()), settings,
                           clock=lambda: NOW).run()
    assert not outcome.ok
    assert outcome.identity == SID
    assert "Access is denied" in outcome.error


def test_health_counter_tracks_consecutive_failures(settings, store):
    failing = LogonTracker(store, FakeHost(session=None), settings, clock=lambda: NOW)
    failing.run()
    failing.run()

    health = read_health(settings.health_file)
    assert health["consecutiveFailures"] == 2
    assert health["totalFailures"] == 2
    assert health["lastError"] == "identity: unresolved"

    LogonTracker(store, FakeHost(session=session()), settings, clock=lambda: NOW).run()
    health = json.loads(settings.health_file.read_text(encoding="utf-8"))
    assert health["consecutiveFailures"] == 0
    assert health["totalFailures"] == 2
    assert health["lastSuccess"] == STAMP


def test_health_write_failure_does_not_raise(tmp_path, store):
    from hygiene_core.config import AgentSettings
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    settings = AgentSettings(base_dir=blocker, store_backend="sqlite")

    outcome = LogonTracker(store, FakeHost(session=session()), settings, clock=lambda: NOW).run()
    assert outcome.ok

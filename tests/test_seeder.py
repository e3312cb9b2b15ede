import os
from datetime import datetime

from conftest import FakeHost, NOW, clock
from hygiene_core.models import LiveProfile
from hygiene_core.seeder import Seeder

ALICE = "S-1-5-21-100-200-300-1001"
BOB = "S-1-5-21-100-200-300-1002"
ADMIN = "S-1-5-21-100-200-300-500"


def make_profiles(tmp_path):
    users = tmp_path / "Users"
    alice = users / "alice"
    alice.mkdir(parents=True)
    (users / "Administrator").mkdir()
    stamp = datetime(2026, 3, 4, 5, 6, 7).timestamp()
    os.utime(alice, (stamp, stamp))
    return [
        LiveProfile(ALICE, str(alice)),
        LiveProfile(BOB, str(users / "bob")),           # folder already gone
        LiveProfile(ADMIN, str(users / "Administrator")),
        LiveProfile("S-1-5-18", "C:\\Windows\\system32\\config\\systemprofile", special=True),
        LiveProfile("S-1-5-80-123", str(users / "svc")),
    ]


def test_seed_writes_one_record_per_eligible_profile(tmp_path, settings, store):
    host = FakeHost(profiles=make_profiles(tmp_path))
    report = Seeder(store, host, settings, clock=clock).seed()

    assert report.written == 2
    assert report.errors == 0
    records = {r.identity: r for r in store.list_records()}
    assert set(records) == {ALICE, BOB}
    assert records[ALICE].username == "alice"
    assert records[ALICE].profile_path.endswith("alice")
    skipped = dict(report.skipped)
    assert skipped[ADMIN] == "excluded"
    assert skipped["S-1-5-18"] == "special"
    assert skipped["S-1-5-80-123"] == "not a user identity"


def test_seed_uses_folder_mtime_else_now(tmp_path, settings, store):
    host = FakeHost(profiles=make_profiles(tmp_path))
    Seeder(store, host, settings, clock=clock).seed()

    assert store.get(ALICE).last_logon == "2026-03-04 05:06:07"
    assert store.get(BOB).last_logon == NOW.strftime("%Y-%m-%d %H:%M:%S")


def test_seed_dry_run_writes_nothing(tmp_path, settings, store):
    host = FakeHost(profiles=make_profiles(tmp_path))
    report = Seeder(store, host, settings, clock=clock).seed(dry_run=True)

    assert report.dry_run
    assert [r.identity for r in report.planned] == [ALICE, BOB]
    assert report.written == 0
    assert not store.root_exists()


def test_seed_twice_is_idempotent(tmp_path, settings, store):
    host = FakeHost(profiles=make_profiles(tmp_path))
    seeder = Seeder(store, host, settings, clock=clock)
    seeder.seed()
    store.upsert(BOB, "bob", "2020-01-01 00:00:00", None)
    seeder.seed()

    records = store.list_records()
    assert len(records) == 2
    # Overwritten with the freshly computed value
    assert store.get(BOB).last_logon == NOW.strftime("%Y-%m-%d %H:%M:%S")


def test_seed_write_failure_is_counted_not_raised(tmp_path, settings):
    class BrokenStore:
        def upsert(self, *args):
            raise PermissionError("Access is denied")

    host = FakeHost(profiles=make_profiles(tmp_path))
    report = Seeder(BrokenStore(), host, settings, clock=clock).seed()
    assert report.written == 0
    assert report.errors == 2


def test_suffixed_builtin_folder_is_excluded(settings, store):
    rid500 = "S-1-5-21-111-222-333-500"
    host = FakeHost(profiles=[LiveProfile(rid500, "C:\\Users\\Administrator.WIN-ABC")])

    report = Seeder(store, host, settings, clock=clock).seed()

    assert report.written == 0
    assert dict(report.skipped)[rid500] == "excluded"
    assert store.get(rid500) is None


def test_username_resolved_from_identity(settings, store):
    host = FakeHost(profiles=[LiveProfile(ALICE, "C:\\Users\\alice.CONTOSO")])
    host.names[ALICE] = "alice"

    Seeder(store, host, settings, clock=clock).seed()

    assert store.get(ALICE).username == "alice"


def test_resolved_builtin_name_is_excluded_whatever_the_folder(settings, store):
    host = FakeHost(profiles=[LiveProfile(ADMIN, "C:\\Users\\it-admin")])
    host.names[ADMIN] = "Administrator"

    report = Seeder(store, host, settings, clock=clock).seed()
    assert report.written == 0


def test_seeded_suffixed_builtin_never_becomes_a_candidate(settings, store):
    from datetime import timedelta
    from hygiene_core.reconciler import Reconciler

    rid500 = "S-1-5-21-111-222-333-500"
    host = FakeHost(profiles=[LiveProfile(rid500, "C:\\Users\\Administrator.WIN-ABC")])
    Seeder(store, host, settings, clock=clock).seed()
    # Even a record written by hand with the folder name stays protected
    old = (NOW - timedelta(days=200)).strftime("%Y-%m-%d %H:%M:%S")
    store.upsert(rid500, "Administrator.WIN-ABC", old, "C:\\Users\\Administrator.WIN-ABC")

    report = Reconciler(store, host, settings, clock=clock).run()

    assert report.candidates == []
    assert host.deleted_profiles == []


def test_failed_identity_lookup_falls_back_to_folder_name(settings, store):
    class FlakyHost(FakeHost):
        def username_for(self, identity):
            raise OSError("LookupAccountSidW failed (1332)")

    host = FlakyHost(profiles=[LiveProfile(ALICE, "C:\\Users\\john.doe")])

    report = Seeder(store, host, settings, clock=clock).seed()

    assert report.written == 1
    assert store.get(ALICE).username == "john.doe"

"""
Timestamp store — last-seen metadata keyed by user identity (SID).

Two backends with one contract:
  RegistryStore → HKLM\\<root>\\<SID> {Username, LastLogon, ProfilePath}, Version at root
  SqliteStore   → profiles.db (non-Windows hosts, tests)

Writers are single-threaded per machine (tracker at logon, reconciler on its
own cadence). Races between them are last-write-wins.
"""

import sqlite3
import sys
import time
from pathlib import Path

from .config import log
from .constants import VALUE_USERNAME, VALUE_LAST_LOGON, VALUE_PROFILE_PATH, VALUE_VERSION
from .models import ProfileRecord


class TimestampStore:
    """Interface shared by both backends."""

    def upsert(self, identity, username, last_logon, profile_path):
        raise NotImplementedError

    def get(self, identity) -> ProfileRecord | None:
        raise NotImplementedError

    def list_records(self) -> list:
        raise NotImplementedError

    def delete(self, identity) -> bool:
        raise NotImplementedError

    def root_exists(self) -> bool:
        raise NotImplementedError

    def read_version(self) -> str | None:
        raise NotImplementedError

    def write_version(self, version):
        raise NotImplementedError

    def destroy(self):
        raise NotImplementedError

    @property
    def location(self) -> str:
        raise NotImplementedError


# ─── Registry backend ────────────────────────────────────────────

class RegistryStore(TimestampStore):
    """HKLM registry tree. Writable only by administrators / SYSTEM."""

    def __init__(self, root_path, hive=None):
        import winreg
        self._winreg = winreg
        self._hive = hive if hive is not None else winreg.HKEY_LOCAL_MACHINE
        self._root = root_path

    @property
    def location(self):
        return f"HKLM\\{self._root}"

    def _open(self, subkey, access=None):
        winreg = self._winreg
        path = f"{self._root}\\{subkey}" if subkey else self._root
        return winreg.OpenKey(self._hive, path, 0, access or winreg.KEY_READ)

    def _read_value(self, key, name):
        try:
            value, _ = self._winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        return str(value) if value is not None else None

    def upsert(self, identity, username, last_logon, profile_path):
        winreg = self._winreg
        # CreateKeyEx creates the root and any missing parents
        with winreg.CreateKeyEx(self._hive, f"{self._root}\\{identity}", 0, winreg.KEY_WRITE) as key:
            winreg.SetValueEx(key, VALUE_USERNAME, 0, winreg.REG_SZ, username or "")
            winreg.SetValueEx(key, VALUE_LAST_LOGON, 0, winreg.REG_SZ, last_logon)
            if profile_path:
                winreg.SetValueEx(key, VALUE_PROFILE_PATH, 0, winreg.REG_SZ, str(profile_path))

    def get(self, identity):
        try:
            with self._open(identity) as key:
                return ProfileRecord(
                    identity=identity,
                    username=self._read_value(key, VALUE_USERNAME),
                    last_logon=self._read_value(key, VALUE_LAST_LOGON),
                    profile_path=self._read_value(key, VALUE_PROFILE_PATH),
                )
        except FileNotFoundError:
            return None

    def _subkeys(self):
        names = []
        try:
            with self._open(None) as root:
                i = 0
                while True:
                    try:
                        names.append(self._winreg.EnumKey(root, i))
                    except OSError:
                        break
                    i += 1
        except FileNotFoundError:
            return []
        return names

    def list_records(self):
        records = []
        for name in self._subkeys():
            record = self.get(name)
            if record is not None:
                records.append(record)
        return records

    def delete(self, identity):
        try:
            self._winreg.DeleteKey(self._hive, f"{self._root}\\{identity}")
            return True
        except FileNotFoundError:
            return False

    def root_exists(self):
        try:
            with self._open(None):
                return True
        except FileNotFoundError:
            return False

    def read_version(self):
        try:
            with self._open(None) as key:
                return self._read_value(key, VALUE_VERSION)
        except FileNotFoundError:
            return None

    def write_version(self, version):
        winreg = self._winreg
        with winreg.CreateKeyEx(self._hive, self._root, 0, winreg.KEY_WRITE) as key:
            winreg.SetValueEx(key, VALUE_VERSION, 0, winreg.REG_SZ, version)

    def destroy(self):
        for name in self._subkeys():
            self.delete(name)
        try:
            self._winreg.DeleteKey(self._hive, self._root)
        except FileNotFoundError:
            pass


# ─── SQLite backend ──────────────────────────────────────────────

class SqliteStore(TimestampStore):
    """
    File-backed store. The database is created on first write, so an
    untouched machine still reports "no store root".
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path)

    @property
    def location(self):
        return str(self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self, conn):
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS profiles (
                identity TEXT PRIMARY KEY COLLATE NOCASE,
                username TEXT,
                last_logon TEXT,
                profile_path TEXT,
                updated_at INTEGER NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT
            );
            """
        )

    def _write(self, sql, params=()):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            with conn:
                self._initialize(conn)
                return conn.execute(sql, params).rowcount
        finally:
            conn.close()

    def _read(self, sql, params=()):
        if not self.db_path.exists():
            return []
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.OperationalError:
            # File exists but tables were never created
            return []
        finally:
            conn.close()

    def upsert(self, identity, username, last_logon, profile_path):
        self._write(
            """
            INSERT INTO profiles(identity, username, last_logon, profile_path, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(identity)
            DO UPDATE SET username=excluded.username,
                          last_logon=excluded.last_logon,
                          profile_path=COALESCE(excluded.profile_path, profiles.profile_path),
                          updated_at=excluded.updated_at
            """,
            (identity, username or "", last_logon,
             str(profile_path) if profile_path else None, int(time.time())),
        )

    @staticmethod
    def _to_record(row):
        return ProfileRecord(
            identity=row["identity"],
            username=row["username"],
            last_logon=row["last_logon"],
            profile_path=row["profile_path"],
        )

    def get(self, identity):
        rows = self._read(
            "SELECT identity, username, last_logon, profile_path FROM profiles WHERE identity=?",
            (identity,),
        )
        return self._to_record(rows[0]) if rows else None

    def list_records(self):
        rows = self._read(
            "SELECT identity, username, last_logon, profile_path FROM profiles ORDER BY identity"
        )
        return [self._to_record(row) for row in rows]

    def delete(self, identity):
        if not self.db_path.exists():
            return False
        return self._write("DELETE FROM profiles WHERE identity=?", (identity,)) > 0

    def root_exists(self):
        return self.db_path.exists()

    def read_version(self):
        rows = self._read("SELECT value FROM meta WHERE key=?", (VALUE_VERSION,))
        return rows[0]["value"] if rows else None

    def write_version(self, version):
        self._write(
            "INSERT INTO meta(key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (VALUE_VERSION, version),
        )

    def destroy(self):
        for suffix in ("", "-wal", "-shm"):
            Path(str(self.db_path) + suffix).unlink(missing_ok=True)


# ─── Factory ─────────────────────────────────────────────────────

def open_store(settings) -> TimestampStore:
    """Pick the backend configured for this machine."""
    if settings.store_backend == "registry":
        if sys.platform != "win32":
            log.warning("Registry store unavailable on %s — using %s", sys.platform, settings.db_file)
            return SqliteStore(settings.db_file)
        return RegistryStore(settings.registry_root)
    if settings.store_backend == "sqlite":
        return SqliteStore(settings.db_file)
    raise ValueError(f"Unknown store backend: {settings.store_backend!r}")

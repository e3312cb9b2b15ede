"""
Windows-specific functionality:
  - Profile enumeration (ProfileList + HKEY_USERS for loaded hives)
  - Current session identity (whoami, or WTS when running as SYSTEM)
  - Logon task registration via Task Scheduler
  - Local account / profile deletion

Read operations return empty results off Windows; destructive ones raise
HostCommandError so a caller can record the failure and move on.
"""

import csv
import ctypes
import io
import os
import subprocess
import sys

from .config import log
from .constants import COMMAND_TIMEOUT_SEC, SYSTEM_IDENTITIES
from .disk import remove_tree, size_of_path
from .models import LiveProfile, SessionIdentity, TaskState

_PROFILE_LIST_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"
_CREATE_NO_WINDOW = 0x08000000


class HostCommandError(RuntimeError):
    """An OS primitive (command, API call) failed."""


def _run(cmd, timeout=COMMAND_TIMEOUT_SEC):
    """Run a console command without flashing a window. Returns CompletedProcess."""
    kwargs = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = _CREATE_NO_WINDOW
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout, **kwargs)


# ─── Profile enumeration ─────────────────────────────────────────

def _is_hive_loaded(identity):
    """A user's hive is mounted under HKEY_USERS only while their profile is in use."""
    import winreg
    try:
        with winreg.OpenKey(winreg.HKEY_USERS, identity):
            return True
    except OSError:
        return False


def enumerate_profiles():
    """Return LiveProfile for every entry under ProfileList."""
    if sys.platform != "win32":
        return []

    import winreg
    profiles = []
    system_root = os.path.normcase(os.environ.get("SYSTEMROOT", "C:\\Windows"))
    with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, _PROFILE_LIST_KEY) as root:
        i = 0
        while True:
            try:
                identity = winreg.EnumKey(root, i)
            except OSError:
                break
            i += 1
            local_path = None
            try:
                with winreg.OpenKey(root, identity) as key:
                    value, _ = winreg.QueryValueEx(key, "ProfileImagePath")
                    local_path = os.path.expandvars(value)
            except FileNotFoundError:
                pass
            # Service profiles live under %SystemRoot% (ServiceProfiles, system32\config)
            special = identity in SYSTEM_IDENTITIES or bool(
                local_path and os.path.normcase(local_path).startswith(system_root)
            )
            profiles.append(LiveProfile(
                identity=identity,
                local_path=local_path,
                special=special,
                loaded=_is_hive_loaded(identity),
            ))
    return profiles


def profile_path_for(identity):
    """ProfileImagePath for a SID, or None."""
    if sys.platform != "win32":
        return None
    import winreg
    try:
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, f"{_PROFILE_LIST_KEY}\\{identity}") as key:
            value, _ = winreg.QueryValueEx(key, "ProfileImagePath")
            return os.path.expandvars(value)
    except OSError:
        return None


# ─── Session identity ────────────────────────────────────────────

_WTS_CURRENT_SERVER_HANDLE = 0
_WTS_USER_NAME = 5
_WTS_DOMAIN_NAME = 7


def _whoami():
    """(account, sid) of the process owner via `whoami /user`."""
    result = _run(["whoami", "/user", "/fo", "csv", "/nh"])
    if result.returncode != 0:
        raise HostCommandError(f"whoami failed: {result.stderr.strip()}")
    rows = [row for row in csv.reader(io.StringIO(result.stdout)) if row]
    if not rows or len(rows[0]) < 2:
        raise HostCommandError(f"Unexpected whoami output: {result.stdout!r}")
    return rows[0][0], rows[0][1]


def _wts_query(session_id, info_class):
    wtsapi32 = ctypes.WinDLL("wtsapi32", use_last_error=True)
    buf = ctypes.c_wchar_p()
    size = ctypes.c_ulong()
    ok = wtsapi32.WTSQuerySessionInformationW(
        _WTS_CURRENT_SERVER_HANDLE, session_id, info_class,
        ctypes.byref(buf), ctypes.byref(size),
    )
    if not ok:
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        return buf.value or ""
    finally:
        wtsapi32.WTSFreeMemory(buf)


def _lookup_sid(account):
    """Resolve DOMAIN\\user to a string SID via LookupAccountNameW."""
    advapi32 = ctypes.WinDLL("advapi32", use_last_error=True)
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    sid_size = ctypes.c_ulong(0)
    domain_size = ctypes.c_ulong(0)
    use = ctypes.c_ulong()

    # First call only sizes the buffers
    advapi32.LookupAccountNameW(None, account, None, ctypes.byref(sid_size),
                                None, ctypes.byref(domain_size), ctypes.byref(use))
    if not sid_size.value:
        raise ctypes.WinError(ctypes.get_last_error())

    sid = ctypes.create_string_buffer(sid_size.value)
    domain = ctypes.create_unicode_buffer(domain_size.value)
    if not advapi32.LookupAccountNameW(None, account, sid, ctypes.byref(sid_size),
                                       domain, ctypes.byref(domain_size), ctypes.byref(use)):
        raise ctypes.WinError(ctypes.get_last_error())

    string_sid = ctypes.c_wchar_p()
    if not advapi32.ConvertSidToStringSidW(sid, ctypes.byref(string_sid)):
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        return string_sid.value
    finally:
        kernel32.LocalFree(string_sid)


def _lookup_account_sid(identity):
    """Resolve a string SID to its account name via LookupAccountSidW."""
    advapi32 = ctypes.WinDLL("advapi32", use_last_error=True)
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    psid = ctypes.c_void_p()
    if not advapi32.ConvertStringSidToSidW(identity, ctypes.byref(psid)):
        raise ctypes.WinError(ctypes.get_last_error())
    try:
        name = ctypes.create_unicode_buffer(256)
        name_size = ctypes.c_ulong(256)
        domain = ctypes.create_unicode_buffer(256)
        domain_size = ctypes.c_ulong(256)
        use = ctypes.c_ulong()
        if not advapi32.LookupAccountSidW(None, psid, name, ctypes.byref(name_size),
                                          domain, ctypes.byref(domain_size), ctypes.byref(use)):
            raise ctypes.WinError(ctypes.get_last_error())
        return name.value
    finally:
        kernel32.LocalFree(psid)


def username_for(identity):
    """Account name owning a SID, or None if it no longer resolves."""
    if sys.platform != "win32":
        return None
    try:
        return _lookup_account_sid(identity) or None
    except OSError as e:
        log.warning("LookupAccountSidW failed for %s: %s", identity, e)
        return None


def _console_session_user():
    """(account, sid) of the user on the active console session, or None.

    Only the physical console is considered. On a terminal server a SYSTEM
    run triggered by an RDP logon stamps the console user (or nobody), not
    the RDP user.
    """
    session_id = ctypes.windll.kernel32.WTSGetActiveConsoleSessionId()
    if session_id == 0xFFFFFFFF:
        return None
    user = _wts_query(session_id, _WTS_USER_NAME)
    if not user:
        return None
    domain = _wts_query(session_id, _WTS_DOMAIN_NAME)
    account = f"{domain}\\{user}" if domain else user
    return account, _lookup_sid(account)


def current_session():
    """
    Identity of the user whose logon triggered us.

    Under the logon task the tracker runs as SYSTEM, so the process owner is
    S-1-5-18; then the interactive console user is resolved instead and the
    profile path comes from ProfileList rather than our own environment.
    Returns SessionIdentity or None.
    """
    if sys.platform != "win32":
        return None

    account, identity = _whoami()
    from_environment = True
    if identity in SYSTEM_IDENTITIES:
        resolved = _console_session_user()
        if resolved is None:
            log.warning("Running as %s and no interactive session found", identity)
            return None
        account, identity = resolved
        from_environment = False

    username = account.split("\\")[-1]
    if from_environment:
        profile_path = os.environ.get("USERPROFILE") or profile_path_for(identity)
    else:
        profile_path = profile_path_for(identity)
    return SessionIdentity(identity=identity, username=username, profile_path=profile_path)


# ─── Logon task (Task Scheduler) ─────────────────────────────────

def register_logon_task(task_name, command):
    """
    Create a Task Scheduler entry that runs `command` as SYSTEM at every
    user logon. Returns True on success.
    """
    if sys.platform != "win32":
        return False

    try:
        _run(["schtasks", "/Delete", "/TN", task_name, "/F"], timeout=10)
    except Exception:
        pass

    cmd = [
        "schtasks", "/Create",
        "/TN", task_name,
        "/TR", command,
        "/SC", "ONLOGON",
        "/RU", "SYSTEM",
        "/RL", "HIGHEST",
        "/F",
    ]
    try:
        result = _run(cmd, timeout=15)
        if result.returncode == 0:
            log.info("Task Scheduler entry created: %s", task_name)
            return True
        log.error("schtasks /Create failed (%d): %s", result.returncode, result.stderr.strip())
        return False
    except Exception as e:
        log.error("Task Scheduler error: %s", e)
        return False


def unregister_logon_task(task_name):
    """Remove the logon task. Returns True if it is gone afterwards."""
    if sys.platform != "win32":
        return True
    try:
        result = _run(["schtasks", "/Delete", "/TN", task_name, "/F"], timeout=10)
        if result.returncode == 0:
            log.info("Task Scheduler entry removed: %s", task_name)
            return True
        return query_task(task_name) is None
    except Exception as e:
        log.warning("Could not remove task %s: %s", task_name, e)
        return False


def query_task(task_name):
    """Return TaskState(name, status) or None if the task isn't registered."""
    if sys.platform != "win32":
        return None
    try:
        result = _run(["schtasks", "/Query", "/TN", task_name, "/FO", "CSV", "/NH"], timeout=10)
    except Exception as e:
        log.warning("Task query failed for %s: %s", task_name, e)
        return None
    if result.returncode != 0:
        return None
    # "TaskName","Next Run Time","Status"
    for row in csv.reader(io.StringIO(result.stdout)):
        if len(row) >= 3:
            return TaskState(name=row[0].lstrip("\\"), status=row[2])
    return None


# ─── Accounts and profiles ───────────────────────────────────────

_NET_USER_NOT_FOUND = "2221"     # NET HELPMSG 2221: the user name could not be found


def account_exists(username):
    """
    True if a local account with this name exists, False if `net user`
    reports it unknown. Any other failure raises HostCommandError; a lookup
    that can't be trusted must not read as "no such account".
    """
    if sys.platform != "win32" or not username:
        return False
    try:
        result = _run(["net", "user", username])
    except (OSError, subprocess.SubprocessError) as e:
        raise HostCommandError(f"net user {username} could not run: {e}") from e
    if result.returncode == 0:
        return True
    output = f"{result.stdout or ''}\n{result.stderr or ''}"
    if _NET_USER_NOT_FOUND in output or "could not be found" in output.lower():
        return False
    raise HostCommandError(f"net user {username} exited {result.returncode}: {output.strip()}")


def delete_account(username):
    if sys.platform != "win32":
        raise HostCommandError("Local accounts can only be deleted on Windows")
    result = _run(["net", "user", username, "/delete"])
    if result.returncode != 0:
        raise HostCommandError(
            f"net user /delete exited {result.returncode}: {(result.stderr or result.stdout).strip()}"
        )


def delete_profile(identity):
    """Remove the profile registration and its folder via DeleteProfileW."""
    if sys.platform != "win32":
        raise HostCommandError("Profiles can only be deleted on Windows")
    userenv = ctypes.WinDLL("userenv", use_last_error=True)
    if not userenv.DeleteProfileW(identity, None, None):
        err = ctypes.get_last_error()
        raise HostCommandError(f"DeleteProfileW failed: {ctypes.FormatError(err)} ({err})")


class WindowsHost:
    """Bundles the module functions so components can take a host object."""

    enumerate_profiles = staticmethod(enumerate_profiles)
    current_session = staticmethod(current_session)
    profile_path_for = staticmethod(profile_path_for)
    username_for = staticmethod(username_for)
    register_logon_task = staticmethod(register_logon_task)
    unregister_logon_task = staticmethod(unregister_logon_task)
    query_task = staticmethod(query_task)
    account_exists = staticmethod(account_exists)
    delete_account = staticmethod(delete_account)
    delete_profile = staticmethod(delete_profile)
    remove_directory = staticmethod(remove_tree)
    directory_size = staticmethod(size_of_path)

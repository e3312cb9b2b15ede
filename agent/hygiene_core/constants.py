"""
Constants, thresholds, names, and built-in exclusion lists.
"""

import re

AGENT_VERSION = "1.3.0"

# ─── Thresholds ──────────────────────────────────────────────────
DEFAULT_DAYS_THRESHOLD = 90      # No logon for 90 days → stale
MIN_DAYS_THRESHOLD = 1
MAX_DAYS_THRESHOLD = 3650
DEFAULT_PROFILE_THRESHOLD = 30   # Detector flags machines with more profiles

# ─── Names ───────────────────────────────────────────────────────
FOLDER_NAME = "FleetHygiene"
REGISTRY_ROOT = r"SOFTWARE\FleetHygiene\ProfileTracker"
TASK_NAME = "FleetHygiene Logon Tracker"
TRACKER_SCRIPT_NAME = "logon_tracker.py"
TRACKER_EXE_NAME = "logon_tracker.exe"
TRACKER_PACKAGE_NAME = "hygiene_core"   # Copied beside the script so it imports without an install

# Registry value names (also used as JSON keys in reports)
VALUE_USERNAME = "Username"
VALUE_LAST_LOGON = "LastLogon"
VALUE_PROFILE_PATH = "ProfilePath"
VALUE_VERSION = "Version"

# ─── Timestamps ──────────────────────────────────────────────────
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"   # local time, second precision

# ─── Logging ─────────────────────────────────────────────────────
LOG_MAX_BYTES = 5 * 1024 * 1024  # New segment once the active one passes 5 MB
LOG_BACKUP_COUNT = 3

# ─── Subprocess / network ────────────────────────────────────────
COMMAND_TIMEOUT_SEC = 30
API_TIMEOUT_REPORT = 20
MAX_BUFFERED_REPORTS = 50       # Oldest pending reports are dropped past this

# ─── Identities ──────────────────────────────────────────────────
# Domain/local accounts (S-1-5-21-*) and Azure AD accounts (S-1-12-1-*).
# Well-known service identities (S-1-5-18/19/20) never match.
USER_IDENTITY_PATTERN = re.compile(r"^S-1-(5-21|12-1)-.+$", re.IGNORECASE)

SYSTEM_IDENTITIES = frozenset({
    "S-1-5-18",   # LocalSystem
    "S-1-5-19",   # LocalService
    "S-1-5-20",   # NetworkService
})

# Usernames that are never proposed for deletion (compared case-insensitively).
BUILTIN_EXCLUDED_USERS = frozenset({
    "administrator",
    "defaultaccount",
    "guest",
    "wdagutilityaccount",
    "defaultuser0",
    "default",
    "default user",
    "public",
    "all users",
})

# Characters that cannot appear in a path segment on Windows.
PATH_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')

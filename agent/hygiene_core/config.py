"""
Paths, logging setup, settings load/save, safe_print.
"""

import os
import json
import sys
import logging
from dataclasses import dataclass, field, replace
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .constants import (
    FOLDER_NAME, REGISTRY_ROOT, TASK_NAME, TRACKER_SCRIPT_NAME, TRACKER_EXE_NAME, TRACKER_PACKAGE_NAME,
    DEFAULT_DAYS_THRESHOLD, DEFAULT_PROFILE_THRESHOLD, BUILTIN_EXCLUDED_USERS,
    LOG_MAX_BYTES, LOG_BACKUP_COUNT,
)
from .models import matches_exclusion


# ─── Paths ───────────────────────────────────────────────────────
# One fixed machine-wide location, regardless of where the agent runs from.

if sys.platform == "win32":
    BASE_DIR = Path(os.environ.get("PROGRAMDATA", "C:\\ProgramData")) / FOLDER_NAME
elif os.environ.get("HYGIENE_HOME"):
    BASE_DIR = Path(os.environ["HYGIENE_HOME"])
else:
    BASE_DIR = Path(__file__).parent.parent

CONFIG_FILE = BASE_DIR / "config.json"


def resource_path(relative_path):
    """Get path to a bundled resource (works for both dev and PyInstaller)."""
    if getattr(sys, 'frozen', False):
        base = Path(sys._MEIPASS)
    else:
        base = Path(__file__).parent.parent
    return base / relative_path


# ─── Safe print (no crash under pythonw) ─────────────────────────

def safe_print(*args, **kwargs):
    try:
        print(*args, **kwargs)
    except Exception:
        pass


# ─── Settings ────────────────────────────────────────────────────

@dataclass(frozen=True)
class AgentSettings:
    """Everything a component needs to know about this machine's install."""

    base_dir: Path = BASE_DIR
    store_backend: str = "registry" if sys.platform == "win32" else "sqlite"
    registry_root: str = REGISTRY_ROOT
    task_name: str = TASK_NAME
    days_threshold: int = DEFAULT_DAYS_THRESHOLD
    extra_excluded_users: tuple = ()
    profile_threshold: int = DEFAULT_PROFILE_THRESHOLD
    log_max_bytes: int = LOG_MAX_BYTES
    log_backup_count: int = LOG_BACKUP_COUNT
    report_url: str | None = None
    report_token: str | None = None
    excluded_users: frozenset = field(default=BUILTIN_EXCLUDED_USERS)

    @property
    def db_file(self) -> Path:
        return self.base_dir / "profiles.db"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "Logs"

    @property
    def tracker_path(self) -> Path:
        name = TRACKER_EXE_NAME if getattr(sys, 'frozen', False) else TRACKER_SCRIPT_NAME
        return self.base_dir / "Tracker" / name

    @property
    def tracker_package_dir(self) -> Path | None:
        """Package copy the deployed script imports; None for the self-contained exe."""
        if getattr(sys, 'frozen', False):
            return None
        return self.base_dir / "Tracker" / TRACKER_PACKAGE_NAME

    @property
    def health_file(self) -> Path:
        return self.base_dir / "tracker_health.json"

    @property
    def buffer_file(self) -> Path:
        return self.base_dir / "pending.jsonl"

    def exclusions(self, extra=()) -> frozenset:
        """Built-in ∪ configured ∪ caller-supplied usernames, lowercased."""
        names = set(self.excluded_users)
        names.update(u.lower() for u in self.extra_excluded_users if u)
        names.update(u.lower() for u in extra if u)
        return frozenset(names)

    def is_excluded(self, username, extra=()) -> bool:
        if not username:
            return False
        return matches_exclusion(username, self.exclusions(extra))


# JSON key → AgentSettings field
_CONFIG_KEYS = {
    "storeBackend": "store_backend",
    "registryRoot": "registry_root",
    "taskName": "task_name",
    "daysThreshold": "days_threshold",
    "excludeUsers": "extra_excluded_users",
    "profileThreshold": "profile_threshold",
    "logMaxBytes": "log_max_bytes",
    "reportUrl": "report_url",
    "reportToken": "report_token",
}


def load_config(config_file=None):
    """Load the raw config dict from disk. Returns dict or None."""
    path = Path(config_file) if config_file else CONFIG_FILE
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if isinstance(data, dict):
                return data
            log.warning("Config %s is not a JSON object — using defaults", path)
        except (json.JSONDecodeError, IOError) as e:
            log.warning("Config %s unreadable (%s) — using defaults", path, e)
    return None


def load_settings(config_file=None, base_dir=None) -> AgentSettings:
    """Build settings from defaults overlaid with config.json, if present."""
    settings = AgentSettings() if base_dir is None else AgentSettings(base_dir=Path(base_dir))
    if config_file is None and base_dir is not None:
        config_file = Path(base_dir) / "config.json"
    raw = load_config(config_file) or {}

    overrides = {}
    for key, attr in _CONFIG_KEYS.items():
        if key not in raw or raw[key] is None:
            continue
        value = raw[key]
        if attr == "extra_excluded_users":
            if isinstance(value, str):
                value = [value]
            value = tuple(str(v) for v in value)
        elif attr in ("days_threshold", "profile_threshold", "log_max_bytes"):
            try:
                value = int(value)
            except (TypeError, ValueError):
                log.warning("Ignoring non-integer %s=%r in config", key, value)
                continue
        overrides[attr] = value

    return replace(settings, **overrides) if overrides else settings


def save_settings(settings, config_file=None):
    """Persist the overridable settings as config.json."""
    path = Path(config_file) if config_file else settings.base_dir / "config.json"
    data = {}
    for key, attr in _CONFIG_KEYS.items():
        value = getattr(settings, attr)
        if isinstance(value, tuple):
            value = list(value)
        data[key] = value
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    log.info("Config saved to %s", path)


# ─── Logging ─────────────────────────────────────────────────────

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

log = logging.getLogger("hygiene")
log.setLevel(logging.INFO)
log.propagate = False


def setup_logging(component, settings, console=True):
    """
    Attach the audit sink for one component: Logs/<component>.log, rotated
    at settings.log_max_bytes. A sink that can't be opened is skipped; the
    component keeps running with console output only.
    """
    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    try:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.log_dir / f"{component}.log",
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        log.addHandler(file_handler)
    except OSError as e:
        safe_print(f"Audit log unavailable ({e}); logging to console only", file=sys.stderr)

    # pythonw has no console: sys.stderr is None there
    if console and sys.stderr is not None:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        log.addHandler(console_handler)

    return log

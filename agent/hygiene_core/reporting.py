"""
Fleet reporting — optional upload of reconcile/validate results.

Only active when reportUrl is configured. An upload that failed for a
transient reason (network error, 5xx, 429) is appended to a JSON-lines
buffer (pending.jsonl) and replayed before the next report. Rejected
uploads (other 4xx) are dropped. The buffer holds at most
MAX_BUFFERED_REPORTS entries. Nothing here changes a command's exit code.
"""

import json
import platform
import time

import requests

from .config import log
from .constants import AGENT_VERSION, API_TIMEOUT_REPORT, MAX_BUFFERED_REPORTS
from . import http_client

_OK = (200, 201, 202)


def build_envelope(kind, report):
    return {
        "host": platform.node(),
        "agentVersion": AGENT_VERSION,
        "kind": kind,
        "sentAt": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "report": report,
    }


def _headers(settings):
    headers = {}
    if settings.report_token:
        headers["Authorization"] = f"Bearer {settings.report_token}"
    return headers


def _retryable(status_code):
    return status_code >= 500 or status_code == 429


def send_report(settings, kind, report) -> bool:
    """POST one report. Returns True on success; buffers transient failures and returns False."""
    if not settings.report_url:
        return False

    flush_buffer(settings)

    url = settings.report_url
    payload = build_envelope(kind, report)
    try:
        resp = http_client.http.post(url, json=payload, headers=_headers(settings),
                                     timeout=API_TIMEOUT_REPORT)
        if resp.status_code in _OK:
            log.info("Report sent | kind=%s", kind)
            return True
        if resp.status_code == 401:
            log.error("Report REJECTED (401) — check reportToken")
            return False
        if not _retryable(resp.status_code):
            log.error("Report REJECTED: HTTP %d — %s (not retried)",
                      resp.status_code, resp.text[:200])
            return False
        log.warning("Report failed: HTTP %d — %s", resp.status_code, resp.text[:200])
    except requests.ConnectionError as e:
        log.warning("Report network error: %s", e)
        # Pooled connection may be dead; start fresh for the next upload
        http_client.http = http_client.reset_session(http_client.http)
    except requests.RequestException as e:
        log.warning("Report network error: %s", e)
    buffer_request(settings, url, payload)
    return False


# ─── Offline buffer ──────────────────────────────────────────────

def _read_lines(path):
    return [l for l in path.read_text(encoding="utf-8").split("\n") if l.strip()]


def _write_lines(path, lines):
    if lines:
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    else:
        path.unlink(missing_ok=True)


def buffer_request(settings, url, payload):
    """Save a failed upload to disk for later replay, keeping only the newest entries."""
    path = settings.buffer_file
    entry = {"url": url, "payload": payload, "ts": time.time()}
    try:
        lines = _read_lines(path) if path.exists() else []
        # Same kind and report as the last entry: only sentAt differs
        if lines:
            try:
                last = json.loads(lines[-1])["payload"]
                if last.get("kind") == payload.get("kind") and last.get("report") == payload.get("report"):
                    return
            except (ValueError, KeyError, TypeError, AttributeError):
                pass
        lines.append(json.dumps(entry))
        dropped = len(lines) - MAX_BUFFERED_REPORTS
        if dropped > 0:
            log.warning("Report buffer full — dropping %d oldest entries", dropped)
            lines = lines[dropped:]
        path.parent.mkdir(parents=True, exist_ok=True)
        _write_lines(path, lines)
        log.info("Buffered report for later upload (%s)", payload.get("kind"))
    except OSError as e:
        log.warning("Failed to buffer report: %s", e)


def has_buffered_requests(settings):
    try:
        path = settings.buffer_file
        return path.exists() and path.stat().st_size > 0
    except OSError:
        return False


def flush_buffer(settings):
    """
    Replay buffered uploads in order. Returns (flushed, remaining).
    Stops at the first transient failure; that entry and everything after it
    stay buffered. Rejected and corrupt entries are dropped.
    """
    if not has_buffered_requests(settings):
        return 0, 0

    path = settings.buffer_file
    try:
        lines = _read_lines(path)
    except OSError:
        return 0, 0

    flushed = 0
    remaining = []
    for i, line in enumerate(lines):
        try:
            entry = json.loads(line)
            resp = http_client.http.post(entry["url"], json=entry["payload"],
                                         headers=_headers(settings), timeout=API_TIMEOUT_REPORT)
        except (ValueError, KeyError, TypeError):
            log.warning("Dropping corrupt buffered report line")
            continue
        except requests.RequestException as e:
            log.warning("Buffered report replay stopped: %s", e)
            remaining = lines[i:]
            break

        if resp.status_code in _OK:
            flushed += 1
        elif _retryable(resp.status_code):
            remaining = lines[i:]
            break
        else:
            log.warning("Dropping buffered report rejected with HTTP %d", resp.status_code)

    try:
        _write_lines(path, remaining)
    except OSError as e:
        log.warning("Could not rewrite report buffer: %s", e)

    if flushed:
        log.info("Flushed %d buffered reports (%d still pending)", flushed, len(remaining))
    return flushed, len(remaining)

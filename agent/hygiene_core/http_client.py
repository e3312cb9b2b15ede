"""
HTTP session with connection pooling, automatic retry, and a CA bundle that
survives PyInstaller builds.
"""

import os

import certifi
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .constants import AGENT_VERSION, FOLDER_NAME

_retry_strategy = Retry(
    total=3,
    backoff_factor=2,                           # Wait 2s, 4s, 8s between retries
    status_forcelist=[502, 503, 504],
    allowed_methods=["HEAD", "GET", "POST"],
)


def _get_ca_bundle():
    """Get the CA bundle path.

    Priority: ProgramData copy → env var → certifi.
    """
    permanent = os.path.join(
        os.environ.get("PROGRAMDATA", "C:\\ProgramData"), FOLDER_NAME, "cacert.pem",
    )
    if os.path.isfile(permanent):
        return permanent
    env_ca = os.environ.get('REQUESTS_CA_BUNDLE') or os.environ.get('SSL_CERT_FILE')
    if env_ca and os.path.isfile(env_ca):
        return env_ca
    return certifi.where()


def create_session():
    """Session for report uploads: one pooled host, retries, our CA bundle, our User-Agent."""
    session = requests.Session()
    # Reports go to a single fleet endpoint, one at a time
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=1, max_retries=_retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.verify = _get_ca_bundle()
    session.headers["User-Agent"] = f"fleet-hygiene/{AGENT_VERSION}"
    return session


def reset_session(session):
    """Close and recreate the HTTP session (fixes stale connections)."""
    try:
        session.close()
    except Exception:
        pass
    return create_session()


# Global shared session
http = create_session()

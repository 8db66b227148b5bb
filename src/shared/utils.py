# src/shared/utils.py

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import requests

from src.completer import config

REDACTED = "[REDACTED]"

# Form fields, headers and request attributes whose whole value is secret.
SENSITIVE_KEYS = frozenset({
    "_csrftoken",
    "_token",
    config.CSRF_COOKIE_NAME.lower(),
    "cookie",
    "cookies",
    "set-cookie",
    "x-csrf-token",
    "session_cookie",
    "vle_session_cookie",
})

_CREDENTIAL_IN_TEXT = re.compile(
    r"\b(_csrfToken|csrfToken|_token|CAKEPHP|VLE_SESSION_COOKIE)=[^;&\s]+",
    re.IGNORECASE,
)


def mask_token(token: Optional[str], visible: int = 20) -> str:
    """Return the first ``visible`` characters of a token followed by an ellipsis."""
    if not token:
        return "<none>"
    if len(token) <= visible:
        return token[: max(1, visible // 4)] + "..."
    return token[:visible] + "..."


def parse_cookie_header(raw: str) -> Dict[str, str]:
    """Split a browser ``Cookie`` header ("a=1; b=2") into a name -> value map.

    Values keep everything after the first '=' so base64 padding survives.
    Fragments without '=' are ignored.
    """
    cookies: Dict[str, str] = {}
    if not raw:
        return cookies
    for fragment in raw.split(";"):
        fragment = fragment.strip()
        if not fragment or "=" not in fragment:
            continue
        name, value = fragment.split("=", 1)
        name = name.strip()
        if name:
            cookies[name] = value.strip()
    return cookies


def build_session(cookie_header: str = "", base_url: str = config.BASE_URL) -> requests.Session:
    """Create a requests session carrying the operator-supplied cookies."""
    session = requests.Session()
    session.headers.update(config.BROWSER_HEADER)
    domain = urlparse(base_url).hostname or ""
    cookies = parse_cookie_header(cookie_header)
    for name, value in cookies.items():
        session.cookies.set(name, value, domain=domain, path="/")
    if cookies:
        logging.info(f"🍪 Session prepared with {len(cookies)} cookie(s) for {domain}")
    else:
        logging.warning("⚠️ No session cookies supplied; requests will be unauthenticated.")
    return session


def _redact_text(text: str) -> str:
    return _CREDENTIAL_IN_TEXT.sub(lambda m: f"{m.group(1)}={REDACTED}", text)


def sanitize_event(event: Any, hint: Any = None) -> Any:
    """Scrub CSRF tokens and session cookies from a Sentry event before sending.

    Form fields and headers are redacted by key (``_csrfToken``, ``Cookie``,
    the request cookie map). ``name=value`` credentials inside messages,
    breadcrumbs and url-encoded bodies keep their name and lose the value.
    """

    def sanitize(value):
        if isinstance(value, dict):
            for key, val in list(value.items()):
                if str(key).lower() in SENSITIVE_KEYS:
                    value[key] = REDACTED
                elif isinstance(val, str):
                    value[key] = _redact_text(val)
                else:
                    sanitize(val)
        elif isinstance(value, list):
            for idx, item in enumerate(value):
                if isinstance(item, str):
                    value[idx] = _redact_text(item)
                else:
                    sanitize(item)

    sanitize(event)
    return event

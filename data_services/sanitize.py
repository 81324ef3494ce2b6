"""
Redaction helpers applied to anything leaving the core: telemetry meta,
execution error messages, API error bodies.
"""

import hashlib
import re
from typing import Any, Dict, Iterable, Optional

MAX_STRING_LENGTH = 500
MAX_LIST_ITEMS = 50
MAX_DEPTH = 5
REDACTED = "[redacted]"
URL_REDACTED = "[url redacted]"
ELLIPSIS = "…"

# Compared after lower-casing and stripping "_" / "-"
SECRET_KEY_NAMES = {
    "apikey",
    "secret",
    "clientsecret",
    "password",
    "passwd",
    "token",
    "accesstoken",
    "refreshtoken",
    "authorization",
    "auth",
    "cookie",
    "privatekey",
    "configjson",
    "webhook",
    "webhookurl",
    "credentials",
}
SECRET_KEY_FRAGMENTS = ("password", "secret", "token", "webhook", "apikey")

URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
BEARER_PATTERN = re.compile(r"\bBearer\s+[^\s\"']+", re.IGNORECASE)
API_KEY_PATTERN = re.compile(r"\b(?:sk|pk|rk)[-_][A-Za-z0-9_\-]+")
ASSIGNMENT_PATTERN = re.compile(
    r"\b(api[_-]?key|token|secret|password)\s*[=:]\s*[^\s,;\"']+", re.IGNORECASE
)


def _is_secret_key(key: str) -> bool:
    normalized = re.sub(r"[_\-]", "", key.lower())
    if normalized in SECRET_KEY_NAMES:
        return True
    return any(fragment in normalized for fragment in SECRET_KEY_FRAGMENTS)


def _truncate(value: str, limit: int = MAX_STRING_LENGTH) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + ELLIPSIS


def _sanitize_value(value: Any, depth: int) -> Any:
    if isinstance(value, str):
        return _truncate(value)
    if isinstance(value, bool) or isinstance(value, (int, float)):
        return value
    if isinstance(value, dict):
        if depth >= MAX_DEPTH:
            return REDACTED
        return _sanitize_dict(value, depth + 1)
    if isinstance(value, (list, tuple, set)):
        if depth >= MAX_DEPTH:
            return REDACTED
        items = list(value)[:MAX_LIST_ITEMS]
        return [_sanitize_value(item, depth + 1) for item in items if item is not None]
    return _truncate(str(value))


def _sanitize_dict(data: Dict[Any, Any], depth: int) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for raw_key, value in data.items():
        key = str(raw_key)
        if value is None:
            continue
        if _is_secret_key(key):
            out[key] = REDACTED
            continue
        out[key] = _sanitize_value(value, depth)
    return out


def sanitize_meta(meta: Any) -> Optional[Dict[str, Any]]:
    """
    Makes a meta payload safe to log or persist.

    - None stays None
    - primitives are wrapped as {"value": "<str>"}
    - secret-named keys are replaced by "[redacted]" at any depth
    - strings longer than 500 chars are truncated with an ellipsis
    - None values are dropped
    """
    if meta is None:
        return None
    if not isinstance(meta, dict):
        return {"value": _truncate(str(meta))}
    return _sanitize_dict(meta, 0)


def sanitize_error_message(err: Any) -> str:
    """Message-only view of an error with URLs, bearer tokens and key patterns removed."""
    if err is None:
        return "Unknown error"

    if isinstance(err, BaseException):
        message = str(err) or err.__class__.__name__
    else:
        message = str(err)

    message = URL_PATTERN.sub(URL_REDACTED, message)
    message = BEARER_PATTERN.sub(REDACTED, message)
    message = ASSIGNMENT_PATTERN.sub(REDACTED, message)
    message = API_KEY_PATTERN.sub(REDACTED, message)

    message = message.strip() or "Unknown error"
    return message[:MAX_STRING_LENGTH]


def safe_fingerprint(parts: Iterable[Any]) -> str:
    """Deterministic short hash over the non-empty parts, e.g. "fp_3fa9c0d1e2b4a6f8"."""
    kept = [str(p) for p in parts if p is not None and p != ""]
    if not kept:
        return ""
    digest = hashlib.sha256("|".join(kept).encode("utf-8")).hexdigest()
    return f"fp_{digest[:16]}"

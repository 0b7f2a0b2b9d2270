"""Secrets redaction for log output.

Patterns: bearer tokens, MongoDB URIs, password/secret assignments,
bcrypt hashes, email addresses.
"""
import re
from typing import List, Optional, Set, Tuple

# (pattern, replacement_label)
_PATTERNS: List[Tuple[re.Pattern, str]] = [
    # MongoDB URI (may carry credentials)
    (re.compile(r"mongodb(?:\+srv)?://[^\s\"']+"), "[REDACTED_MONGO_URI]"),
    # Bearer header value (admin session ids, cron secrets)
    (re.compile(r"Bearer\s+[A-Za-z0-9_\-\.]+", re.IGNORECASE), "[REDACTED_BEARER]"),
    # bcrypt hash
    (re.compile(r"\$2[aby]?\$\d{2}\$[./A-Za-z0-9]{53}"), "[REDACTED_HASH]"),
    # password=..., secret: ..., cron_secret=...
    (re.compile(r"(?:password|passwd|secret)[\"']?[\s:=]+[\"']?[^\s\"',}]+", re.IGNORECASE), "[REDACTED_SECRET]"),
    # Email (usernames are often addresses)
    (re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+"), "[REDACTED_EMAIL]"),
]

_SENSITIVE_KEYS: Set[str] = {
    "password", "password_hash", "secret",
    "cron_secret", "internal_cron_secret", "mongo_url",
    "authorization", "x-internal-cron-secret",
}


def redact(text: str) -> str:
    """Apply all redaction patterns to text."""
    result = text
    for pattern, replacement in _PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_dict(data: dict, sensitive_keys: Optional[Set[str]] = None) -> dict:
    """Redact values of sensitive keys in a dictionary."""
    if sensitive_keys is None:
        sensitive_keys = _SENSITIVE_KEYS
    result = {}
    for k, v in data.items():
        if k.lower() in sensitive_keys:
            result[k] = "[REDACTED]" if v else v
        elif isinstance(v, dict):
            result[k] = redact_dict(v, sensitive_keys)
        elif isinstance(v, str):
            result[k] = redact(v)
        else:
            result[k] = v
    return result

"""
PII handling for logs and stored visitor rows.

Log payloads are scrubbed on the way out: contact details inside free text are
replaced by short stable hashes (so repeated values can still be correlated),
and values under sensitive keys are reduced to their length.
"""

from __future__ import annotations

import hashlib
import ipaddress
import re
from typing import Any, Dict, List, Tuple

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
# Ten or more characters of digits and separators, starting and ending on a digit.
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{8,}\d")

# Applied in order: emails and IPs must be replaced before phone numbers.
REDACTION_RULES: List[Tuple[str, re.Pattern]] = [
    ("EMAIL", EMAIL_RE),
    ("IP", IPV4_RE),
    ("PHONE", PHONE_RE),
]

SENSITIVE_FIELDS = frozenset(
    {
        "ip",
        "ip_address",
        "client_ip",
        "email",
        "password",
        "authorization",
        "token",
        "service_role_key",
        "description",
        "raw_description",
    }
)
SENSITIVE_SUFFIXES = ("_token", "_key", "_password")
MAX_LOGGED_TEXT = 500


def fingerprint(text: str) -> str:
    return "[HASH:" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:12] + "]"


def anonymize_ip(ip: str) -> str:
    """Drop the host part of an address (city-level analytics only).

    IPv4 keeps three octets (``203.0.113.xxx``), IPv6 keeps the first three
    groups. Anything unparseable is returned as ``unknown``.
    """
    candidate = (ip or "").strip()
    try:
        parsed = ipaddress.ip_address(candidate)
    except ValueError:
        return "unknown"
    if parsed.version == 4:
        return candidate.rsplit(".", 1)[0] + ".xxx"
    groups = parsed.exploded.split(":")[:3]
    return ":".join(groups) + ":xxxx"


def scrub_text(text: str) -> str:
    if not text:
        return text
    for label, pattern in REDACTION_RULES:
        text = pattern.sub(lambda m, label=label: f"[{label}_{fingerprint(m.group(0))}]", text)
    return text


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in SENSITIVE_FIELDS or "password" in lowered or lowered.endswith(SENSITIVE_SUFFIXES)


def scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        scrubbed = scrub_text(value)
        # Long blobs (pasted descriptions, HTML) are logged only as a fingerprint.
        return scrubbed if len(scrubbed) <= MAX_LOGGED_TEXT else fingerprint(scrubbed)
    if isinstance(value, dict):
        return sanitize_log_payload(value)
    if isinstance(value, (list, tuple)):
        return [scrub_value(item) for item in value]
    return value


def _redacted(value: Any) -> Dict[str, Any]:
    return {"redacted": True, "length": len(value) if hasattr(value, "__len__") else None}


def sanitize_log_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``payload`` safe to emit: sensitive keys summarised, text scrubbed."""
    if not isinstance(payload, dict):
        return {}
    return {
        key: value if value is None else _redacted(value) if is_sensitive_key(str(key)) else scrub_value(value)
        for key, value in payload.items()
    }

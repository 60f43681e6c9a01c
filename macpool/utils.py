"""
macpool.utils
-------------
Lightweight helpers for base64, timestamping, canonical JSON serialization
and MAC address canonicalization. Canonical JSON keeps pool signing
deterministic.
"""

from __future__ import annotations
import base64, json, re, time
from typing import Any, Dict, Iterable, Optional

from .constants import ADDRESS_OCTETS

_ADDRESS_RE = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}$")
_ADDRESS_SEARCH_RE = re.compile(r"(?<![0-9A-Fa-f:-])(?:[0-9A-Fa-f]{2}[:-]){5}[0-9A-Fa-f]{2}(?![0-9A-Fa-f:-])")
_PREFIX_RE = re.compile(r"^[0-9A-Fa-f]{2}([:-][0-9A-Fa-f]{2}){0,%d}$" % (ADDRESS_OCTETS - 2))


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")

def b64d(s: str) -> bytes:
    # validate=True rejects stray characters instead of silently skipping them
    return base64.b64decode(s.encode("ascii"), validate=True)

def now_ts() -> str:
    # RFC3339 / ISO 8601 in UTC, second precision
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())

def canonical_json(obj: Dict[str, Any]) -> bytes:
    # Deterministic, minimal JSON for signing
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")

_HTML_ESCAPES = (("&", "\\u0026"), ("<", "\\u003c"), (">", "\\u003e"),
                 ("\u2028", "\\u2028"), ("\u2029", "\\u2029"))

def ordered_json(obj: Dict[str, Any]) -> bytes:
    # insertion order, compact, with &, <, > and U+2028/2029 written as \u escapes
    text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text.encode("utf-8")


# --------- MAC addresses ----------
def is_valid_address(value: str) -> bool:
    return bool(value) and _ADDRESS_RE.match(value.strip()) is not None

def canonical_address(value: str) -> str:
    """Uppercase, colon separated form (AA:BB:CC:DD:EE:FF). Raises ValueError."""
    value = (value or "").strip()
    if not _ADDRESS_RE.match(value):
        raise ValueError(f"invalid MAC address: {value!r}")
    return value.upper().replace("-", ":")

def address_key(value: str) -> str:
    """Comparison key: addresses are compared case-insensitively."""
    return value.strip().upper().replace("-", ":")

def strip_separators(value: str) -> str:
    return value.replace(":", "").replace("-", "")

def format_with_colons(hex_digits: str) -> str:
    return ":".join(hex_digits[i:i + 2] for i in range(0, len(hex_digits), 2))

def find_addresses(text: str) -> list[str]:
    return _ADDRESS_SEARCH_RE.findall(text or "")

def is_valid_prefix(prefix: Optional[str]) -> bool:
    return bool(prefix) and _PREFIX_RE.match(prefix.strip()) is not None

def canonical_prefix(prefix: str) -> str:
    return prefix.strip().upper().replace("-", ":")

def unique_keys(addresses: Iterable[Any]) -> set[str]:
    """Comparison keys for a mix of entry objects and plain strings."""
    return {address_key(getattr(a, "address", a)) for a in addresses}


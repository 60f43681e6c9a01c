"""
macpool.models
--------------
Defines the Pool aggregate and its Entry records.

Key features:
- Stable JSON field names shared with existing pool files
- Deterministic field order for signing (signature field excluded)
- Fail-closed parsing: unknown format versions and broken invariants raise
  MalformedData instead of producing a half-valid pool
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .constants import FORMAT_VERSION, SUPPORTED_FORMAT_VERSIONS, ZERO_TIME
from .errors import MalformedData
from .utils import address_key, canonical_json, is_valid_address, now_ts, ordered_json

# section -> key -> value (dmidecode style). Sections never nest further.
SystemInfo = Dict[str, Union[str, Dict[str, str]]]


def _timestamp(value: Any) -> Optional[str]:
    """Stored timestamp, or None when unset (missing, empty or the zero time)."""
    if not value or value == ZERO_TIME:
        return None
    return value


@dataclass
class Entry:
    address: str                    # canonical AA:BB:CC:DD:EE:FF
    used: bool = False
    used_at: Optional[str] = None   # RFC3339 UTC, set whenever used is True
    used_by: str = ""               # e.g. "host1 on eth0"
    reserved: bool = False          # excluded from allocation, not "used"
    comment: str = ""

    @property
    def key(self) -> str:
        return address_key(self.address)

    @property
    def available(self) -> bool:
        return not self.used and not self.reserved

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"address": self.address, "used": self.used}
        if self.used_at:
            d["used_at"] = self.used_at
        if self.used_by:
            d["used_by"] = self.used_by
        if self.reserved:
            d["reserved"] = True
        if self.comment:
            d["comment"] = self.comment
        return d

    def to_signing_dict(self) -> Dict[str, Any]:
        # field order of the signed layout; used_at is always present there
        d: Dict[str, Any] = {"address": self.address, "used": self.used, "used_at": self.used_at or ZERO_TIME}
        if self.used_by:
            d["used_by"] = self.used_by
        if self.reserved:
            d["reserved"] = True
        if self.comment:
            d["comment"] = self.comment
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        if not isinstance(data, dict):
            raise MalformedData("pool entry is not an object")
        address = data.get("address")
        if not isinstance(address, str) or not is_valid_address(address):
            raise MalformedData(f"pool entry has an invalid address: {address!r}")
        entry = cls(
            address=address,
            used=bool(data.get("used", False)),
            used_at=_timestamp(data.get("used_at")),
            used_by=data.get("used_by") or "",
            reserved=bool(data.get("reserved", False)),
            comment=data.get("comment") or "",
        )
        if entry.used and not entry.used_at:
            raise MalformedData(f"entry {address} is marked used without a used_at timestamp")
        if entry.used and not entry.used_by:
            raise MalformedData(f"entry {address} is marked used without a used_by attribution")
        return entry


@dataclass
class Pool:
    version: int = FORMAT_VERSION
    entries: List[Entry] = field(default_factory=list)
    last_updated: str = field(default_factory=now_ts)
    created_by: str = ""
    signature: str = ""             # hex HMAC over to_signing_bytes()
    vendor_prefix: Optional[str] = None

    @classmethod
    def new(cls, created_by: str, vendor_prefix: Optional[str] = None) -> "Pool":
        return cls(created_by=created_by, vendor_prefix=vendor_prefix or None)

    def touch(self) -> None:
        self.last_updated = now_ts()

    def find(self, address: str) -> Optional[Entry]:
        key = address_key(address)
        return next((e for e in self.entries if e.key == key), None)

    def __contains__(self, address: str) -> bool:
        return self.find(address) is not None

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self, include_sig: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "version": self.version,
            "addresses": [e.to_dict() for e in self.entries],
            "last_updated": self.last_updated,
            "created_by": self.created_by,
        }
        if include_sig and self.signature:
            d["signature"] = self.signature
        if self.vendor_prefix:
            d["mac_vendor_prefix"] = self.vendor_prefix
        return d

    def to_signing_bytes(self) -> bytes:
        """
        Bytes covered by the signature: compact JSON in field order
        (version, addresses, last_updated, created_by, mac_vendor_prefix),
        signature left out, timestamps exactly as stored. Pools written by
        the first generation of tooling are signed over this same layout.
        """
        d: Dict[str, Any] = {
            "version": self.version,
            "addresses": [e.to_signing_dict() for e in self.entries],
            "last_updated": self.last_updated,
            "created_by": self.created_by,
        }
        if self.vendor_prefix:
            d["mac_vendor_prefix"] = self.vendor_prefix
        return ordered_json(d)

    def to_sorted_signing_bytes(self) -> bytes:
        # layout signed by macpool 1.0.0 (sorted keys); accepted on verify only
        return canonical_json(self.to_dict(include_sig=False))

    def to_json_bytes(self) -> bytes:
        return canonical_json(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Pool":
        if not isinstance(data, dict):
            raise MalformedData("pool document is not an object")

        version = data.get("version")
        if isinstance(version, bool) or not isinstance(version, int):
            raise MalformedData(f"pool format version is missing or invalid: {version!r}")
        if version not in SUPPORTED_FORMAT_VERSIONS:
            raise MalformedData(f"unsupported pool format version {version}")

        raw_entries = data.get("addresses") or []
        if not isinstance(raw_entries, list):
            raise MalformedData("pool 'addresses' is not a list")

        entries = [Entry.from_dict(item) for item in raw_entries]
        seen = set()
        for entry in entries:
            if entry.key in seen:
                raise MalformedData(f"duplicate address {entry.address} in pool")
            seen.add(entry.key)

        signature = data.get("signature") or ""
        if not isinstance(signature, str):
            raise MalformedData("pool signature is not a string")

        return cls(
            version=version,
            entries=entries,
            last_updated=data.get("last_updated") or "",
            created_by=data.get("created_by") or "",
            signature=signature,
            vendor_prefix=data.get("mac_vendor_prefix") or None,
        )

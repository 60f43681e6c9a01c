"""
macpool.allocation
------------------
Pure operations over an in-memory Pool: selection, marking, reset,
generation, manual/import additions, removal and statistics. Nothing here
touches the disk; callers persist through a PoolStorage afterwards.

Selection is deterministic (first eligible entry in pool order). Anyone
wanting a random allocation order gets it from generate(), whose suffixes
are random, not from select_available().
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import secrets

from .constants import ADDRESS_DIGITS, GENERATION_ATTEMPT_FACTOR
from .errors import CapacityExceeded, InvalidAddress, InvalidPrefix, PartialGeneration, PoolExhausted
from .models import Entry, Pool
from .utils import (
    address_key,
    canonical_address,
    canonical_prefix,
    find_addresses,
    format_with_colons,
    is_valid_prefix,
    now_ts,
    strip_separators,
    unique_keys,
)


# --------- Allocation ----------
def select_available(pool: Pool) -> Entry:
    for entry in pool.entries:
        if entry.available:
            return entry
    raise PoolExhausted("no available MAC addresses in pool")


def attribution(hostname: str, interfaces: Optional[Sequence[str]] = None) -> str:
    if interfaces:
        return f"{hostname} on {','.join(interfaces)}"
    return hostname


def mark_used(pool: Pool, address: str, used_by: str, when: Optional[str] = None) -> Optional[Entry]:
    """Mark ``address`` used. Returns the entry, or None when it is not in the pool."""
    if not used_by:
        raise ValueError("used_by must name the host that consumed the address")
    entry = pool.find(address)
    if entry is None:
        return None
    entry.used = True
    entry.used_at = when or now_ts()
    entry.used_by = used_by
    pool.touch()
    return entry


def reset(pool: Pool, addresses: Iterable[str]) -> int:
    """Return entries to the unused state. Idempotent; returns how many changed."""
    changed = 0
    for address in addresses:
        entry = pool.find(address)
        if entry is None or not (entry.used or entry.used_at or entry.used_by):
            continue
        entry.used = False
        entry.used_at = None
        entry.used_by = ""
        changed += 1
    if changed:
        pool.touch()
    return changed


def reserve(pool: Pool, addresses: Iterable[str], reserved: bool = True, comment: Optional[str] = None) -> int:
    changed = 0
    for address in addresses:
        entry = pool.find(address)
        if entry is None:
            continue
        entry.reserved = reserved
        if comment is not None:
            entry.comment = comment
        changed += 1
    if changed:
        pool.touch()
    return changed


# --------- Generation ----------
def capacity(prefix: str) -> int:
    return 16 ** (ADDRESS_DIGITS - len(strip_separators(prefix)))


def generate(prefix: str, count: int, existing: Iterable = ()) -> List[Entry]:
    """
    Draw ``count`` random addresses under ``prefix``.

    Collisions with ``existing`` (entries or strings) and with addresses
    drawn earlier in the same call are rejected. The attempt budget is
    ``count * GENERATION_ATTEMPT_FACTOR``; running out of it raises
    PartialGeneration carrying whatever was found.
    """
    if not is_valid_prefix(prefix):
        raise InvalidPrefix(f"invalid vendor prefix format: {prefix!r}")
    if count <= 0:
        raise ValueError(f"count must be positive, got {count}")

    prefix_hex = strip_separators(canonical_prefix(prefix))
    space = capacity(prefix_hex)
    if count > space:
        raise CapacityExceeded(count, space, canonical_prefix(prefix))

    suffix_bytes = (ADDRESS_DIGITS - len(prefix_hex)) // 2
    taken = unique_keys(existing)
    generated: List[Entry] = []
    max_attempts = count * GENERATION_ATTEMPT_FACTOR
    attempts = 0

    while len(generated) < count and attempts < max_attempts:
        attempts += 1
        address = format_with_colons(prefix_hex + secrets.token_bytes(suffix_bytes).hex().upper())
        if address in taken:
            continue
        taken.add(address)
        generated.append(Entry(address=address))

    if len(generated) < count:
        raise PartialGeneration(generated, count, attempts)
    return generated


# --------- Manual / import ----------
def parse_address_text(text: str) -> List[str]:
    """Every MAC address found in ``text``; blank lines and '#' comments are skipped."""
    found: List[str] = []
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        found.extend(find_addresses(line))
    return found


def add_addresses(pool: Pool, addresses: Iterable[str], comment: str = "") -> Tuple[List[Entry], List[str]]:
    """
    Append new unused entries. Returns (added, skipped) where ``skipped``
    lists inputs that were duplicates of the pool or of earlier inputs.
    Any malformed input aborts the whole batch with InvalidAddress.
    """
    candidates = []
    for raw in addresses:
        try:
            candidates.append(canonical_address(raw))
        except ValueError as exc:
            raise InvalidAddress(str(exc)) from None

    taken = unique_keys(pool.entries)
    added: List[Entry] = []
    skipped: List[str] = []
    for address in candidates:
        if address in taken:
            skipped.append(address)
            continue
        taken.add(address)
        added.append(Entry(address=address, comment=comment))

    if added:
        pool.entries.extend(added)
        pool.touch()
    return added, skipped


def extend(pool: Pool, entries: Sequence[Entry]) -> None:
    if entries:
        pool.entries.extend(entries)
        pool.touch()


def remove(pool: Pool, addresses: Iterable[str], include_used: bool = False) -> List[Entry]:
    keys = {address_key(a) for a in addresses}
    removed = [e for e in pool.entries if e.key in keys and (include_used or not e.used)]
    if removed:
        gone = {id(e) for e in removed}
        pool.entries = [e for e in pool.entries if id(e) not in gone]
        pool.touch()
    return removed


def remove_unused(pool: Pool) -> List[Entry]:
    return remove(pool, [e.address for e in pool.entries if e.available])


# --------- Statistics ----------
@dataclass
class PoolStats:
    total: int
    used: int
    unused: int
    reserved: int

    def percent(self, part: int) -> float:
        return 0.0 if self.total == 0 else part / self.total * 100


def pool_stats(pool: Pool) -> PoolStats:
    used = sum(1 for e in pool.entries if e.used)
    reserved = sum(1 for e in pool.entries if not e.used and e.reserved)
    return PoolStats(total=len(pool.entries), used=used, unused=len(pool.entries) - used - reserved, reserved=reserved)


def format_entry(entry: Entry) -> str:
    status = "Unused"
    if entry.used:
        status = f"Used at {entry.used_at}"
        if entry.used_by:
            status += f" by {entry.used_by}"
    if entry.reserved:
        status += " (Reserved)"
    comment = f" - {entry.comment}" if entry.comment else ""
    return f"{entry.address} - {status}{comment}"


_LISTINGS = {
    "all": lambda e: True,
    "used": lambda e: e.used,
    "unused": lambda e: e.available,
}


def stats_report(pool: Pool, pool_file: str, listing: Optional[str] = None, exported_at: Optional[str] = None) -> str:
    if listing is not None and listing not in _LISTINGS:
        raise ValueError(f"unknown listing {listing!r}; expected one of {sorted(_LISTINGS)}")
    stats = pool_stats(pool)
    lines = [
        "MAC Address Pool Statistics",
        "==========================",
        "",
        f"Export date: {exported_at or now_ts()}",
        f"Pool file: {pool_file}",
        f"Created by: {pool.created_by}",
        f"Last updated: {pool.last_updated}",
        "",
        "Summary:",
        f"Total MAC addresses: {stats.total}",
        f"Used: {stats.used} ({stats.percent(stats.used):.1f}%)",
        f"Unused: {stats.unused} ({stats.percent(stats.unused):.1f}%)",
        f"Reserved: {stats.reserved} ({stats.percent(stats.reserved):.1f}%)",
        "",
    ]
    if pool.vendor_prefix:
        lines += [f"Vendor prefix: {pool.vendor_prefix}", ""]
    if listing:
        keep = _LISTINGS[listing]
        lines += ["MAC Address List:", "----------------", ""]
        lines += [f"{i}. {format_entry(e)}" for i, e in enumerate(pool.entries, 1) if keep(e)]
    return "\n".join(lines) + "\n"

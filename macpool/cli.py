"""
Command surfaces.

``macpool``        pool maintenance (create, add, generate, import, remove, ...)
``macpool-flash``  provisioning run on the target machine (root only)

Both are thin: argument parsing, passphrase prompts and printing. All
behaviour lives in the library modules.
"""
from __future__ import annotations

import argparse
import getpass
import os
import socket
import sys
from typing import Callable, List, Optional

from macpool import allocation
from macpool.config import PoolSettings, ProvisioningSettings
from macpool.constants import MAX_GENERATE_COUNT, MIN_PASSPHRASE_LENGTH
from macpool.errors import MacPoolError, PartialGeneration, PoolNotFound, PrivilegeError
from macpool.logger import get_logger
from macpool.oplog import OperationLog
from macpool.provisioning import ProvisioningOrchestrator, ProvisioningSession
from macpool.provisioning.commands import SubprocessRunner
from macpool.provisioning.driver import KernelDriverManager, LsmodInspector, RtnicpgTool
from macpool.provisioning.network import IpRouteNetworkManager
from macpool.provisioning.ports import CommandRunner
from macpool.provisioning.sysinfo import DmidecodeSystemInfo
from macpool.storage import PoolStorage, load_storage_provider
from macpool.utils import canonical_prefix, is_valid_prefix, now_ts

log = get_logger("MacPool.CLI")

PromptFn = Callable[[str], str]


class CliError(MacPoolError):
    pass


def _prompt_passphrase(prompt: PromptFn, label: str = "Enter encryption password") -> str:
    value = prompt(f"{label}: ")
    if not value:
        raise CliError("A password is required")
    return value


def _prompt_new_passphrase(prompt: PromptFn, label: str = "Set encryption password") -> str:
    value = prompt(f"{label}: ")
    confirm = prompt("Confirm password: ")
    if value != confirm:
        raise CliError("Passwords do not match")
    if len(value) < MIN_PASSPHRASE_LENGTH:
        raise CliError(f"Password must be at least {MIN_PASSPHRASE_LENGTH} characters long")
    return value


def creator_identity() -> str:
    user = os.getenv("USER") or os.getenv("LOGNAME") or "unknown"
    return f"{user}@{socket.gethostname()}"


# =========================
# macpool (maintenance)
# =========================
def _build_manage_parser(settings: PoolSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="macpool", description="Encrypted MAC address pool manager")
    parser.add_argument("-f", "--file", default=settings.pool_file, help="Path to MAC address pool file")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("create", help="Create a new, empty pool")
    p.add_argument("--vendor-prefix", help="Vendor prefix for generated addresses (e.g. 00:E0:4C)")
    p.add_argument("--force", action="store_true", help="Overwrite an existing pool file")

    sub.add_parser("info", help="Show pool metadata and counts")

    p = sub.add_parser("list", help="List addresses")
    p.add_argument("--filter", choices=("all", "used", "unused"), default="all")

    p = sub.add_parser("add", help="Add addresses given on the command line")
    p.add_argument("addresses", nargs="+")
    p.add_argument("--comment", default="")

    p = sub.add_parser("generate", help="Generate random addresses under the vendor prefix")
    p.add_argument("count", type=int)
    p.add_argument("--prefix", help="Vendor prefix; defaults to the pool's own")

    p = sub.add_parser("import", help="Import every address found in a text file")
    p.add_argument("source")

    p = sub.add_parser("remove", help="Remove addresses")
    p.add_argument("addresses", nargs="*")
    p.add_argument("--all-unused", action="store_true", help="Remove every unused, unreserved address")
    p.add_argument("--include-used", action="store_true", help="Also remove addresses already used")

    p = sub.add_parser("reset", help="Mark used addresses as unused again")
    p.add_argument("addresses", nargs="*")
    p.add_argument("--all", action="store_true")

    p = sub.add_parser("reserve", help="Reserve (or release) addresses")
    p.add_argument("addresses", nargs="+")
    p.add_argument("--release", action="store_true")
    p.add_argument("--comment")

    sub.add_parser("passwd", help="Re-encrypt the pool under a new password")

    p = sub.add_parser("stats", help="Export pool statistics to a text file")
    p.add_argument("--listing", choices=("all", "used", "unused"))
    p.add_argument("--output", help="Report path (default: next to the pool file)")
    return parser


def _mutate(storage: PoolStorage, path: str, passphrase: str, fn) -> None:
    with storage.lock(path):
        pool = storage.load(path, passphrase)
        if fn(pool):
            storage.save(pool, passphrase, path)


def _run_manage(args, storage: PoolStorage, prompt: PromptFn) -> None:
    path = args.file

    if args.cmd == "create":
        prefix = args.vendor_prefix
        if prefix is not None:
            if not is_valid_prefix(prefix):
                raise CliError(f"Invalid vendor prefix: {prefix}")
            prefix = canonical_prefix(prefix)
        if storage.exists(path) and not args.force:
            raise CliError(f"MAC pool file {path} already exists (use --force to overwrite)")
        passphrase = _prompt_new_passphrase(prompt)
        storage.create(path, passphrase, creator_identity(), prefix, overwrite=args.force)
        print(f"MAC address pool created: {path}")
        return

    if args.cmd == "passwd":
        old = _prompt_passphrase(prompt, "Current password")
        storage.load(path, old)
        new = _prompt_new_passphrase(prompt, "New password")
        storage.change_passphrase(path, old, new)
        print("Password changed successfully")
        return

    passphrase = _prompt_passphrase(prompt)

    if args.cmd == "info":
        pool = storage.load(path, passphrase)
        stats = allocation.pool_stats(pool)
        print(f"Pool file:     {path}")
        print(f"Format:        v{pool.version}")
        print(f"Created by:    {pool.created_by}")
        print(f"Last updated:  {pool.last_updated}")
        print(f"Signed:        {'yes' if pool.signature else 'no (legacy pool)'}")
        if pool.vendor_prefix:
            print(f"Vendor prefix: {pool.vendor_prefix}")
        print(f"Total: {stats.total}  Used: {stats.used} ({stats.percent(stats.used):.1f}%)  "
              f"Unused: {stats.unused}  Reserved: {stats.reserved}")
        return

    if args.cmd == "list":
        pool = storage.load(path, passphrase)
        keep = {"all": lambda e: True, "used": lambda e: e.used, "unused": lambda e: e.available}[args.filter]
        for i, entry in enumerate(pool.entries, 1):
            if keep(entry):
                print(f"{i}. {allocation.format_entry(entry)}")
        return

    if args.cmd == "stats":
        pool = storage.load(path, passphrase)
        stamp = now_ts().replace(":", "").replace("-", "")
        output = args.output or os.path.join(os.path.dirname(os.path.abspath(path)), f"mac_pool_stats_{stamp}.txt")
        with open(output, "w", encoding="utf-8") as f:
            f.write(allocation.stats_report(pool, path, args.listing))
        print(f"Statistics exported to {output}")
        return

    if args.cmd in ("add", "import"):
        if args.cmd == "add":
            addresses, comment = args.addresses, args.comment
        else:
            with open(args.source, encoding="utf-8") as f:
                addresses, comment = allocation.parse_address_text(f.read()), ""

        def apply(pool):
            added, skipped = allocation.add_addresses(pool, addresses, comment=comment)
            for address in skipped:
                print(f"MAC {address} already exists in pool (skipped)")
            print(f"Adding {len(added)} MAC addresses to pool")
            return bool(added)
        _mutate(storage, path, passphrase, apply)
        return

    if args.cmd == "generate":
        if not 0 < args.count <= MAX_GENERATE_COUNT:
            raise CliError(f"count must be between 1 and {MAX_GENERATE_COUNT}")

        def apply(pool):
            prefix = args.prefix or pool.vendor_prefix
            if not prefix:
                raise CliError("The pool has no vendor prefix; pass --prefix")
            try:
                entries = allocation.generate(prefix, args.count, pool.entries)
            except PartialGeneration as exc:
                print(f"Warning: {exc}")
                entries = exc.generated
            allocation.extend(pool, entries)
            print(f"Generated {len(entries)} MAC addresses")
            return bool(entries)
        _mutate(storage, path, passphrase, apply)
        return

    if args.cmd == "remove":
        def apply(pool):
            if args.all_unused:
                removed = allocation.remove_unused(pool)
            else:
                removed = allocation.remove(pool, args.addresses, include_used=args.include_used)
            print(f"Removed {len(removed)} MAC addresses")
            return bool(removed)
        _mutate(storage, path, passphrase, apply)
        return

    if args.cmd == "reset":
        def apply(pool):
            targets = [e.address for e in pool.entries if e.used] if args.all else args.addresses
            count = allocation.reset(pool, targets)
            print(f"Reset {count} MAC addresses")
            return count > 0
        _mutate(storage, path, passphrase, apply)
        return

    if args.cmd == "reserve":
        def apply(pool):
            count = allocation.reserve(pool, args.addresses, reserved=not args.release, comment=args.comment)
            print(f"Updated {count} MAC addresses")
            return count > 0
        _mutate(storage, path, passphrase, apply)
        return


def manage_main(argv: Optional[List[str]] = None, prompt: PromptFn = getpass.getpass,
                storage: Optional[PoolStorage] = None) -> int:
    try:
        settings = PoolSettings.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    args = _build_manage_parser(settings).parse_args(argv)
    try:
        storage = storage or load_storage_provider(settings.storage_config())
        _run_manage(args, storage, prompt)
    except (MacPoolError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


# =========================
# macpool-flash (provisioning)
# =========================
def require_root() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError("Please run this program with root privileges")


def build_session(settings: ProvisioningSettings, pool_settings: PoolSettings,
                  runner: Optional[CommandRunner] = None, log_to_file: bool = True) -> ProvisioningSession:
    runner = runner or SubprocessRunner()
    orchestrator = ProvisioningOrchestrator(
        driver=KernelDriverManager(runner, LsmodInspector(runner), settings),
        tool=RtnicpgTool(runner, settings.driver_dir),
        network=IpRouteNetworkManager(),
        settings=settings,
    )
    oplog = OperationLog(log_dir=pool_settings.log_dir if log_to_file else None, url=pool_settings.log_url)
    return ProvisioningSession(
        storage=load_storage_provider(pool_settings.storage_config()),
        orchestrator=orchestrator,
        sysinfo=DmidecodeSystemInfo(runner),
        oplog=oplog,
    )


def flash_main(argv: Optional[List[str]] = None, prompt: PromptFn = getpass.getpass) -> int:
    try:
        pool_settings = PoolSettings.from_env()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    parser = argparse.ArgumentParser(prog="macpool-flash", description="Flash the next pool MAC address into this machine")
    parser.add_argument("--pool", default=pool_settings.pool_file, help="Path to encrypted MAC address pool file")
    parser.add_argument("--no-reboot", action="store_true", help="Do not offer a reboot after flashing")
    parser.add_argument("--log", action=argparse.BooleanOptionalAction, default=True, help="Save log to file")
    parser.add_argument("--log-url", default=pool_settings.log_url, help="HTTP endpoint to POST the log to")
    parser.add_argument("--driver-dir", help="Directory holding the rtnicpg sources and utility")
    args = parser.parse_args(argv)

    pool_settings.log_url = args.log_url
    try:
        require_root()
        settings = ProvisioningSettings.from_env()
        if args.driver_dir:
            settings.driver_dir = args.driver_dir
        session = build_session(settings, pool_settings, log_to_file=args.log)
        if not session.storage.exists(args.pool):
            raise PoolNotFound(args.pool)
        outcome = session.run(args.pool, _prompt_passphrase(prompt))
    except (MacPoolError, OSError, ValueError) as exc:
        log.error(str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    for warning in outcome.result.warnings:
        print(f"Warning: {warning}")
    if outcome.result.satisfied:
        print("No reflash required - system already has the correct MAC address")
    else:
        print(f"MAC address {outcome.entry.address} updated successfully")

    if not args.no_reboot:
        choice = input("Reboot system now? (Y/n): ").strip()
        if choice.lower() != "n":
            print("Rebooting system...")
            SubprocessRunner().run(["reboot"])
        else:
            print("Exiting without reboot.")
    return 0

"""Interface discovery and reconfiguration over netlink (pyroute2)."""
from __future__ import annotations

import errno
from typing import Any, Callable, List, Optional, Tuple

from pyroute2 import IPRoute
from pyroute2.netlink.exceptions import NetlinkError

from macpool.errors import CommandExecutionError
from macpool.logger import get_logger
from macpool.provisioning.ports import ActiveInterface, NetworkManager
from macpool.utils import address_key

log = get_logger("MacPool.Network")

AF_INET = 2
IFF_UP = 0x1


def nla(msg: Any, name: str) -> Any:
    """First value of netlink attribute ``name`` in a pyroute2 message."""
    for attr, value in msg["attrs"]:
        if attr == name:
            return value
    return None


def link_macs(links: List[Any]) -> List[Tuple[str, str]]:
    """(name, MAC) for every link that carries a hardware address."""
    found = []
    for link in links:
        name = nla(link, "IFLA_IFNAME")
        mac = nla(link, "IFLA_ADDRESS")
        if name and mac:
            found.append((name, mac))
    return found


def ipv4_cidr(msg: Any) -> Optional[str]:
    local = nla(msg, "IFA_LOCAL") or nla(msg, "IFA_ADDRESS")
    if not local:
        return None
    return f"{local}/{msg['prefixlen']}"


class IpRouteNetworkManager(NetworkManager):
    """
    NetworkManager on a pyroute2 ``IPRoute`` socket. One socket per call;
    ``ipr_factory`` is swapped in tests.

    Netlink failures of the mutating calls surface as CommandExecutionError,
    carrying a readable description of the operation and the netlink errno.
    """

    def __init__(self, ipr_factory: Callable[[], Any] = IPRoute):
        self.ipr_factory = ipr_factory

    def _index(self, ipr: Any, interface: str) -> int:
        found = ipr.link_lookup(ifname=interface)
        if not found:
            raise CommandExecutionError(["link", "lookup", interface], f"interface {interface} not found",
                                        errno.ENODEV)
        return found[0]

    def _change(self, operation: List[str], interface: str, apply: Callable[[Any, int], None]) -> None:
        try:
            with self.ipr_factory() as ipr:
                apply(ipr, self._index(ipr, interface))
        except NetlinkError as exc:
            raise CommandExecutionError(operation, str(exc), exc.code) from exc
        except OSError as exc:
            raise CommandExecutionError(operation, str(exc), exc.errno or 1) from exc

    # --- queries ---

    def interfaces_with_mac(self, address: str) -> List[str]:
        try:
            with self.ipr_factory() as ipr:
                links = ipr.get_links()
        except (NetlinkError, OSError) as exc:
            log.warning(f"Failed to list links: {exc}")
            return []
        key = address_key(address)
        return [name for name, mac in link_macs(links) if address_key(mac) == key]

    def active_interface(self) -> Optional[ActiveInterface]:
        try:
            with self.ipr_factory() as ipr:
                links = ipr.get_links()
                addrs = ipr.get_addr(family=AF_INET)
        except (NetlinkError, OSError) as exc:
            log.warning(f"Failed to list addresses: {exc}")
            return None
        up = {link["index"]: nla(link, "IFLA_IFNAME") for link in links if link["flags"] & IFF_UP}
        for msg in addrs:
            name = up.get(msg["index"])
            cidr = ipv4_cidr(msg)
            if name and name != "lo" and cidr:
                return ActiveInterface(name=name, ip=cidr)
        return None

    def has_ip(self, interface: str, ip: str) -> bool:
        try:
            with self.ipr_factory() as ipr:
                addrs = ipr.get_addr(index=self._index(ipr, interface), family=AF_INET)
        except (CommandExecutionError, NetlinkError, OSError):
            return False
        return any(ipv4_cidr(msg) == ip for msg in addrs)

    # --- changes ---

    def link_down(self, interface: str) -> None:
        self._change(["link", "set", interface, "down"], interface,
                     lambda ipr, idx: ipr.link("set", index=idx, state="down"))

    def flush(self, interface: str) -> None:
        self._change(["addr", "flush", interface], interface,
                     lambda ipr, idx: ipr.flush_addr(index=idx))

    def set_address(self, interface: str, address: str) -> None:
        self._change(["link", "set", interface, "address", address.lower()], interface,
                     lambda ipr, idx: ipr.link("set", index=idx, address=address.lower()))

    def link_up(self, interface: str) -> None:
        self._change(["link", "set", interface, "up"], interface,
                     lambda ipr, idx: ipr.link("set", index=idx, state="up"))

    def add_ip(self, interface: str, ip: str) -> None:
        local, _, prefix = ip.partition("/")
        self._change(["addr", "add", ip, "dev", interface], interface,
                     lambda ipr, idx: ipr.addr("add", index=idx, address=local, prefixlen=int(prefix or 32)))

"""
In-memory stand-ins for every provisioning port.

They keep just enough state to behave like a machine with one NIC: the
programming tool burns the address into the fake network, the network
remembers links and IPs, and every call is recorded for assertions.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Set, Tuple

from macpool.errors import CommandExecutionError, DriverLoadFailure, HardwareWriteError
from macpool.provisioning.ports import (
    ActiveInterface,
    CommandResult,
    CommandRunner,
    DriverManager,
    ModuleInspector,
    NetworkManager,
    ProgrammingTool,
    SystemInfo,
    SystemInfoProvider,
)
from macpool.utils import address_key, format_with_colons


class FakeCommandRunner(CommandRunner):
    """Replies from a table keyed by the command tuple; unknown commands succeed."""

    def __init__(self, responses: Optional[Dict[Tuple[str, ...], CommandResult]] = None):
        self.responses = dict(responses or {})
        self.calls: List[List[str]] = []

    def reply(self, command: Sequence[str], stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.responses[tuple(command)] = CommandResult(stdout=stdout, stderr=stderr, returncode=returncode,
                                                       command=list(command))

    def run(self, command: Sequence[str], check: bool = False, cwd: Optional[str] = None) -> CommandResult:
        self.calls.append([str(c) for c in command])
        result = self.responses.get(tuple(command)) or CommandResult("", "", 0, list(command))
        if check and not result.ok:
            raise CommandExecutionError(command, result.output, result.returncode)
        return result


class FakeModuleInspector(ModuleInspector):
    def __init__(self, loaded: Optional[Set[str]] = None):
        self.loaded = set(loaded or ())

    def is_loaded(self, module: str) -> bool:
        return module in self.loaded


class FakeDriverManager(DriverManager):
    def __init__(self, load_failures: int = 0, recompile_fails: bool = False):
        self.load_failures = load_failures
        self.recompile_fails = recompile_fails
        self.loads = 0
        self.recompiles = 0
        self.releases = 0

    def load(self) -> None:
        self.loads += 1
        if self.load_failures > 0:
            self.load_failures -= 1
            raise DriverLoadFailure("fake driver refused to load")

    def recompile(self) -> None:
        self.recompiles += 1
        if self.recompile_fails:
            raise DriverLoadFailure("fake compilation failed")

    def release(self) -> List[str]:
        self.releases += 1
        return []


class FakeNetworkManager(NetworkManager):
    def __init__(self, links: Optional[Dict[str, str]] = None, ips: Optional[Dict[str, List[str]]] = None,
                 add_ip_failures: int = 0, keep_ip_on_failure: bool = False):
        self.links = dict(links if links is not None else {"eth0": "00:11:22:33:44:55"})
        self.ips = {k: list(v) for k, v in (ips or {}).items()}
        self.up: Set[str] = set(self.ips)
        self.add_ip_failures = add_ip_failures
        self.keep_ip_on_failure = keep_ip_on_failure
        self.calls: List[Tuple[str, ...]] = []

    def burn(self, address: str, interface: Optional[str] = None) -> None:
        name = interface or next(iter(self.links), "eth0")
        self.links[name] = address

    def interfaces_with_mac(self, address: str) -> List[str]:
        key = address_key(address)
        return [name for name, mac in self.links.items() if address_key(mac) == key]

    def active_interface(self) -> Optional[ActiveInterface]:
        for name, ips in self.ips.items():
            if name != "lo" and name in self.up and ips:
                return ActiveInterface(name=name, ip=ips[0])
        return None

    def link_down(self, interface: str) -> None:
        self.calls.append(("down", interface))
        self.up.discard(interface)

    def flush(self, interface: str) -> None:
        self.calls.append(("flush", interface))
        self.ips[interface] = []

    def set_address(self, interface: str, address: str) -> None:
        self.calls.append(("set_address", interface, address))
        self.links[interface] = address

    def link_up(self, interface: str) -> None:
        self.calls.append(("up", interface))
        self.up.add(interface)

    def add_ip(self, interface: str, ip: str) -> None:
        self.calls.append(("add_ip", interface, ip))
        if self.add_ip_failures > 0:
            self.add_ip_failures -= 1
            if self.keep_ip_on_failure:
                self.ips.setdefault(interface, []).append(ip)
            raise CommandExecutionError(["ip", "addr", "add", ip, "dev", interface], "RTNETLINK answers: error", 2)
        self.ips.setdefault(interface, []).append(ip)

    def has_ip(self, interface: str, ip: str) -> bool:
        return ip in self.ips.get(interface, [])


class FakeProgrammingTool(ProgrammingTool):
    """Fails ``failures`` times (or forever), then burns into ``network``."""

    def __init__(self, network: Optional[FakeNetworkManager] = None, failures: int = 0,
                 always_fail: bool = False, burns: bool = True):
        self.network = network
        self.failures = failures
        self.always_fail = always_fail
        self.burns = burns
        self.writes: List[str] = []

    def write(self, address_hex: str) -> None:
        self.writes.append(address_hex)
        if self.always_fail or self.failures > 0:
            self.failures -= 1
            raise HardwareWriteError(f"fake write of {address_hex} failed")
        if self.network is not None and self.burns:
            self.network.burn(format_with_colons(address_hex))


class FakeSystemInfo(SystemInfoProvider):
    def __init__(self, product: str = "Test Board", hostname: str = "testhost"):
        self.product = product
        self.hostname = hostname

    def product_name(self) -> str:
        return self.product

    def system_info(self) -> SystemInfo:
        return {"Handle 0x0001, DMI type 1, 27 bytes": {"Product Name": self.product}}

    def host_info(self) -> Dict[str, str]:
        return {"hostname": self.hostname, "kernel": "test", "arch": "x86_64", "uptime": "up 1 min"}

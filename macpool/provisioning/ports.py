from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from macpool.models import SystemInfo


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    returncode: int
    command: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(p for p in (self.stdout, self.stderr) if p)

    def to_tuple(self) -> Tuple[str, Optional[str]]:
        """(output, error) pair; error is None on success."""
        error = None if self.ok else (self.stderr or f"exit status {self.returncode}")
        return self.stdout, error


@dataclass
class ActiveInterface:
    name: str
    ip: str             # CIDR form, e.g. 192.168.1.20/24


class CommandRunner:
    """
    Command-execution port. Commands are opaque synchronous calls: no
    timeout wraps them, a hung tool hangs the caller.
    """

    def run(self, command: Sequence[str], check: bool = False, cwd: Optional[str] = None) -> CommandResult:
        raise NotImplementedError


class ModuleInspector:
    def is_loaded(self, module: str) -> bool:
        raise NotImplementedError


class DriverManager:
    """
    Kernel driver needed by the programming utility.

    load()       ensure the programming driver is present (raises DriverLoadFailure)
    recompile()  rebuild it from source (raises DriverLoadFailure)
    release()    unload it and bring back the vendor driver it displaced
    """

    def load(self) -> None:
        raise NotImplementedError

    def recompile(self) -> None:
        raise NotImplementedError

    def release(self) -> List[str]:
        """Returns warnings; never raises."""
        raise NotImplementedError


class ProgrammingTool:
    def write(self, address_hex: str) -> None:
        """Burn ``address_hex`` (no separators). Raises HardwareWriteError."""
        raise NotImplementedError


class NetworkManager:
    def interfaces_with_mac(self, address: str) -> List[str]:
        raise NotImplementedError

    def active_interface(self) -> Optional[ActiveInterface]:
        """First non-loopback interface that is UP and has an IPv4 address."""
        raise NotImplementedError

    # each of these raises CommandExecutionError on failure
    def link_down(self, interface: str) -> None:
        raise NotImplementedError

    def flush(self, interface: str) -> None:
        raise NotImplementedError

    def set_address(self, interface: str, address: str) -> None:
        raise NotImplementedError

    def link_up(self, interface: str) -> None:
        raise NotImplementedError

    def add_ip(self, interface: str, ip: str) -> None:
        raise NotImplementedError

    def has_ip(self, interface: str, ip: str) -> bool:
        raise NotImplementedError


class SystemInfoProvider:
    def product_name(self) -> str:
        raise NotImplementedError

    def system_info(self) -> SystemInfo:
        raise NotImplementedError

    def host_info(self) -> Dict[str, str]:
        raise NotImplementedError

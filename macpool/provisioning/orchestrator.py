"""
macpool.provisioning.orchestrator
---------------------------------
State machine that programs one MAC address into the local NIC.

    CHECK_EXISTING -> SATISFIED                       (address already live, no write)
    CHECK_EXISTING -> NEEDS_WRITE -> DRIVER_LOAD
        -> WRITE_ATTEMPT (1..max) -> WRITTEN | EXHAUSTED
        -> VERIFY_INTERFACE -> RESTORE_NETWORK (1..max) -> DONE

DriverLoadFailure, HardwareWriteExhausted and InterfaceNotFound are fatal
and abort the run; each carries the partial ProvisioningResult. A failed
network restore only adds a warning, since the write itself succeeded.
All hardware access goes through the ports, so the machine runs the same
against fakes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional
import socket, time

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from macpool.config import ProvisioningSettings
from macpool.errors import (
    CommandExecutionError,
    DriverLoadFailure,
    HardwareWriteError,
    HardwareWriteExhausted,
    InterfaceNotFound,
    InvalidAddress,
    NetworkRestoreFailure,
)
from macpool.logger import get_logger
from macpool.provisioning.ports import ActiveInterface, DriverManager, NetworkManager, ProgrammingTool
from macpool.utils import canonical_address, strip_separators

log = get_logger("MacPool.Provisioning")


class ProvisioningState(str, Enum):
    CHECK_EXISTING = "check_existing"
    SATISFIED = "satisfied"
    NEEDS_WRITE = "needs_write"
    DRIVER_LOAD = "driver_load"
    WRITE_ATTEMPT = "write_attempt"
    WRITTEN = "written"
    EXHAUSTED = "exhausted"
    VERIFY_INTERFACE = "verify_interface"
    RESTORE_NETWORK = "restore_network"
    DONE = "done"


@dataclass
class ProvisioningRequest:
    """Everything one run needs to know about its target."""
    address: str
    product_name: str = "Unknown"
    hostname: str = field(default_factory=socket.gethostname)


@dataclass
class ProvisioningResult:
    address: str
    state: ProvisioningState = ProvisioningState.CHECK_EXISTING
    history: List[ProvisioningState] = field(default_factory=list)
    interfaces: List[str] = field(default_factory=list)
    write_attempts: int = 0
    driver_recompiled: bool = False
    previous: Optional[ActiveInterface] = None
    restored_interface: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    def enter(self, state: ProvisioningState) -> None:
        self.state = state
        self.history.append(state)

    def warn(self, message: str) -> None:
        log.warning(message)
        self.warnings.append(message)

    @property
    def satisfied(self) -> bool:
        return self.state == ProvisioningState.SATISFIED

    @property
    def wrote(self) -> bool:
        return ProvisioningState.WRITTEN in self.history

    @property
    def succeeded(self) -> bool:
        return self.state in (ProvisioningState.SATISFIED, ProvisioningState.DONE)

    @property
    def action(self) -> str:
        return "No changes required" if self.satisfied else "MAC address update"


class ProvisioningOrchestrator:
    def __init__(self, driver: DriverManager, tool: ProgrammingTool, network: NetworkManager,
                 settings: Optional[ProvisioningSettings] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.driver = driver
        self.tool = tool
        self.network = network
        self.settings = settings or ProvisioningSettings()
        self.sleep = sleep

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        try:
            address = canonical_address(request.address)
        except ValueError as exc:
            raise InvalidAddress(str(exc)) from None

        result = ProvisioningResult(address=address)
        result.enter(ProvisioningState.CHECK_EXISTING)
        existing = self.network.interfaces_with_mac(address)
        if existing:
            result.interfaces = existing
            result.enter(ProvisioningState.SATISFIED)
            log.info(f"MAC {address} is already present on interfaces: {', '.join(existing)}; no flash required")
            return result

        result.enter(ProvisioningState.NEEDS_WRITE)
        log.info(f"MAC {address} not found in system, flashing is required")
        # captured before anything touches the NIC
        result.previous = self.network.active_interface()
        if result.previous is None:
            result.warn("No active interface with an IPv4 address found; network settings will not be restored")
        else:
            log.info(f"Old IP address for interface {result.previous.name}: {result.previous.ip}")

        result.enter(ProvisioningState.DRIVER_LOAD)
        self._load_driver(result)

        self._write(result)
        result.enter(ProvisioningState.WRITTEN)
        for message in self.driver.release():
            result.warnings.append(message)

        result.enter(ProvisioningState.VERIFY_INTERFACE)
        interfaces = self.network.interfaces_with_mac(address)
        if not interfaces:
            log.error(f"Failed to find interface with target MAC {address}")
            raise InterfaceNotFound(address, result=result)
        result.interfaces = interfaces
        log.info(f"Found interfaces with MAC {address}: {interfaces}")

        result.enter(ProvisioningState.RESTORE_NETWORK)
        try:
            self._restore_network(result)
        except NetworkRestoreFailure as exc:
            result.warn(str(exc))

        result.enter(ProvisioningState.DONE)
        return result

    # --- states ---

    def _load_driver(self, result: ProvisioningResult) -> None:
        try:
            self.driver.load()
            return
        except DriverLoadFailure as exc:
            log.warning(f"Initial driver load failed: {exc}. Attempting to recompile driver")

        try:
            self.driver.recompile()
            self.driver.load()
        except DriverLoadFailure as exc:
            log.error(f"Failed to load driver even after recompilation: {exc}")
            raise DriverLoadFailure(f"Failed to load driver even after recompilation: {exc}", result=result) from exc
        result.driver_recompiled = True

    def _recover_driver(self, result: ProvisioningResult) -> None:
        log.warning("MAC write failed. Attempting to recompile driver and try again")
        try:
            self.driver.recompile()
            self.driver.load()
        except DriverLoadFailure as exc:
            result.warn(f"Driver recovery after failed write did not succeed: {exc}")
            return
        result.driver_recompiled = True

    def _write(self, result: ProvisioningResult) -> None:
        address_hex = strip_separators(result.address)
        max_attempts = self.settings.max_write_attempts

        def attempt() -> None:
            result.enter(ProvisioningState.WRITE_ATTEMPT)
            result.write_attempts += 1
            self.tool.write(address_hex)

        def after_failure(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            log.warning(f"Attempt {retry_state.attempt_number}/{max_attempts}: Failed to write MAC: {exc}")
            if retry_state.attempt_number == 1:
                self._recover_driver(result)

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(self.settings.write_backoff),
            retry=retry_if_exception_type(HardwareWriteError),
            after=after_failure,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            retrying(attempt)
        except HardwareWriteError as exc:
            result.enter(ProvisioningState.EXHAUSTED)
            log.error(f"Failed to write MAC address after {max_attempts} attempts: {exc}")
            raise HardwareWriteExhausted(result.address, max_attempts, exc, result=result) from exc
        log.info(f"MAC address {result.address} was successfully written on attempt {result.write_attempts}, verifying")

    def _restore_network(self, result: ProvisioningResult) -> None:
        previous = result.previous
        if previous is None:
            return

        if previous.name in result.interfaces:
            iface = previous.name
        else:
            iface = result.interfaces[0]
            if len(result.interfaces) > 1:
                result.warn(f"Multiple interfaces with matching MAC found. Using {iface}")

        max_attempts = self.settings.restore_attempts

        def attempt() -> None:
            log.info(f"Restarting interface {iface} with IP {previous.ip}")
            steps = (
                lambda: self.network.link_down(iface),
                lambda: self.network.flush(iface),
                lambda: self.network.set_address(iface, result.address),
                lambda: self.network.link_up(iface),
            )
            for step in steps:
                try:
                    step()
                except CommandExecutionError as exc:
                    log.debug(f"Interface step failed on {iface}: {exc}")
            try:
                self.network.add_ip(iface, previous.ip)
            except CommandExecutionError:
                if self.network.has_ip(iface, previous.ip):
                    log.info(f"IP {previous.ip} is already assigned to {iface}, continuing")
                    return
                raise

        def after_failure(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception()
            log.warning(f"Attempt {retry_state.attempt_number}: Failed to assign IP {previous.ip} "
                        f"to interface {iface}: {exc}")

        retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_fixed(self.settings.restore_backoff),
            retry=retry_if_exception_type(CommandExecutionError),
            after=after_failure,
            sleep=self.sleep,
            reraise=True,
        )
        try:
            retrying(attempt)
        except CommandExecutionError as exc:
            raise NetworkRestoreFailure(iface, previous.ip, max_attempts, exc) from exc
        log.info(f"Interface {iface} restarted with IP {previous.ip}")
        result.restored_interface = iface

"""
macpool.errors
--------------
Error taxonomy shared by the pool store, the allocation engine and the
provisioning state machine.

Storage and crypto errors abort the current operation. Hardware and driver
errors are retried locally by the orchestrator and only surface once the
retry budget is spent. NetworkRestoreFailure is reported as a warning and
never unwinds a successful write.
"""

from __future__ import annotations
from typing import Any, List, Optional, Sequence


class MacPoolError(Exception):
    pass


# --------- Storage / crypto ----------
class PoolStorageError(MacPoolError):
    pass


class PoolNotFound(PoolStorageError):
    def __init__(self, path: str):
        super().__init__(f"MAC address pool file {path} does not exist")
        self.path = path


class PoolExistsError(PoolStorageError):
    def __init__(self, path: str):
        super().__init__(f"MAC address pool file {path} already exists")
        self.path = path


class PoolReadError(PoolStorageError):
    pass


class PoolWriteError(PoolStorageError):
    pass


class DecryptionError(PoolStorageError):
    """Wrong passphrase or corrupted ciphertext. The two are indistinguishable."""


class MalformedData(PoolStorageError):
    """Decryption succeeded but the document is not a pool we understand."""


class IntegrityError(PoolStorageError):
    pass


# --------- Allocation ----------
class AllocationError(MacPoolError):
    pass


class PoolExhausted(AllocationError):
    pass


class InvalidAddress(AllocationError, ValueError):
    pass


class GenerationError(AllocationError):
    pass


class InvalidPrefix(GenerationError, ValueError):
    pass


class CapacityExceeded(GenerationError):
    def __init__(self, requested: int, capacity: int, prefix: str):
        super().__init__(
            f"requested count {requested} exceeds maximum possible ({capacity}) for prefix {prefix}"
        )
        self.requested = requested
        self.capacity = capacity
        self.prefix = prefix


class PartialGeneration(GenerationError):
    """Fewer unique addresses than requested; ``generated`` holds what was found."""

    def __init__(self, generated: Sequence[Any], requested: int, attempts: int):
        super().__init__(
            f"could only generate {len(generated)} of {requested} unique addresses after {attempts} attempts"
        )
        self.generated = list(generated)
        self.requested = requested
        self.attempts = attempts


# --------- Provisioning ----------
class ProvisioningError(MacPoolError):
    """Base for provisioning failures. ``result`` is the partial run, when known."""

    def __init__(self, message: str, result: Optional[Any] = None):
        super().__init__(message)
        self.result = result


class PrivilegeError(ProvisioningError):
    pass


class CommandExecutionError(ProvisioningError):
    """An external command exited non-zero."""

    def __init__(self, command: Sequence[str], output: str, returncode: int):
        super().__init__(
            f"Command '{' '.join(command)}' failed with code {returncode}: {output.strip()}"
        )
        self.command = list(command)
        self.output = output
        self.returncode = returncode


class DriverLoadFailure(ProvisioningError):
    pass


class HardwareWriteError(ProvisioningError):
    """A single failed invocation of the programming utility."""


class HardwareWriteExhausted(ProvisioningError):
    def __init__(self, address: str, attempts: int, cause: Optional[BaseException] = None, result: Optional[Any] = None):
        super().__init__(
            f"Failed to write MAC address {address} after {attempts} attempts: {cause}. "
            "It is recommended to power off the system and diagnose the hardware manually.",
            result=result,
        )
        self.address = address
        self.attempts = attempts
        self.cause = cause


class InterfaceNotFound(ProvisioningError):
    def __init__(self, address: str, result: Optional[Any] = None):
        super().__init__(
            f"No interface carries MAC address {address} after a reported successful write",
            result=result,
        )
        self.address = address


class NetworkRestoreFailure(ProvisioningError):
    def __init__(self, interface: str, ip: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(
            f"Failed to restore IP {ip} on interface {interface} after {attempts} attempts: {cause}"
        )
        self.interface = interface
        self.ip = ip
        self.attempts = attempts
        self.cause = cause


__all__: List[str] = [
    "MacPoolError",
    "PoolStorageError",
    "PoolNotFound",
    "PoolExistsError",
    "PoolReadError",
    "PoolWriteError",
    "DecryptionError",
    "MalformedData",
    "IntegrityError",
    "AllocationError",
    "PoolExhausted",
    "InvalidAddress",
    "GenerationError",
    "InvalidPrefix",
    "CapacityExceeded",
    "PartialGeneration",
    "ProvisioningError",
    "PrivilegeError",
    "CommandExecutionError",
    "DriverLoadFailure",
    "HardwareWriteError",
    "HardwareWriteExhausted",
    "InterfaceNotFound",
    "NetworkRestoreFailure",
]

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import socket

from macpool.allocation import attribution, mark_used, select_available
from macpool.errors import ProvisioningError
from macpool.logger import get_logger
from macpool.models import Entry
from macpool.oplog import OperationLog, OperationRecord
from macpool.provisioning.orchestrator import ProvisioningOrchestrator, ProvisioningRequest, ProvisioningResult
from macpool.provisioning.ports import SystemInfoProvider
from macpool.storage import PoolStorage

log = get_logger("MacPool.Session")

FAILED_ACTION = "MAC address update failed"


@dataclass
class SessionOutcome:
    entry: Entry
    result: ProvisioningResult
    record: OperationRecord


class ProvisioningSession:
    """
    One flashing run: load pool -> select -> provision -> mark used -> save.

    The pool stays locked for the whole cycle. A fatal provisioning error
    still produces a failed OperationRecord before it propagates; the pool
    is not modified in that case.
    """

    def __init__(self, storage: PoolStorage, orchestrator: ProvisioningOrchestrator,
                 sysinfo: SystemInfoProvider, oplog: Optional[OperationLog] = None,
                 hostname: Optional[str] = None):
        self.storage = storage
        self.orchestrator = orchestrator
        self.sysinfo = sysinfo
        self.oplog = oplog or OperationLog()
        self.hostname = hostname or socket.gethostname()

    def _record(self, request: ProvisioningRequest, action: str, success: bool) -> OperationRecord:
        record = OperationRecord(
            product_name=request.product_name,
            mac_address=request.address,
            action_performed=action,
            success=success,
            system_info=self.sysinfo.system_info(),
            host_info=self.sysinfo.host_info(),
        )
        return self.oplog.emit(record)

    def run(self, path: str, passphrase: str) -> SessionOutcome:
        product = self.sysinfo.product_name()
        log.info(f"Product Name: {product}")

        with self.storage.lock(path):
            pool = self.storage.load(path, passphrase)
            entry = select_available(pool)
            log.info(f"Selected MAC address: {entry.address}")
            request = ProvisioningRequest(address=entry.address, product_name=product, hostname=self.hostname)

            try:
                result = self.orchestrator.provision(request)
            except ProvisioningError:
                self._record(request, FAILED_ACTION, False)
                raise

            mark_used(pool, entry.address, attribution(self.hostname, result.interfaces))
            try:
                self.storage.save(pool, passphrase, path)
            finally:
                record = self._record(request, result.action, True)

        return SessionOutcome(entry=entry, result=result, record=record)

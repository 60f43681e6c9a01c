"""
macpool.provisioning
--------------------
Programs pool addresses into hardware. The orchestrator only talks to the
ports in ``ports``; ``commands``, ``driver``, ``network`` and ``sysinfo``
hold the real adapters and ``fakes`` the in-memory ones.
"""

from .orchestrator import (
    ProvisioningOrchestrator,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningState,
)
from .session import ProvisioningSession, SessionOutcome

__all__ = [
    "ProvisioningOrchestrator",
    "ProvisioningRequest",
    "ProvisioningResult",
    "ProvisioningState",
    "ProvisioningSession",
    "SessionOutcome",
]

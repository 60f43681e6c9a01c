"""
macpool
=======
Encrypted, signed inventory of MAC addresses and the provisioning workflow
that consumes it.

Provides:
- Pool / Entry schema and canonicalization
- PBKDF2 + AES-GCM sealing and HMAC signing of the pool
- Atomic, backed-up pool files (pluggable storage, file default)
- Allocation, generation and bookkeeping over the in-memory pool
- A retrying hardware-write state machine behind narrow capability ports
"""

__version__ = "1.1.0"

"""
macpool.constants
-----------------
Shared constants for the pool file format, key derivation and the
provisioning retry policy.
"""

FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSIONS = frozenset({FORMAT_VERSION})

DEFAULT_POOL_FILE = "mac_pool.enc"
BACKUP_SUFFIX = ".bak"
LOCK_SUFFIX = ".lock"
TEMP_PREFIX = "macpool-"
TEMP_SUFFIX = ".tmp"
POOL_FILE_MODE = 0o600

# Zero timestamp written by pools of the first generation for never-used entries
ZERO_TIME = "0001-01-01T00:00:00Z"

# --------- Key derivation / AEAD ----------
SALT_SIZE = 16
NONCE_SIZE = 12          # AES-GCM standard nonce
TAG_SIZE = 16
KEY_SIZE = 32            # AES-256
KDF_ITERATIONS = 10000
MIN_PASSPHRASE_LENGTH = 8

# --------- Addresses ----------
ADDRESS_OCTETS = 6
ADDRESS_DIGITS = ADDRESS_OCTETS * 2
GENERATION_ATTEMPT_FACTOR = 10
MAX_GENERATE_COUNT = 10000

# --------- Provisioning defaults ----------
MAX_WRITE_ATTEMPTS = 3
WRITE_BACKOFF_SECONDS = 1.0
RESTORE_ATTEMPTS = 3
RESTORE_BACKOFF_SECONDS = 0.5

PROGRAMMING_MODULE = "pgdrv"
CONFLICTING_MODULES = ("r8169", "r8168", "r8125", "r8101")
DEFAULT_DRIVER_DIR = "rtnicpg"
DEFAULT_LOG_DIR = "logs"

from __future__ import annotations
from typing import Union
from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
import binascii, os

from .constants import KDF_ITERATIONS, KEY_SIZE, NONCE_SIZE, SALT_SIZE, TAG_SIZE
from .errors import DecryptionError
from .models import Pool
from .utils import b64d, b64e

"""
macpool.crypto
--------------
Cryptographic primitives for the MAC address pool:

- PBKDF2-HMAC-SHA256 + AES-256-GCM: passphrase sealing of the pool file
  (seal / open_sealed)
- HMAC-SHA256 over the pool document in fixed field order: integrity signing
  (sign_pool / verify_pool)

Sealed blob layout, base64 encoded as a whole:

    salt (16) || nonce (12) || ciphertext || tag (16)

There are no length fields; every boundary follows from the constants.
"""

_DECRYPT_FAILED = "failed to decrypt MAC pool: wrong password or corrupted data"


# --------- PBKDF2 + AES-GCM (seal/open) ----------
def derive_key(passphrase: str, salt: bytes, iterations: int = KDF_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, iterations=iterations)
    return kdf.derive(passphrase.encode("utf-8"))  # 256-bit AEAD key

def seal(plaintext: bytes, passphrase: str) -> str:
    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    ct = AESGCM(derive_key(passphrase, salt)).encrypt(nonce, plaintext, None)
    return b64e(salt + nonce + ct)

def open_sealed(blob: Union[str, bytes], passphrase: str) -> bytes:
    """Inverse of seal(). Every failure raises the same DecryptionError."""
    try:
        text = blob.decode("ascii") if isinstance(blob, bytes) else blob
        data = b64d(text.strip())
    except (binascii.Error, UnicodeError, ValueError):
        raise DecryptionError(_DECRYPT_FAILED) from None

    if len(data) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionError(_DECRYPT_FAILED)

    salt = data[:SALT_SIZE]
    nonce = data[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    ct = data[SALT_SIZE + NONCE_SIZE:]
    try:
        return AESGCM(derive_key(passphrase, salt)).decrypt(nonce, ct, None)
    except InvalidTag:
        raise DecryptionError(_DECRYPT_FAILED) from None


# --------- HMAC (sign/verify) ----------
def _mac(body: bytes, passphrase: str) -> hmac.HMAC:
    h = hmac.HMAC(passphrase.encode("utf-8"), hashes.SHA256())
    h.update(body)
    return h

def sign_pool(pool: Pool, passphrase: str) -> Pool:
    pool.signature = ""
    pool.signature = _mac(pool.to_signing_bytes(), passphrase).finalize().hex()
    return pool

def verify_pool(pool: Pool, passphrase: str) -> bool:
    """
    True when the stored signature matches the pool content.

    An empty signature is trusted: pools written before signing existed
    carry none. Callers that need the stronger guarantee check
    ``pool.signature`` themselves (see PoolStorage.require_signature).
    """
    if not pool.signature:
        return True
    try:
        expected = bytes.fromhex(pool.signature)
    except ValueError:
        return False
    # current field-order layout first, then the sorted layout of 1.0.0 pools
    for body in (pool.to_signing_bytes(), pool.to_sorted_signing_bytes()):
        try:
            _mac(body, passphrase).verify(expected)  # constant time
            return True
        except InvalidSignature:
            continue
    return False

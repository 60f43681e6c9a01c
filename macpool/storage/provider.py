# macpool/storage/provider.py
from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Optional
import json

from macpool.crypto import open_sealed, seal, sign_pool, verify_pool
from macpool.errors import IntegrityError, MalformedData, PoolExistsError
from macpool.logger import get_logger
from macpool.models import Pool

log = get_logger("MacPool.Storage")


class PoolStorage:
    """
    Load/save of the encrypted, signed pool.

    Subclasses only move sealed blobs around (``_read_blob``, ``_write_blob``,
    ``exists``); decryption, parsing, signature checks and re-signing happen
    here so every backend shares one crypto path.

    load():  read -> open_sealed -> parse -> verify
    save():  sign -> serialize -> seal -> write
    """

    def __init__(self, require_signature: bool = False):
        self.require_signature = require_signature

    # Interface
    def exists(self, path: str) -> bool: ...
    def _read_blob(self, path: str) -> bytes: ...
    def _write_blob(self, path: str, blob: bytes) -> None: ...

    @contextmanager
    def lock(self, path: str) -> Iterator[None]:
        yield

    # --- shared pipeline ---

    def decode(self, blob: bytes, passphrase: str, path: str = "<memory>") -> Pool:
        plaintext = open_sealed(blob, passphrase)
        try:
            document = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise MalformedData(f"failed to parse MAC pool data: {exc}") from exc

        pool = Pool.from_dict(document)

        if not pool.signature:
            if self.require_signature:
                raise IntegrityError(f"pool {path} is unsigned and signatures are required")
            log.warning(f"pool {path} carries no signature; integrity cannot be verified (legacy pool)")
        elif not verify_pool(pool, passphrase):
            raise IntegrityError("integrity check failed: the pool file may have been tampered with")
        return pool

    def encode(self, pool: Pool, passphrase: str) -> bytes:
        sign_pool(pool, passphrase)
        return seal(pool.to_json_bytes(), passphrase).encode("ascii")

    def load(self, path: str, passphrase: str) -> Pool:
        pool = self.decode(self._read_blob(path), passphrase, path)
        log.debug(f"loaded pool {path} ({len(pool)} addresses)")
        return pool

    def save(self, pool: Pool, passphrase: str, path: str) -> None:
        self._write_blob(path, self.encode(pool, passphrase))
        log.info(f"saved pool {path} ({len(pool)} addresses)")

    def create(self, path: str, passphrase: str, created_by: str,
               vendor_prefix: Optional[str] = None, overwrite: bool = False) -> Pool:
        if self.exists(path) and not overwrite:
            raise PoolExistsError(path)
        pool = Pool.new(created_by, vendor_prefix)
        self.save(pool, passphrase, path)
        return pool

    def change_passphrase(self, path: str, old_passphrase: str, new_passphrase: str) -> Pool:
        # full re-encryption; the atomic save keeps the old file on failure
        pool = self.load(path, old_passphrase)
        pool.touch()
        self.save(pool, new_passphrase, path)
        return pool

from typing import Dict
from macpool.errors import PoolNotFound
from macpool.storage.provider import PoolStorage

class InMemoryPoolStorage(PoolStorage):
    """Sealed blobs kept in a dict. Same crypto path as the file provider."""

    def __init__(self, require_signature: bool = False):
        super().__init__(require_signature=require_signature)
        self.blobs: Dict[str, bytes] = {}
        self.writes = 0

    def exists(self, path: str) -> bool:
        return path in self.blobs

    def _read_blob(self, path: str) -> bytes:
        if path not in self.blobs:
            raise PoolNotFound(path)
        return self.blobs[path]

    def _write_blob(self, path: str, blob: bytes) -> None:
        self.blobs[path] = blob
        self.writes += 1

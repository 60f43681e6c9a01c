# macpool/storage/__init__.py

from .provider import PoolStorage
from .providers.file_provider import FilePoolStorage
from .providers.memory_provider import InMemoryPoolStorage
import os


def load_storage_provider(config: dict | None = None) -> PoolStorage:
    """
    Factory resolver for selecting the pool storage backend.

    For now:
        - file (default)
        - memory
    """
    config = config or {}
    provider = config.get("provider") or os.getenv("MACPOOL_STORAGE_PROVIDER", "file")
    require_signature = bool(config.get("require_signature", False))

    if provider == "memory":
        return InMemoryPoolStorage(require_signature=require_signature)

    if provider == "file":
        return FilePoolStorage(
            require_signature=require_signature,
            backup=bool(config.get("backup", True)),
        )
    raise ValueError(f"Unknown storage provider: {provider}")


__all__ = [
    "PoolStorage",
    "FilePoolStorage",
    "InMemoryPoolStorage",
    "load_storage_provider",
]

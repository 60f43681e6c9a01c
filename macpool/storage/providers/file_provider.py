from __future__ import annotations
from contextlib import contextmanager
from typing import Iterator, Set
import fcntl, os, shutil, tempfile

from macpool.constants import BACKUP_SUFFIX, LOCK_SUFFIX, POOL_FILE_MODE, TEMP_PREFIX, TEMP_SUFFIX
from macpool.errors import PoolNotFound, PoolReadError, PoolWriteError
from macpool.storage.provider import PoolStorage, log


class FilePoolStorage(PoolStorage):
    """
    Encrypted pool file on local disk.

    Writes go to a temporary file in the target directory and are renamed
    over the pool, so readers never see a partial file and a crash leaves
    the previous version in place. The first save of each path made by this
    instance copies the current file to ``<path>.bak``.
    """

    def __init__(self, require_signature: bool = False, backup: bool = True):
        super().__init__(require_signature=require_signature)
        self.backup = backup
        self._backed_up: Set[str] = set()

    def exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def _read_blob(self, path: str) -> bytes:
        if not os.path.exists(path):
            raise PoolNotFound(path)
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise PoolReadError(f"failed to read MAC pool file {path}: {exc}") from exc

    def _backup(self, path: str) -> None:
        key = os.path.abspath(path)
        if not self.backup or key in self._backed_up:
            return
        self._backed_up.add(key)
        if not os.path.exists(path):
            return
        try:
            shutil.copy2(path, path + BACKUP_SUFFIX)
            os.chmod(path + BACKUP_SUFFIX, POOL_FILE_MODE)
        except OSError as exc:
            log.warning(f"failed to create backup of pool file {path}: {exc}")

    def _write_blob(self, path: str, blob: bytes) -> None:
        directory = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as exc:
            raise PoolWriteError(f"failed to create directory {directory}: {exc}") from exc

        self._backup(path)

        try:
            fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=directory)
        except OSError as exc:
            raise PoolWriteError(f"failed to create temporary file in {directory}: {exc}") from exc

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(blob)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as exc:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
            raise PoolWriteError(f"failed to write MAC pool file {path}: {exc}") from exc

        try:
            os.chmod(path, POOL_FILE_MODE)
        except OSError as exc:
            log.warning(f"failed to set permissions on pool file {path}: {exc}")

    @contextmanager
    def lock(self, path: str) -> Iterator[None]:
        """Exclusive advisory lock for one load-mutate-save cycle."""
        lock_path = path + LOCK_SUFFIX
        try:
            os.makedirs(os.path.dirname(os.path.abspath(lock_path)), exist_ok=True)
            handle = open(lock_path, "a")
        except OSError as exc:
            raise PoolWriteError(f"failed to lock MAC pool file {path}: {exc}") from exc
        with handle:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            except OSError as exc:
                raise PoolWriteError(f"failed to lock MAC pool file {path}: {exc}") from exc
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

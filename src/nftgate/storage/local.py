from __future__ import annotations

import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Optional

from nftgate.errors import CorruptBlob, NotFound, StorageUnavailable
from nftgate.metrics import inc_counter
from nftgate.storage.base import KeyedLocks, require_cid
from nftgate.util.cid import content_id, is_raw_cid, validate_ipfs_cid
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.storage.local")

_TMP_SUFFIX = ".tmp"


class LocalBlobStore:
    """Directory-backed blob store.

    Layout: <root>/<last two cid chars>/<cid>

    Guarantees:
      - A blob path only ever appears via os.replace() of a fully written,
        fsynced temp file in the same directory, so readers never observe
        partial bytes.
      - Concurrent puts of the same bytes in this process serialize on a
        per-identifier lock; the first writes, the rest are dedup no-ops.
      - Across processes, a racing duplicate write replaces the file with
        identical bytes, which readers cannot distinguish.
    """

    backend = "local"

    def __init__(self, root: str | Path, *, fsync: bool = True) -> None:
        self._root = Path(root)
        self._fsync = bool(fsync)
        self._locks = KeyedLocks()
        # Guards `writes` across identifiers; the keyed locks only serialize one cid.
        self._count_lock = threading.Lock()
        self.writes = 0
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable("local_root_unavailable", {"root": str(self._root), "error": str(e)}) from e

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, cid: str) -> Path:
        return self._root / cid[-2:] / cid

    def _sync_dir(self, directory: Path) -> None:
        if not self._fsync or not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}{_TMP_SUFFIX}")
        try:
            with open(tmp, "xb") as f:
                f.write(data)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
            os.replace(tmp, path)
        finally:
            if tmp.exists():
                tmp.unlink()
        self._sync_dir(path.parent)

    def put(self, data: bytes) -> str:
        payload = bytes(data)
        cid = content_id(payload)
        path = self._path(cid)

        with self._locks.locked(cid):
            if path.is_file():
                inc_counter("blob_dedup_hits")
                return cid
            try:
                self._write_atomic(path, payload)
            except OSError as e:
                log_event(log, "blob_write_failed", level=logging.WARNING, backend=self.backend, cid=cid, error=str(e))
                raise StorageUnavailable("local_write_failed", {"cid": cid, "error": str(e)}) from e
            with self._count_lock:
                self.writes += 1

        inc_counter("blob_writes")
        return cid

    def get(self, cid: str) -> bytes:
        c = require_cid(cid)
        path = self._path(c)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise NotFound("blob_not_found", {"cid": c}) from None
        except OSError as e:
            raise StorageUnavailable("local_read_failed", {"cid": c, "error": str(e)}) from e

        if is_raw_cid(c):
            actual = content_id(data)
            if actual != c:
                log_event(log, "blob_integrity_mismatch", level=logging.ERROR, cid=c, actual=actual)
                raise CorruptBlob("blob_hash_mismatch", {"cid": c, "actual": actual})
        return data

    def exists(self, cid: str) -> bool:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return False
        return self._path(v.cid).is_file()

    def blob_path(self, cid: str) -> Optional[Path]:
        """Filesystem path of a stored blob, or None if it is not present."""
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return None
        path = self._path(v.cid)
        return path if path.is_file() else None

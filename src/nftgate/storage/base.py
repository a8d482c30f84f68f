from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Protocol, runtime_checkable

from nftgate.errors import NotFound
from nftgate.util.cid import validate_ipfs_cid


@runtime_checkable
class BlobStore(Protocol):
    """Write-once, content-addressed blob storage.

    put():    store bytes, return their identifier (no-op if already present)
    get():    return the bytes for an identifier, NotFound if absent
    exists(): presence check, never raises NotFound
    """

    backend: str

    def put(self, data: bytes) -> str: ...

    def get(self, cid: str) -> bytes: ...

    def exists(self, cid: str) -> bool: ...


def require_cid(cid: str) -> str:
    """Normalize a lookup identifier; malformed identifiers can never be present."""
    v = validate_ipfs_cid(cid)
    if not v.ok:
        raise NotFound("blob_not_found", {"cid": str(cid or "")[:128], "why": v.reason})
    return v.cid


class KeyedLocks:
    """One lock per identifier so concurrent puts of the same bytes serialize.

    Locks for different identifiers never contend.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                n = self._users.get(key, 0) - 1
                if n <= 0:
                    self._users.pop(key, None)
                    self._locks.pop(key, None)
                else:
                    self._users[key] = n

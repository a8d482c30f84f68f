from __future__ import annotations

import threading
from typing import Dict

from nftgate.errors import NotFound
from nftgate.metrics import inc_counter
from nftgate.storage.base import require_cid
from nftgate.util.cid import content_id, validate_ipfs_cid


class MemoryBlobStore:
    """In-process blob store (tests / dev).

    Deterministic and thread-safe. `writes` counts physical writes, so
    deduplicated puts leave it unchanged.
    """

    backend = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._blobs: Dict[str, bytes] = {}
        self.writes = 0

    def put(self, data: bytes) -> str:
        payload = bytes(data)
        cid = content_id(payload)
        with self._lock:
            if cid in self._blobs:
                inc_counter("blob_dedup_hits")
                return cid
            self._blobs[cid] = payload
            self.writes += 1
        inc_counter("blob_writes")
        return cid

    def get(self, cid: str) -> bytes:
        c = require_cid(cid)
        with self._lock:
            data = self._blobs.get(c)
        if data is None:
            raise NotFound("blob_not_found", {"cid": c})
        return data

    def exists(self, cid: str) -> bool:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return False
        with self._lock:
            return v.cid in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

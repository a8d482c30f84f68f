from __future__ import annotations

import json
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import Dict, Optional, Tuple

from nftgate.errors import CorruptBlob, NotFound, StorageUnavailable
from nftgate.metrics import inc_counter
from nftgate.storage.base import KeyedLocks, require_cid
from nftgate.util.cid import content_id, is_raw_cid, validate_ipfs_cid
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.storage.ipfs")

# Kubo refuses blocks above 1 MiB unless explicitly allowed.
_BIG_BLOCK_BYTES = 1024 * 1024

_BOUNDARY = "----nftgate-ipfs-boundary-5d0c8e71a4f94b2c"


def _looks_missing(body: str) -> bool:
    b = (body or "").lower()
    return "not found" in b or "could not find" in b or "no such" in b


def _multipart_file(data: bytes, *, name: str = "blob") -> bytes:
    preamble = (
        f"--{_BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{name}"\r\n'
        f"Content-Type: application/octet-stream\r\n"
        f"\r\n"
    ).encode("utf-8")
    epilogue = f"\r\n--{_BOUNDARY}--\r\n".encode("utf-8")
    return preamble + data + epilogue


class IpfsBlobStore:
    """Blob store on a distributed content network (IPFS, Kubo HTTP RPC API).

    Blobs are written as single raw blocks (`block/put` with cid-codec=raw,
    mhtype=sha2-256), so the CID the node reports equals the locally computed
    identifier. Blocks are pinned on write.

    Reads default to offline mode: a blob this gateway never wrote is reported
    as NotFound instead of blocking on a network-wide lookup.
    """

    backend = "distributed-content-network"

    def __init__(self, *, api_base: str, timeout_s: float = 30.0, pin: bool = True, offline_reads: bool = True) -> None:
        base = str(api_base or "").strip() or "http://127.0.0.1:5001"
        self._api_base = base.rstrip("/")
        self._timeout_s = float(timeout_s)
        self._pin = bool(pin)
        self._offline_reads = bool(offline_reads)
        self._locks = KeyedLocks()
        # Guards `writes` across identifiers; the keyed locks only serialize one cid.
        self._count_lock = threading.Lock()
        self.writes = 0

    def _call(
        self,
        path: str,
        query: Dict[str, str],
        *,
        body: bytes = b"",
        content_type: Optional[str] = None,
    ) -> Tuple[bool, bytes, int]:
        """Call the Kubo RPC API. Returns (ok, body_bytes, status_code); status 0 means no response."""
        qs = urllib.parse.urlencode(query)
        url = f"{self._api_base}{path}?{qs}" if qs else f"{self._api_base}{path}"

        # The RPC API only accepts POST.
        req = urllib.request.Request(url=url, method="POST", data=body)
        if content_type:
            req.add_header("Content-Type", content_type)

        try:
            with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                return (200 <= status < 300), resp.read(), status
        except urllib.error.HTTPError as e:
            try:
                payload = e.read()
            except OSError:
                payload = str(e).encode("utf-8")
            return False, payload or str(e).encode("utf-8"), int(getattr(e, "code", 0) or 0)
        except (urllib.error.URLError, OSError) as e:
            return False, str(e).encode("utf-8"), 0

    def _unavailable(self, op: str, cid: str, status: int, body: bytes) -> StorageUnavailable:
        msg = body.decode("utf-8", errors="replace").strip()[:300]
        log_event(log, "blob_backend_error", level=logging.WARNING, backend=self.backend, op=op, cid=cid, status=status, error=msg)
        return StorageUnavailable(f"ipfs_{op}_failed", {"cid": cid, "status": status, "error": msg})

    def _stat(self, cid: str) -> bool:
        ok, body, status = self._call("/api/v0/block/stat", {"arg": cid, "offline": "true"})
        if ok:
            return True
        if status and _looks_missing(body.decode("utf-8", errors="replace")):
            return False
        raise self._unavailable("stat", cid, status, body)

    def put(self, data: bytes) -> str:
        payload = bytes(data)
        cid = content_id(payload)

        with self._locks.locked(cid):
            if self._stat(cid):
                inc_counter("blob_dedup_hits")
                return cid

            query = {
                "cid-codec": "raw",
                "mhtype": "sha2-256",
                "mhlen": "-1",
                "pin": "true" if self._pin else "false",
            }
            if len(payload) > _BIG_BLOCK_BYTES:
                query["allow-big-block"] = "true"

            ok, body, status = self._call(
                "/api/v0/block/put",
                query,
                body=_multipart_file(payload),
                content_type=f"multipart/form-data; boundary={_BOUNDARY}",
            )
            if not ok:
                raise self._unavailable("put", cid, status, body)

            try:
                obj = json.loads(body.decode("utf-8", errors="replace").strip().splitlines()[-1])
            except (ValueError, IndexError):
                raise self._unavailable("put", cid, status, body) from None
            reported = str(obj.get("Key") or "").strip() if isinstance(obj, dict) else ""
            if reported != cid:
                log_event(log, "blob_cid_mismatch", level=logging.ERROR, backend=self.backend, cid=cid, reported=reported)
                raise CorruptBlob("ipfs_cid_mismatch", {"cid": cid, "reported": reported})
            with self._count_lock:
                self.writes += 1

        inc_counter("blob_writes")
        return cid

    def get(self, cid: str) -> bytes:
        c = require_cid(cid)
        query = {"arg": c}
        if self._offline_reads:
            query["offline"] = "true"

        ok, body, status = self._call("/api/v0/block/get", query)
        if not ok:
            if status and _looks_missing(body.decode("utf-8", errors="replace")):
                raise NotFound("blob_not_found", {"cid": c})
            raise self._unavailable("get", c, status, body)

        if is_raw_cid(c) and content_id(body) != c:
            log_event(log, "blob_integrity_mismatch", level=logging.ERROR, backend=self.backend, cid=c)
            raise CorruptBlob("blob_hash_mismatch", {"cid": c})
        return body

    def exists(self, cid: str) -> bool:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return False
        return self._stat(v.cid)

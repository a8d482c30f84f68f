from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Sequence

from nftgate.errors import CorruptBlob, NotFound, StorageUnavailable
from nftgate.metrics import inc_counter
from nftgate.storage.base import KeyedLocks, require_cid
from nftgate.util.cid import content_id, is_raw_cid, validate_ipfs_cid
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.storage.object_store")

_MISSING_CODES = {"404", "NoSuchKey", "NotFound"}
_ALREADY_EXISTS_CODES = {"412", "PreconditionFailed", "409", "ConditionalRequestConflict"}


def _error_code(exc: BaseException) -> str:
    """Extract the S3 error code from a botocore ClientError (duck-typed)."""
    resp = getattr(exc, "response", None)
    if not isinstance(resp, dict):
        return ""
    err = resp.get("Error")
    if isinstance(err, dict) and err.get("Code") is not None:
        return str(err.get("Code"))
    meta = resp.get("ResponseMetadata")
    if isinstance(meta, dict) and meta.get("HTTPStatusCode") is not None:
        return str(meta.get("HTTPStatusCode"))
    return ""


def _sanitize_segment(raw: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in str(raw).strip())


class S3BlobStore:
    """Blob store backed by an S3-compatible bucket.

    Keys: <prefix>/<cid>

    Writes use a conditional PUT (If-None-Match: *), so the first writer wins
    across processes and a duplicate write is rejected by the bucket itself.
    Object PUTs are atomic: a key is only visible once fully uploaded.
    """

    backend = "object-store"

    def __init__(
        self,
        *,
        bucket: str,
        prefix: Sequence[str] | str | None = None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("object-store backend requires a bucket (NFTGATE_S3_BUCKET)")
        self._bucket = bucket
        if isinstance(prefix, str):
            prefix = [p for p in prefix.split("/") if p.strip()]
        self._prefix = tuple(_sanitize_segment(p) for p in (prefix or ()) if str(p).strip())
        self._endpoint_url = endpoint_url
        self._region_name = region_name
        self._client = client
        self._locks = KeyedLocks()
        # Guards `writes` across identifiers; the keyed locks only serialize one cid.
        self._count_lock = threading.Lock()
        self.writes = 0

    def _client_factory(self):  # pragma: no cover - exercised in integration
        import boto3

        return boto3.client("s3", endpoint_url=self._endpoint_url, region_name=self._region_name)

    @property
    def _s3(self):
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _key(self, cid: str) -> str:
        return "/".join([*self._prefix, cid])

    def _unavailable(self, op: str, cid: str, exc: BaseException) -> StorageUnavailable:
        log_event(
            log,
            "blob_backend_error",
            level=logging.WARNING,
            backend=self.backend,
            op=op,
            cid=cid,
            code=_error_code(exc),
            error=str(exc)[:300],
        )
        return StorageUnavailable(f"s3_{op}_failed", {"cid": cid, "code": _error_code(exc), "error": str(exc)[:300]})

    def _head(self, cid: str) -> bool:
        try:
            self._s3.head_object(Bucket=self._bucket, Key=self._key(cid))
            return True
        except Exception as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise self._unavailable("head", cid, e) from e

    def put(self, data: bytes) -> str:
        payload = bytes(data)
        cid = content_id(payload)

        with self._locks.locked(cid):
            if self._head(cid):
                inc_counter("blob_dedup_hits")
                return cid
            try:
                self._s3.put_object(
                    Bucket=self._bucket,
                    Key=self._key(cid),
                    Body=payload,
                    ContentLength=len(payload),
                    IfNoneMatch="*",
                )
            except Exception as e:
                if _error_code(e) in _ALREADY_EXISTS_CODES:
                    inc_counter("blob_dedup_hits")
                    return cid
                raise self._unavailable("put", cid, e) from e
            with self._count_lock:
                self.writes += 1

        inc_counter("blob_writes")
        return cid

    def get(self, cid: str) -> bytes:
        c = require_cid(cid)
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=self._key(c))
            body = response.get("Body")
            payload: Optional[bytes] = body.read() if body is not None else None
        except Exception as e:
            if _error_code(e) in _MISSING_CODES:
                raise NotFound("blob_not_found", {"cid": c}) from None
            raise self._unavailable("get", c, e) from e

        if not isinstance(payload, (bytes, bytearray)):
            raise StorageUnavailable("s3_body_invalid", {"cid": c})
        data = bytes(payload)

        if is_raw_cid(c) and content_id(data) != c:
            log_event(log, "blob_integrity_mismatch", level=logging.ERROR, backend=self.backend, cid=c)
            raise CorruptBlob("blob_hash_mismatch", {"cid": c})
        return data

    def exists(self, cid: str) -> bool:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            return False
        return self._head(v.cid)

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.grouping import SLOT_CONTENT, SLOT_METADATA, SLOT_PREVIEW, group
from nftgate.entity.metadata import NFTMetadata, UploadRequest, assemble_metadata, encode_metadata, validate_upload_request
from nftgate.errors import GatewayError, StorageUnavailable
from nftgate.metrics import inc_counter
from nftgate.storage.base import BlobStore
from nftgate.util.event_log import log_event


log = logging.getLogger("nftgate.entity.upload")

Json = Dict[str, Any]


class UploadState(str, Enum):
    VALIDATING = "validating"
    UPLOADING_CONTENT = "uploading_content"
    UPLOADING_PREVIEW = "uploading_preview"
    ASSEMBLING_METADATA = "assembling_metadata"
    UPLOADING_METADATA = "uploading_metadata"
    GROUPING = "grouping"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    hash_id: str
    url: str
    metadata: NFTMetadata
    embed: NFTMetadata
    metadata_cid: str
    links: Dict[str, str]

    def to_json(self) -> Json:
        return {
            "hashId": self.hash_id,
            "url": self.url,
            "metadata": self.metadata.to_json(),
            "embed": self.embed.to_json(),
            "metadataCid": self.metadata_cid,
            "links": dict(self.links),
        }


class UploadOrchestrator:
    """Runs one entity upload through its state machine.

    validating -> uploading_content -> uploading_preview -> assembling_metadata
      -> uploading_metadata -> grouping -> done
    Any non-terminal state may end in failed(kind).

    Request scoped: create one orchestrator per upload. Content and preview
    writes run concurrently and join before metadata assembly. The entity
    manifest is written last, so a hashId only becomes resolvable once every
    child blob is stored. Cancellation stops the machine but never removes
    blobs that were already written.
    """

    def __init__(
        self,
        store: BlobStore,
        resolver: GatewayResolver,
        *,
        op_timeout_s: float = 30.0,
        content_op_timeout_s: float = 300.0,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._op_timeout_s = float(op_timeout_s)
        self._content_op_timeout_s = float(content_op_timeout_s)
        self.state = UploadState.VALIDATING
        self.history: List[UploadState] = [UploadState.VALIDATING]
        self.failure: Optional[str] = None

    def _enter(self, state: UploadState) -> None:
        self.state = state
        self.history.append(state)

    def _fail(self, kind: str) -> None:
        self.failure = kind
        self._enter(UploadState.FAILED)

    async def _put(self, data: bytes, *, slot: str, timeout_s: float) -> str:
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._store.put, bytes(data)), timeout=timeout_s)
        except asyncio.TimeoutError:
            raise StorageUnavailable("blob_put_timeout", {"slot": slot, "timeout_s": timeout_s}) from None

    async def run(self, req: UploadRequest) -> UploadResult:
        if len(self.history) != 1:
            raise RuntimeError("UploadOrchestrator is single-use; create one per upload")

        started = time.monotonic()
        try:
            result = await self._run(req)
        except asyncio.CancelledError:
            failed_in = self.state.value
            self._fail("cancelled")
            log_event(log, "entity_upload_cancelled", level=logging.WARNING, state=failed_in)
            raise
        except GatewayError as e:
            failed_in = self.state.value
            self._fail(e.code)
            inc_counter("uploads_failed")
            log_event(
                log,
                "entity_upload_failed",
                level=logging.WARNING,
                state=failed_in,
                code=e.code,
                reason=e.reason,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
            raise

        inc_counter("uploads_ok")
        log_event(
            log,
            "entity_uploaded",
            hash_id=result.hash_id,
            metadata_cid=result.metadata_cid,
            slots=sorted(result.links.keys()),
            backend=getattr(self._store, "backend", ""),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return result

    async def _run(self, req: UploadRequest) -> UploadResult:
        # Fails fast with InvalidArgument before any I/O.
        validated = validate_upload_request(req)

        self._enter(UploadState.UPLOADING_CONTENT)
        content_task = asyncio.ensure_future(self._put(req.content, slot=SLOT_CONTENT, timeout_s=self._content_op_timeout_s))

        self._enter(UploadState.UPLOADING_PREVIEW)
        preview_task: Optional[asyncio.Future] = None
        if req.preview:
            preview_task = asyncio.ensure_future(
                self._put(req.preview, slot=SLOT_PREVIEW, timeout_s=self._content_op_timeout_s)
            )

        pending = [content_task] if preview_task is None else [content_task, preview_task]
        try:
            cids = await asyncio.gather(*pending)
        except BaseException:
            for task in pending:
                task.cancel()
            raise
        content_cid = cids[0]
        preview_cid = cids[1] if preview_task is not None else None

        self._enter(UploadState.ASSEMBLING_METADATA)
        metadata = assemble_metadata(validated, content_cid=content_cid, preview_cid=preview_cid)

        self._enter(UploadState.UPLOADING_METADATA)
        metadata_cid = await self._put(encode_metadata(metadata), slot=SLOT_METADATA, timeout_s=self._op_timeout_s)

        self._enter(UploadState.GROUPING)
        children = {SLOT_CONTENT: content_cid, SLOT_METADATA: metadata_cid}
        if preview_cid is not None:
            children[SLOT_PREVIEW] = preview_cid
        manifest = group(children)
        hash_id = await self._put(manifest.encode(), slot="manifest", timeout_s=self._op_timeout_s)

        self._enter(UploadState.DONE)
        return UploadResult(
            hash_id=hash_id,
            url=self._resolver.resolve(metadata_cid),
            metadata=metadata,
            embed=self._resolver.embed(metadata),
            metadata_cid=metadata_cid,
            links=manifest.as_dict(),
        )

from __future__ import annotations

import asyncio
from typing import Optional

from nftgate.config import GatewayConfig, load_gateway_config
from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.metadata import UploadRequest
from nftgate.entity.retrieve import MetadataRetriever, MetadataView
from nftgate.entity.upload import UploadOrchestrator, UploadResult
from nftgate.errors import StorageUnavailable
from nftgate.storage.base import BlobStore
from nftgate.storage.factory import build_blob_store


class EntityGateway:
    """Boundary operations consumed by UI clients.

    upload_entity(): runs the upload state machine, returns once done or failed
    get_metadata():  read-only lookup by hashId or metadata identifier

    Stateless apart from the blob store.
    """

    def __init__(
        self,
        store: BlobStore,
        resolver: GatewayResolver,
        *,
        op_timeout_s: float = 30.0,
        content_op_timeout_s: float = 300.0,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self._op_timeout_s = float(op_timeout_s)
        self._content_op_timeout_s = float(content_op_timeout_s)
        self._retriever = MetadataRetriever(store, resolver)

    @classmethod
    def from_config(cls, cfg: Optional[GatewayConfig] = None) -> "EntityGateway":
        cfg = cfg or load_gateway_config()
        return cls(
            build_blob_store(cfg),
            GatewayResolver(cfg.gateway_base_url),
            op_timeout_s=cfg.op_timeout_s,
            content_op_timeout_s=cfg.content_op_timeout_s,
        )

    def orchestrator(self) -> UploadOrchestrator:
        return UploadOrchestrator(
            self.store,
            self.resolver,
            op_timeout_s=self._op_timeout_s,
            content_op_timeout_s=self._content_op_timeout_s,
        )

    async def upload_entity(self, req: UploadRequest) -> UploadResult:
        return await self.orchestrator().run(req)

    async def get_metadata(self, reference: str, *, embed: bool = True) -> MetadataView:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._retriever.get_metadata, reference, embed=embed),
                timeout=self._op_timeout_s,
            )
        except asyncio.TimeoutError:
            raise StorageUnavailable("metadata_lookup_timeout", {"timeout_s": self._op_timeout_s}) from None

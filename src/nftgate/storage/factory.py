from __future__ import annotations

from nftgate.config import BACKEND_DCN, BACKEND_LOCAL, BACKEND_MEMORY, BACKEND_OBJECT_STORE, GatewayConfig
from nftgate.storage.base import BlobStore
from nftgate.storage.ipfs import IpfsBlobStore
from nftgate.storage.local import LocalBlobStore
from nftgate.storage.memory import MemoryBlobStore
from nftgate.storage.object_store import S3BlobStore
from nftgate.storage.retry import RetryingBlobStore


def build_backend(cfg: GatewayConfig) -> BlobStore:
    """Instantiate the raw backend selected by cfg.storage_backend."""
    backend = cfg.storage_backend
    if backend == BACKEND_LOCAL:
        return LocalBlobStore(cfg.local_root)
    if backend == BACKEND_OBJECT_STORE:
        return S3BlobStore(
            bucket=cfg.s3_bucket or "",
            prefix=cfg.s3_prefix,
            endpoint_url=cfg.s3_endpoint_url,
            region_name=cfg.s3_region,
        )
    if backend == BACKEND_DCN:
        return IpfsBlobStore(api_base=cfg.ipfs_api_base, timeout_s=cfg.ipfs_timeout_s)
    if backend == BACKEND_MEMORY:
        return MemoryBlobStore()
    raise ValueError(f"unknown storage backend {backend!r}")


def build_blob_store(cfg: GatewayConfig) -> RetryingBlobStore:
    """Backend wrapped in the bounded-retry boundary."""
    return RetryingBlobStore(
        build_backend(cfg),
        max_attempts=cfg.max_attempts,
        backoff_base_ms=cfg.backoff_base_ms,
        backoff_cap_ms=cfg.backoff_cap_ms,
    )

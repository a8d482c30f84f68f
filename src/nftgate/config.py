from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlparse, urlunparse


BACKEND_LOCAL = "local"
BACKEND_OBJECT_STORE = "object-store"
BACKEND_DCN = "distributed-content-network"
BACKEND_MEMORY = "memory"

STORAGE_BACKENDS = (BACKEND_LOCAL, BACKEND_OBJECT_STORE, BACKEND_DCN, BACKEND_MEMORY)

# Multipart slots an upload request may carry, and the room left for the
# text form fields (metadata, attributes, properties) and part headers.
UPLOAD_SLOTS = ("content", "preview")
FORM_ALLOWANCE_BYTES = 1024 * 1024

_BACKEND_ALIASES: Dict[str, str] = {
    "s3": BACKEND_OBJECT_STORE,
    "object_store": BACKEND_OBJECT_STORE,
    "ipfs": BACKEND_DCN,
    "dcn": BACKEND_DCN,
    "distributed_content_network": BACKEND_DCN,
    "disk": BACKEND_LOCAL,
}


@dataclass(frozen=True)
class GatewayConfig:
    mode: str  # "prod" | "dev" | "test"
    gateway_base_url: str
    storage_backend: str

    # local backend
    local_root: str = "./data/blobs"

    # distributed-content-network backend (IPFS / Kubo RPC)
    ipfs_api_base: str = "http://127.0.0.1:5001"
    ipfs_timeout_s: float = 30.0

    # object-store backend (S3-compatible)
    s3_bucket: Optional[str] = None
    s3_prefix: str = ""
    s3_endpoint_url: Optional[str] = None
    s3_region: Optional[str] = None

    # Retry / backoff at the blob store boundary
    max_attempts: int = 5
    backoff_base_ms: int = 100
    backoff_cap_ms: int = 5_000

    # Per blob-store operation timeouts
    op_timeout_s: float = 30.0
    content_op_timeout_s: float = 300.0

    # Per slot (content, preview). The whole request may carry both slots
    # plus the form fields; 0 derives the request cap from the slot cap.
    max_upload_bytes: int = 32 * 1024 * 1024
    max_request_bytes: int = 0

    @property
    def request_limit_bytes(self) -> int:
        if self.max_request_bytes > 0:
            return int(self.max_request_bytes)
        return len(UPLOAD_SLOTS) * int(self.max_upload_bytes) + FORM_ALLOWANCE_BYTES


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip()


def _env_opt(name: str) -> Optional[str]:
    v = (os.environ.get(name) or "").strip()
    return v or None


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return float(raw) if raw else float(default)
    except ValueError:
        return float(default)


def normalize_storage_backend(name: str) -> str:
    """Map a configured backend name onto one of STORAGE_BACKENDS.

    Fail-closed: unknown names raise ValueError instead of silently falling back.
    """
    n = (name or "").strip().lower()
    n = _BACKEND_ALIASES.get(n, n)
    if n not in STORAGE_BACKENDS:
        raise ValueError(f"unknown storage backend {name!r} (expected one of {', '.join(STORAGE_BACKENDS)})")
    return n


def normalize_gateway_base_url(url: str) -> str:
    """
    Normalize and validate the gateway base URL.

    Rules:
      - Must be http:// or https:// with a hostname
      - Rejects query/fragment
      - A path prefix is allowed (e.g. https://cdn.example/gw); trailing slashes are stripped
    """
    if not isinstance(url, str) or not url.strip():
        raise ValueError("gateway_base_url must be a non-empty string")

    parsed = urlparse(url.strip())

    if parsed.query or parsed.fragment:
        raise ValueError("gateway_base_url must not include query or fragment")

    scheme = (parsed.scheme or "").lower()
    if scheme not in {"http", "https"}:
        raise ValueError("gateway_base_url must be http or https")
    if not parsed.hostname:
        raise ValueError("gateway_base_url must include a hostname")

    return urlunparse((scheme, parsed.netloc, parsed.path.rstrip("/"), "", "", ""))


def load_gateway_config() -> GatewayConfig:
    mode = _env_str("NFTGATE_MODE", "prod").lower()
    gateway_base_url = normalize_gateway_base_url(_env_str("NFTGATE_GATEWAY_BASE_URL", "http://127.0.0.1:8080"))
    storage_backend = normalize_storage_backend(_env_str("NFTGATE_STORAGE_BACKEND", BACKEND_LOCAL))

    max_attempts = max(1, _env_int("NFTGATE_STORAGE_MAX_ATTEMPTS", 5))
    backoff_base_ms = max(1, _env_int("NFTGATE_STORAGE_BACKOFF_BASE_MS", 100))
    backoff_cap_ms = max(backoff_base_ms, _env_int("NFTGATE_STORAGE_BACKOFF_CAP_MS", 5_000))

    return GatewayConfig(
        mode=mode,
        gateway_base_url=gateway_base_url,
        storage_backend=storage_backend,
        local_root=_env_str("NFTGATE_LOCAL_ROOT", "./data/blobs"),
        ipfs_api_base=_env_str("NFTGATE_IPFS_API_BASE", "http://127.0.0.1:5001").rstrip("/"),
        ipfs_timeout_s=max(0.1, _env_float("NFTGATE_IPFS_TIMEOUT_S", 30.0)),
        s3_bucket=_env_opt("NFTGATE_S3_BUCKET"),
        s3_prefix=_env_str("NFTGATE_S3_PREFIX", ""),
        s3_endpoint_url=_env_opt("NFTGATE_S3_ENDPOINT_URL"),
        s3_region=_env_opt("NFTGATE_S3_REGION"),
        max_attempts=max_attempts,
        backoff_base_ms=backoff_base_ms,
        backoff_cap_ms=backoff_cap_ms,
        op_timeout_s=max(0.1, _env_float("NFTGATE_OP_TIMEOUT_S", 30.0)),
        content_op_timeout_s=max(0.1, _env_float("NFTGATE_CONTENT_OP_TIMEOUT_S", 300.0)),
        max_upload_bytes=max(1, _env_int("NFTGATE_MAX_UPLOAD_BYTES", 32 * 1024 * 1024)),
        max_request_bytes=max(0, _env_int("NFTGATE_MAX_REQUEST_BYTES", 0)),
    )

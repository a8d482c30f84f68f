from __future__ import annotations

import pytest

from nftgate.config import (
    BACKEND_DCN,
    BACKEND_LOCAL,
    BACKEND_MEMORY,
    BACKEND_OBJECT_STORE,
    FORM_ALLOWANCE_BYTES,
    UPLOAD_SLOTS,
    load_gateway_config,
    normalize_gateway_base_url,
    normalize_storage_backend,
)
from nftgate.storage.factory import build_backend, build_blob_store
from nftgate.storage.ipfs import IpfsBlobStore
from nftgate.storage.local import LocalBlobStore
from nftgate.storage.retry import RetryingBlobStore


def test_defaults() -> None:
    cfg = load_gateway_config()
    assert cfg.mode == "prod"
    assert cfg.storage_backend == BACKEND_LOCAL
    assert cfg.gateway_base_url == "http://127.0.0.1:8080"
    assert cfg.max_attempts == 5


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("local", BACKEND_LOCAL),
        ("disk", BACKEND_LOCAL),
        ("S3", BACKEND_OBJECT_STORE),
        ("object-store", BACKEND_OBJECT_STORE),
        ("ipfs", BACKEND_DCN),
        ("distributed-content-network", BACKEND_DCN),
        (" memory ", BACKEND_MEMORY),
    ],
)
def test_backend_aliases(raw: str, expected: str) -> None:
    assert normalize_storage_backend(raw) == expected


def test_unknown_backend_fails_closed(monkeypatch) -> None:
    with pytest.raises(ValueError):
        normalize_storage_backend("ftp")
    monkeypatch.setenv("NFTGATE_STORAGE_BACKEND", "ftp")
    with pytest.raises(ValueError):
        load_gateway_config()


@pytest.mark.parametrize(
    "url",
    ["", "gw.example.org", "ftp://gw.example.org", "https://gw.example.org/?x=1", "https://gw.example.org/#f", "https:///path"],
)
def test_invalid_gateway_base_url(url: str) -> None:
    with pytest.raises(ValueError):
        normalize_gateway_base_url(url)


def test_gateway_base_url_is_normalized() -> None:
    assert normalize_gateway_base_url("HTTPS://gw.example.org/") == "https://gw.example.org"
    assert normalize_gateway_base_url("http://localhost:8080/gw/") == "http://localhost:8080/gw"


def test_env_overrides_and_bad_numbers_fall_back(monkeypatch) -> None:
    monkeypatch.setenv("NFTGATE_MODE", "DEV")
    monkeypatch.setenv("NFTGATE_STORAGE_BACKEND", "ipfs")
    monkeypatch.setenv("NFTGATE_IPFS_API_BASE", "http://kubo:5001/")
    monkeypatch.setenv("NFTGATE_STORAGE_MAX_ATTEMPTS", "not-a-number")
    monkeypatch.setenv("NFTGATE_STORAGE_BACKOFF_BASE_MS", "200")
    monkeypatch.setenv("NFTGATE_STORAGE_BACKOFF_CAP_MS", "50")

    cfg = load_gateway_config()
    assert cfg.mode == "dev"
    assert cfg.storage_backend == BACKEND_DCN
    assert cfg.ipfs_api_base == "http://kubo:5001"
    assert cfg.max_attempts == 5
    assert cfg.backoff_cap_ms == 200


def test_request_limit_follows_the_slot_limit(monkeypatch) -> None:
    monkeypatch.setenv("NFTGATE_MAX_UPLOAD_BYTES", "1000")
    cfg = load_gateway_config()
    assert cfg.max_request_bytes == 0
    assert cfg.request_limit_bytes == len(UPLOAD_SLOTS) * 1000 + FORM_ALLOWANCE_BYTES

    monkeypatch.setenv("NFTGATE_MAX_REQUEST_BYTES", "5000")
    assert load_gateway_config().request_limit_bytes == 5000

    monkeypatch.setenv("NFTGATE_MAX_REQUEST_BYTES", "-3")
    assert load_gateway_config().request_limit_bytes == len(UPLOAD_SLOTS) * 1000 + FORM_ALLOWANCE_BYTES


def test_factory_builds_selected_backend(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("NFTGATE_LOCAL_ROOT", str(tmp_path / "blobs"))
    cfg = load_gateway_config()
    assert isinstance(build_backend(cfg), LocalBlobStore)

    store = build_blob_store(cfg)
    assert isinstance(store, RetryingBlobStore)
    assert store.backend == BACKEND_LOCAL

    monkeypatch.setenv("NFTGATE_STORAGE_BACKEND", "dcn")
    assert isinstance(build_backend(load_gateway_config()), IpfsBlobStore)


def test_object_store_requires_bucket(monkeypatch) -> None:
    monkeypatch.setenv("NFTGATE_STORAGE_BACKEND", "s3")
    with pytest.raises(ValueError):
        build_backend(load_gateway_config())

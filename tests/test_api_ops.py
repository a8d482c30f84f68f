from __future__ import annotations

from fastapi.testclient import TestClient

from nftgate.api import app as app_mod
from nftgate.config import BACKEND_MEMORY, GatewayConfig
from nftgate.entity.gateway import GatewayResolver
from nftgate.entity.service import EntityGateway
from nftgate.storage.memory import MemoryBlobStore


GW = "https://gw.example.org"


def _client() -> TestClient:
    cfg = GatewayConfig(mode="test", gateway_base_url=GW, storage_backend=BACKEND_MEMORY)
    return TestClient(app_mod.create_app(gateway=EntityGateway(MemoryBlobStore(), GatewayResolver(GW)), cfg=cfg))


def test_health_reports_backend_and_gateway() -> None:
    r = _client().get("/v1/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "storage_backend": "memory", "gateway_base_url": GW, "mode": "test"}


def test_metrics_disabled_by_default() -> None:
    r = _client().get("/v1/metrics")
    assert r.status_code == 404


def test_metrics_count_uploads(monkeypatch) -> None:
    monkeypatch.setenv("NFTGATE_METRICS_ENABLED", "1")
    c = _client()
    c.post("/v1/entity/upload", data={"name": "Artwork1"}, files={"content": ("a.bin", b"A", "application/octet-stream")})
    c.post("/v1/entity/upload", data={"name": "Artwork1", "properties": "[]"}, files={"content": ("a.bin", b"A", "application/octet-stream")})

    r = c.get("/v1/metrics")
    assert r.status_code == 200
    lines = r.text.splitlines()
    assert "nftgate_uploads_ok 1" in lines
    assert "nftgate_uploads_failed 1" in lines
    assert "nftgate_blob_writes 3" in lines
    assert any(line.startswith("nftgate_uptime_ms ") for line in lines)


def test_create_app_builds_gateway_from_config(monkeypatch) -> None:
    built = []

    def fake_build(cfg):
        gw = EntityGateway(MemoryBlobStore(), GatewayResolver(cfg.gateway_base_url))
        built.append(gw)
        return gw

    monkeypatch.setattr(app_mod, "build_gateway", fake_build)
    monkeypatch.setenv("NFTGATE_GATEWAY_BASE_URL", GW)

    app = app_mod.create_app()
    assert app.state.gateway is built[0]
    assert app.state.cfg.gateway_base_url == GW
